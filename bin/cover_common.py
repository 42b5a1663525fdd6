#!/usr/bin/env python3
"""
Shared coverage data structures and parsing logic for the gocover tools.

Reads Go cover profiles (``go test -coverprofile``), resolves their blocks to
byte offsets of the source they describe, and turns those into the ordered
boundary events the painter consumes.
"""

import math
import os
import re
import subprocess
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Optional, List, Sequence

COVER_MODE = "count"

GO_CANDIDATES = [
    "go",
    "/usr/local/go/bin/go",
    "/opt/homebrew/bin/go",
    "/usr/lib/go/bin/go",
]

# Heat used for every executed block when the profile only records 0/1.
SET_MODE_NORM = 0.8

_BLOCK_RE = re.compile(r'^(.+):([0-9]+)\.([0-9]+),([0-9]+)\.([0-9]+) ([0-9]+) ([0-9]+)$')


class CoverError(Exception):
    """Base class for everything gocover reports to the user."""


class SourceNotFoundError(CoverError):
    pass


class FunctionNotFoundError(CoverError):
    pass


class ProfileFormatError(CoverError):
    pass


class FuncParseError(CoverError):
    pass


class CoverageUndefinedError(CoverError):
    """Raised when a percentage is asked of zero instrumented statements."""


class InconsistentProfileError(CoverError):
    """Profile positions or function extents do not fit the source buffer."""

    def __init__(self, message: str, filename: str = "", expected: str = "", found: str = ""):
        self.filename = filename
        self.expected = expected
        self.found = found
        details = []
        if filename:
            details.append(filename)
        if expected:
            details.append(f"expected {expected}")
        if found:
            details.append(f"found {found}")
        if details:
            message = f"{message} ({', '.join(details)})"
        super().__init__(message)


@dataclass
class ProfileBlock:
    start_line: int
    start_col: int
    end_line: int
    end_col: int
    num_stmt: int
    count: int


@dataclass
class Profile:
    file_name: str
    mode: str
    blocks: list = field(default_factory=list)

    @property
    def statements_found(self) -> int:
        return sum(b.num_stmt for b in self.blocks)

    @property
    def statements_hit(self) -> int:
        return sum(b.num_stmt for b in self.blocks if b.count > 0)


@dataclass(frozen=True)
class Block:
    start_offset: int
    end_offset: int
    num_stmt: int
    count: int


@dataclass
class Boundary:
    offset: int
    start: bool
    count: int
    norm: float = 0.0
    index: int = 0


def percent(covered: int, total: int) -> float:
    """Return covered/total as a percentage; zero statements has no coverage."""
    if total == 0:
        raise CoverageUndefinedError("no instrumented statements")
    return 100.0 * covered / total


def total_statements(profiles: Sequence[Profile]) -> tuple:
    """Sum (covered, total) statements over every block of every profile."""
    covered = 0
    total = 0
    for p in profiles:
        covered += p.statements_hit
        total += p.statements_found
    return covered, total


def parse_profiles(profile_path: Path) -> List[Profile]:
    """Parse a Go cover profile, merging repeated records for the same block."""
    with open(profile_path, encoding="utf-8") as f:
        try:
            return parse_profile_lines(f, str(profile_path))
        except UnicodeDecodeError as e:
            raise ProfileFormatError(f"{profile_path}: not UTF-8 text: {e}") from e


def parse_profile_lines(lines, source_name: str = "<profile>") -> List[Profile]:
    files = {}
    mode = None

    for line_no, line in enumerate(lines, 1):
        line = line.strip()
        if not line:
            continue

        if mode is None:
            if not line.startswith("mode: "):
                raise ProfileFormatError(f"{source_name}:{line_no}: bad mode line: {line!r}")
            mode = line[len("mode: "):]
            if mode not in ("set", "count", "atomic"):
                raise ProfileFormatError(f"{source_name}:{line_no}: unknown mode {mode!r}")
            continue

        match = _BLOCK_RE.match(line)
        if not match:
            raise ProfileFormatError(f"{source_name}:{line_no}: line {line!r} doesn't match expected format")

        filename = match.group(1)
        if filename not in files:
            files[filename] = Profile(file_name=filename, mode=mode)
        files[filename].blocks.append(ProfileBlock(*(int(g) for g in match.groups()[1:])))

    for profile in files.values():
        profile.blocks = _merge_blocks(profile, source_name)

    return [files[name] for name in sorted(files)]


def _merge_blocks(profile: Profile, source_name: str) -> list:
    ordered = sorted(profile.blocks, key=lambda b: (b.start_line, b.start_col))
    merged = []
    for b in ordered:
        if merged:
            last = merged[-1]
            same_extent = (last.start_line, last.start_col, last.end_line, last.end_col) == \
                (b.start_line, b.start_col, b.end_line, b.end_col)
            if same_extent:
                if last.num_stmt != b.num_stmt:
                    raise ProfileFormatError(
                        f"{source_name}: inconsistent NumStmt for {profile.file_name}:"
                        f"{b.start_line}.{b.start_col}: changed from {last.num_stmt} to {b.num_stmt}"
                    )
                if profile.mode == "set":
                    last.count |= b.count
                else:
                    last.count += b.count
                continue
        merged.append(b)
    return merged


def line_starts(src: bytes) -> list:
    """Offsets at which each line of src begins (index 0 is line 1)."""
    starts = [0]
    pos = src.find(b"\n")
    while pos != -1:
        starts.append(pos + 1)
        pos = src.find(b"\n", pos + 1)
    return starts


def position_offset(starts: list, src: bytes, line: int, col: int, filename: str = "") -> int:
    """Convert a 1-based line/byte-column position into a byte offset of src."""
    if line < 1 or line > len(starts) or col < 1:
        raise InconsistentProfileError(
            "position outside of source", filename,
            expected=f"{line}.{col}", found=f"{len(starts)} lines",
        )
    begin = starts[line - 1]
    end = starts[line] - 1 if line < len(starts) else len(src)
    offset = begin + col - 1
    if offset > end:
        raise InconsistentProfileError(
            "position past end of line", filename,
            expected=f"{line}.{col}", found=f"line {line} has {end - begin} bytes",
        )
    return offset


def locate_blocks(profile: Profile, src: bytes) -> List[Block]:
    """Resolve every block of a profile to byte offsets in src."""
    starts = line_starts(src)
    located = []
    for b in profile.blocks:
        start = position_offset(starts, src, b.start_line, b.start_col, profile.file_name)
        end = position_offset(starts, src, b.end_line, b.end_col, profile.file_name)
        if end < start:
            raise InconsistentProfileError(
                "block ends before it starts", profile.file_name,
                expected=f"{b.start_line}.{b.start_col} <= {b.end_line}.{b.end_col}",
            )
        located.append(Block(start, end, b.num_stmt, b.count))
    return located


def boundaries(blocks: Sequence[Block]) -> List[Boundary]:
    """Start/stop events for blocks, ordered by offset then emission order.

    Each block emits its start before its stop, so a block ending where the
    next begins yields stop-then-start at that offset.
    """
    max_count = max((b.count for b in blocks), default=0)
    divisor = math.log(max_count) if max_count > 1 else 0.0

    events = []
    for b in blocks:
        norm = 0.0
        if b.count > 0:
            norm = SET_MODE_NORM if max_count <= 1 else math.log(b.count) / divisor
        events.append(Boundary(b.start_offset, True, b.count, norm, len(events)))
        events.append(Boundary(b.end_offset, False, 0, 0.0, len(events)))

    events.sort(key=lambda e: (e.offset, e.index))
    return events


def find_go() -> Optional[str]:
    """Find the go executable on the system."""
    for candidate in GO_CANDIDATES:
        try:
            result = subprocess.run(
                [candidate, "version"],
                capture_output=True,
                text=True,
                timeout=5
            )
            if result.returncode == 0:
                return candidate
        except (FileNotFoundError, PermissionError, subprocess.TimeoutExpired):
            continue

    return None


@lru_cache(maxsize=None)
def _package_dir(import_dir: str, go: str) -> str:
    try:
        result = subprocess.run(
            [go, "list", "-f", "{{.Dir}}", import_dir],
            capture_output=True,
            text=True
        )
    except FileNotFoundError:
        raise SourceNotFoundError(f"can't find package {import_dir!r}: {go} not found")
    if result.returncode != 0:
        raise SourceNotFoundError(f"can't find package {import_dir!r}: {result.stderr.strip()}")
    return result.stdout.strip()


def find_file(file_ref: str, go: str = "go") -> str:
    """Locate a profile's file reference (import path + file name) on disk."""
    if os.path.isfile(file_ref):
        return str(Path(file_ref).resolve())

    import_dir, name = os.path.split(file_ref)
    if not import_dir:
        raise SourceNotFoundError(f"can't find {file_ref!r}")
    try:
        pkg_dir = _package_dir(import_dir, go)
    except SourceNotFoundError as e:
        raise SourceNotFoundError(f"can't find {name!r}: {e}") from e
    path = os.path.join(pkg_dir, name)
    if not os.path.isfile(path):
        raise SourceNotFoundError(f"can't find {name!r} in {pkg_dir}")
    return path


def read_source(path: str) -> bytes:
    try:
        return Path(path).read_bytes()
    except OSError as e:
        raise SourceNotFoundError(f"can't read {path!r}: {e}") from e


def run_go_tests(go: str, profile_path: Path, packages: Sequence[str] = ("./...",),
                 cwd: Optional[Path] = None) -> subprocess.CompletedProcess:
    """Run go test with statement counting, writing the profile to profile_path."""
    return subprocess.run(
        [
            go, "test",
            f"-covermode={COVER_MODE}",
            f"-coverprofile={profile_path}",
            *packages,
        ],
        cwd=cwd,
        capture_output=True,
        text=True
    )
