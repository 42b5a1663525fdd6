#!/usr/bin/env python3
"""
Terminal heat-map rendering for Go coverage profiles.

Blocks become paint points (byte ranges tagged with a 0-100 coverage bucket),
buckets become colors on a ten-step gradient, and source bytes are printed as
colored runs through a rich Console. Also renders the per-function table and
the color legend.
"""

import math
import os
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

from rich.color import Color, blend_rgb
from rich.color_triplet import ColorTriplet
from rich.console import Console
from rich.style import Style
from rich.text import Text

from cover_common import (
    Boundary, CoverageUndefinedError, FuncParseError, FunctionNotFoundError,
    InconsistentProfileError, Profile, SourceNotFoundError,
    boundaries, find_file, locate_blocks, percent, read_source, total_statements,
)
from cover_funcs import FuncExtent, find_funcs, lookup_func

DEFAULT_LOW = ColorTriplet(171, 200, 170)
DEFAULT_HIGH = ColorTriplet(42, 119, 11)
GRADIENT_STEPS = 10
MAX_BUCKET = 100

FILE_RULE = "-" * 27
TOTAL_RULE = "-" * 49


@dataclass(frozen=True)
class Gradient:
    low: ColorTriplet = DEFAULT_LOW
    high: ColorTriplet = DEFAULT_HIGH
    uncovered: str = "red"
    neutral: str = "bright_white"

    @classmethod
    def from_hex(cls, low: str, high: str) -> "Gradient":
        return cls(Color.parse(low).get_truecolor(), Color.parse(high).get_truecolor())

    @property
    def neutral_style(self) -> Style:
        return Style(color=self.neutral)

    def style_for(self, pct: float) -> Style:
        """Style for a coverage percentage in [0, 100].

        Zero is always the uncovered color, anything above 99 is the high end
        in bold, and the rest is quantized into ten steps from low to high.
        """
        if pct == 0:
            return Style(color=self.uncovered)
        if pct > 99:
            return Style(color=Color.from_triplet(self.high), bold=True)
        step = int(pct / GRADIENT_STEPS)
        faded = blend_rgb(self.low, self.high, step / GRADIENT_STEPS)
        return Style(color=Color.from_triplet(faded))

    def color_for(self, text: str, pct: float) -> Text:
        return Text(text, style=self.style_for(pct))


@dataclass
class PaintPoint:
    """A chunk of source [start, stop) with its coverage bucket and hit count."""
    start: int
    stop: int
    cov: int
    count: int


def coverage_bucket(boundary: Boundary) -> int:
    if boundary.count == 0:
        return 0
    n = int(math.floor(boundary.norm * 99)) + 1
    return min(max(n, 1), MAX_BUCKET)


def build_paint_points(src: bytes, bounds: Sequence[Boundary], filename: str = "") -> List[PaintPoint]:
    """Pair start/stop boundaries into paint points in a single pass over src."""
    points = []
    current = None
    bi = 0

    for i in range(len(src) + 1):
        while bi < len(bounds) and bounds[bi].offset == i:
            b = bounds[bi]
            if b.start:
                if current is not None:
                    raise InconsistentProfileError(
                        "nested coverage blocks", filename,
                        expected=f"stop before offset {i}", found="start",
                    )
                current = PaintPoint(start=i, stop=i, cov=coverage_bucket(b), count=b.count)
            else:
                if current is None:
                    raise InconsistentProfileError(
                        "coverage block stop without start", filename,
                        expected="start", found=f"stop at offset {i}",
                    )
                current.stop = i
                if current.stop > current.start:
                    points.append(current)
                current = None
            bi += 1

    if bi < len(bounds):
        raise InconsistentProfileError(
            "boundary out of order or past end of source", filename,
            expected=f"offset <= {len(src)}", found=f"offset {bounds[bi].offset}",
        )
    return points


def paint_runs(points: Sequence[PaintPoint], start: int, stop: int):
    """Yield (run_start, run_stop, point) covering [start, stop); point is None between blocks."""
    pi = 0
    while pi < len(points) and points[pi].stop <= start:
        pi += 1

    i = start
    while i < stop:
        if pi < len(points) and points[pi].start <= i:
            point = points[pi]
            end = min(point.stop, stop)
            yield i, end, point
            pi += 1
        else:
            end = stop if pi >= len(points) else min(points[pi].start, stop)
            yield i, end, None
        i = end


def render_source(src: bytes, points: Sequence[PaintPoint], gradient: Gradient,
                  start: int = 0, stop: Optional[int] = None) -> Text:
    if stop is None:
        stop = len(src)
    text = Text()
    for run_start, run_stop, point in paint_runs(points, start, stop):
        chunk = src[run_start:run_stop].decode("utf-8", errors="replace")
        if point is None:
            text.append(chunk, style=gradient.neutral_style)
        else:
            text.append(gradient.color_for(chunk, point.cov))
    return text


def paint_points_for(profile: Profile, src: bytes, filename: str = "") -> List[PaintPoint]:
    return build_paint_points(src, boundaries(locate_blocks(profile, src)), filename)


def print_source(console: Console, text: Text):
    console.print(text, soft_wrap=True, end="" if text.plain.endswith("\n") else "\n")


def display_name(path: str) -> str:
    prefix = os.getcwd() + os.sep
    if path.startswith(prefix):
        return path[len(prefix):]
    return path


def coverage_text(gradient: Gradient, covered: int, total: int, digits: int = 1) -> Text:
    try:
        pct = percent(covered, total)
    except CoverageUndefinedError:
        return Text("n/a", style=gradient.neutral_style)
    return gradient.color_for(f"{pct:.{digits}f}%", pct)


def load_funcs(path: str, src: bytes) -> List[FuncExtent]:
    try:
        return find_funcs(src)
    except FuncParseError as e:
        raise FuncParseError(f"{path}: {e}") from e


def print_line(console: Console, text: Text):
    """Print one report line at full length, whatever the console width."""
    console.print(text, soft_wrap=True)


def print_file_header(console: Console, path: str, profile: Profile, gradient: Gradient):
    header = Text(f"# {display_name(path):<20} ", style="bold")
    header.append(coverage_text(gradient, profile.statements_hit, profile.statements_found))
    print_line(console, header)
    print_line(console, Text(FILE_RULE))


def print_function_coverage(console: Console, profile: Profile, path: str, gradient: Gradient) -> tuple:
    """Print one row per function of path; returns the file's (covered, total) over its functions."""
    src = read_source(path)
    blocks = locate_blocks(profile, src)
    base = os.path.basename(path)

    rows = []
    covered = 0
    total = 0
    for f in load_funcs(path, src):
        c, t = f.coverage(blocks, src, path)
        rows.append((f"{base}:{f.start_line}:", f.name, coverage_text(gradient, c, t)))
        covered += c
        total += t

    loc_width = max((len(loc) for loc, _, _ in rows), default=0)
    name_width = max((len(name) for _, name, _ in rows), default=0)
    for loc, name, pct in rows:
        print_line(console, Text(f"{loc:<{loc_width}} {name:<{name_width}} ").append(pct))

    console.print()
    return covered, total


def print_report(console: Console, profiles: Sequence[Profile], gradient: Gradient,
                 resolve: Callable[[str], str] = find_file) -> tuple:
    """Per-file and per-function coverage table followed by the run total."""
    for profile in profiles:
        path = resolve(profile.file_name)
        print_file_header(console, path, profile, gradient)
        print_function_coverage(console, profile, path, gradient)

    covered, total = total_statements(profiles)
    print_line(console, Text(TOTAL_RULE))
    print_line(console, Text("Total covered: ").append(coverage_text(gradient, covered, total, digits=2)))
    return covered, total


def print_file(console: Console, profiles: Sequence[Profile], filename: str, gradient: Gradient,
               resolve: Callable[[str], str] = find_file) -> int:
    """Render every profiled file whose path contains filename."""
    rendered = 0
    for profile in profiles:
        path = resolve(profile.file_name)
        if filename not in path:
            continue
        src = read_source(path)
        print_source(console, render_source(src, paint_points_for(profile, src, path), gradient))
        rendered += 1

    if rendered == 0:
        raise SourceNotFoundError(f"no coverage data for {filename!r}")
    return rendered


def print_func(console: Console, profiles: Sequence[Profile], funcname: str, gradient: Gradient,
               resolve: Callable[[str], str] = find_file) -> FuncExtent:
    """Render the first function named funcname found in the profiled files."""
    for profile in profiles:
        path = resolve(profile.file_name)
        src = read_source(path)
        f = lookup_func(load_funcs(path, src), funcname)
        if f is None:
            continue
        start, stop = f.offsets(src, path)
        points = paint_points_for(profile, src, path)
        print_source(console, render_source(src, points, gradient, start, stop))
        return f

    raise FunctionNotFoundError(f"could not find function {funcname}")


def print_legend(console: Console, gradient: Gradient):
    for i in range(0, 11, 2):
        pct = i / 10
        console.print(Text(f"{pct:.1f}% ").append(gradient.color_for("test", pct)))

    for i in range(5, 101, 5):
        console.print(Text(f"{i}% ").append(gradient.color_for("test", i)))
