#!/usr/bin/env python3
"""
Function extents for Go sources and per-function statement coverage.

Declarations are located with the tree-sitter Go grammar; only top-level
function and method declarations that carry a body are reported.
"""

from dataclasses import dataclass
from typing import List, Optional, Sequence

import tree_sitter_go
from tree_sitter import Language, Node, Parser

from cover_common import Block, FuncParseError, InconsistentProfileError

GO_LANGUAGE = Language(tree_sitter_go.language())
FUNC_NODE_TYPES = {"function_declaration", "method_declaration"}


@dataclass
class FuncExtent:
    name: str
    start_line: int
    start_col: int
    end_line: int
    end_col: int

    def offsets(self, src: bytes, filename: str = "") -> tuple:
        """Byte range [start, stop) of this extent within src.

        Walks src counting lines and columns; the end-of-file position is
        reachable so a closing brace on the last byte still resolves.
        """
        line = 1
        col = 0
        start = None
        for i in range(len(src) + 1):
            col += 1
            if start is None and line == self.start_line and col == self.start_col:
                start = i
            if start is not None and line == self.end_line and col == self.end_col:
                return start, i
            if i < len(src) and src[i] == 0x0A:
                line += 1
                col = 0
        raise InconsistentProfileError(
            f"could not find start/stop of {self.name}", filename,
            expected=f"{self.start_line}.{self.start_col}-{self.end_line}.{self.end_col}",
            found=f"{line} lines",
        )

    def coverage(self, blocks: Sequence[Block], src: bytes, filename: str = "") -> tuple:
        """Return (covered, total) statements of the blocks inside this function."""
        start, stop = self.offsets(src, filename)
        return block_coverage(blocks, start, stop)


def block_coverage(blocks: Sequence[Block], start: int, stop: int) -> tuple:
    """Sum statements of blocks starting inside [start, stop).

    Blocks are counted whole; a block straddling the range belongs to it when
    its start offset does.
    """
    covered = 0
    total = 0
    for b in blocks:
        if start <= b.start_offset < stop:
            total += b.num_stmt
            if b.count > 0:
                covered += b.num_stmt
    return covered, total


def _error_point(node: Node) -> tuple:
    """(row, column) of the first syntax error below node."""
    for child in node.children:
        if child.type == "ERROR" or child.is_missing:
            return child.start_point
        if child.has_error:
            return _error_point(child)
    return node.start_point


def find_funcs(src: bytes) -> List[FuncExtent]:
    """Top-level function and method declarations of a Go source file.

    Positions follow go/token: 1-based lines, 1-based byte columns, and the
    end is the position just past the closing brace. Declarations without a
    body (implemented in assembly) are skipped.
    """
    tree = Parser(GO_LANGUAGE).parse(src)
    root = tree.root_node
    if root.has_error:
        row, col = _error_point(root)
        raise FuncParseError(f"syntax error at {row + 1}.{col + 1}")

    funcs = []
    for node in root.children:
        if node.type not in FUNC_NODE_TYPES:
            continue
        if node.child_by_field_name("body") is None:
            continue
        name = node.child_by_field_name("name").text.decode("utf-8")
        start_row, start_col = node.start_point
        end_row, end_col = node.end_point
        funcs.append(FuncExtent(name, start_row + 1, start_col + 1, end_row + 1, end_col + 1))
    return funcs


def lookup_func(funcs: Sequence[FuncExtent], name: str) -> Optional[FuncExtent]:
    for f in funcs:
        if f.name == name:
            return f
    return None
