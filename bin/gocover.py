#!/usr/bin/env python3
"""
gocover: Go test coverage as a heat map in the terminal.

Runs ``go test`` with statement counting (unless told not to), then prints
either a per-file/per-function coverage table, one file's annotated source,
or one function's annotated source.

Usage:
  gocover                          # Run tests, print coverage table
  gocover main.go                  # Annotated source of main.go
  gocover parseArgs                # Annotated source of function parseArgs
  gocover --coverprofile c.out --no-run-tests
  gocover --legend                 # Sample colors
"""

import argparse
import os
import sys
import tempfile
from pathlib import Path

from rich.color import ColorParseError
from rich.console import Console

from cover_common import (
    FuncParseError, FunctionNotFoundError, InconsistentProfileError,
    ProfileFormatError, SourceNotFoundError,
    find_file, find_go, parse_profiles, run_go_tests,
)
from cover_paint import (
    DEFAULT_HIGH, DEFAULT_LOW, Gradient,
    print_file, print_func, print_legend, print_report,
)


def _hex(triplet) -> str:
    return "#{:02x}{:02x}{:02x}".format(*triplet)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Show Go test coverage as a terminal heat map")
    parser.add_argument("target", nargs="?", help="A .go file to annotate, or a function name")
    parser.add_argument("--func", dest="func", default="", help="Show only the selected function")
    parser.add_argument("--file", dest="file", default="", help="Show annotated source for the selected file")
    parser.add_argument("--coverprofile", default="", help="Cover profile location (default: temporary file)")
    parser.add_argument("--legend", action="store_true", help="Print sample colors")
    parser.add_argument("--no-run-tests", dest="run_tests", action="store_false",
                        help="Use an existing cover profile instead of running go test")
    parser.add_argument("--low-color", default=_hex(DEFAULT_LOW), help="Gradient color for low coverage")
    parser.add_argument("--high-color", default=_hex(DEFAULT_HIGH), help="Gradient color for full coverage")
    parser.add_argument("--no-color", action="store_true", help="Disable colored output")
    return parser


def apply_target(args):
    """A lone positional argument is a file when it names an existing .go file, else a function."""
    if not args.target:
        return
    if args.target.endswith(".go") and os.path.isfile(args.target):
        args.file = args.target
    else:
        args.func = args.target


def run(args, console: Console) -> int:
    try:
        gradient = Gradient.from_hex(args.low_color, args.high_color)
    except ColorParseError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.legend:
        print_legend(console, gradient)
        return 0

    profile_path = Path(args.coverprofile)
    go = find_go()

    if args.run_tests:
        if not go:
            print("Error: go executable not found", file=sys.stderr)
            return 1
        result = run_go_tests(go, profile_path)
        if result.returncode != 0:
            print(result.stdout, file=sys.stderr)
            print(result.stderr, file=sys.stderr)
            print(f"Error: go test exited with status {result.returncode}", file=sys.stderr)
            return 1

    def resolve(file_ref: str) -> str:
        return find_file(file_ref, go or "go")

    try:
        profiles = parse_profiles(profile_path)
        if args.func:
            print_func(console, profiles, args.func, gradient, resolve)
        elif args.file:
            print_file(console, profiles, args.file, gradient, resolve)
        else:
            print_report(console, profiles, gradient, resolve)
    except FunctionNotFoundError as e:
        print(e)
        return 1
    except (SourceNotFoundError, ProfileFormatError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except (InconsistentProfileError, FuncParseError) as e:
        print(f"Internal error: {e}", file=sys.stderr)
        return 2
    return 0


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    apply_target(args)
    console = Console(highlight=False, no_color=args.no_color)

    if args.coverprofile or args.legend:
        return run(args, console)

    fd, tmp = tempfile.mkstemp(prefix="coverage")
    os.close(fd)
    args.coverprofile = tmp
    try:
        return run(args, console)
    finally:
        os.remove(tmp)


if __name__ == "__main__":
    sys.exit(main())
