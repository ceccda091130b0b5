"""Configurable child process used by execution tests."""

from __future__ import annotations

import argparse
import os
import sys
import time


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Mock taskwright child process")
    parser.add_argument("--exit-code", type=int, default=0, help="Exit code to return")
    parser.add_argument("--duration", type=float, default=0.0, help="Delay in seconds before exit")
    parser.add_argument("--stdout", type=str, default="", help="Text to print to stdout")
    parser.add_argument("--stderr", type=str, default="", help="Text to print to stderr")
    parser.add_argument("--lines", type=int, default=0, help="Number of numbered lines to stream")
    parser.add_argument(
        "--delay",
        type=float,
        default=0.0,
        help="Delay in seconds between streamed lines",
    )
    parser.add_argument("--prefix", type=str, default="line", help="Prefix of streamed lines")
    parser.add_argument("--print-env", type=str, default="", help="Print one environment variable")
    parser.add_argument("--print-cwd", action="store_true", help="Print the working directory")
    parser.add_argument("--hang", action="store_true", help="Sleep until killed")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    if args.stdout:
        print(args.stdout, flush=True)
    if args.stderr:
        print(args.stderr, file=sys.stderr, flush=True)
    if args.print_env:
        print(os.environ.get(args.print_env, ""), flush=True)
    if args.print_cwd:
        print(os.getcwd(), flush=True)

    for index in range(1, args.lines + 1):
        print(f"{args.prefix} {index}", flush=True)
        if args.delay > 0:
            time.sleep(args.delay)

    if args.hang:
        while True:
            time.sleep(1)

    if args.duration > 0:
        time.sleep(args.duration)
    return args.exit_code


if __name__ == "__main__":
    raise SystemExit(main())
