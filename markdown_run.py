import argparse
import asyncio
import logging
import os
import sys
from typing import List, Optional

from mdrun.mdrun_datatypes import MarkdownRunError
from mdrun.mdrun_file import run_file

LOG_FORMAT = "%(levelname)s %(name)s: %(message)s"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="markdown-run",
        description="Execute the code blocks of a Markdown file and write their results back into it.",
    )
    parser.add_argument("file", help="Markdown file to process in place")
    level = parser.add_mutually_exclusive_group()
    level.add_argument("-v", "--verbose", action="store_true", help="log debug details")
    level.add_argument("-q", "--quiet", action="store_true", help="only log warnings and errors")
    return parser


def configure_logging(verbose: bool = False, quiet: bool = False) -> None:
    level_name = os.environ.get("MARKDOWN_RUN_LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    if not isinstance(level, int):
        level = logging.INFO
    if verbose:
        level = logging.DEBUG
    elif quiet:
        level = logging.WARNING
    logging.basicConfig(level=level, format=LOG_FORMAT, stream=sys.stderr, force=True)
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(max(level, logging.WARNING))


async def main(argv: Optional[List[str]] = None) -> int:
    """Process the file named on the command line; returns the exit status."""
    args = build_parser().parse_args(sys.argv[1:] if argv is None else argv)
    configure_logging(args.verbose, args.quiet)
    try:
        await run_file(args.file)
    except MarkdownRunError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0


def cli() -> None:
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(130)


if __name__ == "__main__":
    cli()
