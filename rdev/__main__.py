"""Entry point for rdev.

Usage:
    rdev [-q] [-c CONFIG] build FILE ADDR   Watch FILE and send it to the runner at ADDR
    rdev [-q] [-c CONFIG] run FILE ADDR     Listen on ADDR, save to FILE and run it
"""

import argparse
import logging
import sys
from pathlib import Path

from rdev import __version__
from rdev.config import Endpoint, RunConfig, Settings
from rdev.errors import ConfigError, InvalidAddress
from rdev.service import ROLE_BUILD, ROLE_RUN, run_role, setup_logging


def _endpoint(text: str) -> Endpoint:
    try:
        return Endpoint.parse(text)
    except InvalidAddress as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rdev",
        description="Build on one machine, run on another.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "-q", "--quiet",
        action="store_true",
        help="Do not output information, except for errors.",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="JSON settings file (default: the platform config directory)",
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND", required=True)
    roles = {
        ROLE_BUILD: (
            "Watches the file for changes, and sends it to the runner.",
            "The file to be sent to the runner.",
            "The address of the runner.",
        ),
        ROLE_RUN: (
            "Listens for the builder, receives and runs the file.",
            "The filename to save the file to.",
            "The address to listen on.",
        ),
    }
    for name, (summary, file_help, addr_help) in roles.items():
        cmd = sub.add_parser(name, help=summary, description=summary)
        cmd.add_argument("file", metavar="FILE", help=file_help)
        cmd.add_argument("address", metavar="ADDR", type=_endpoint, help=addr_help)
    return parser


def format_error(exc: BaseException) -> str:
    """Render *exc* and its ``__cause__`` chain, one link per line."""
    lines = [f"Error: {exc}"]
    cause = exc.__cause__
    while cause is not None:
        lines.append(f"Caused by: {cause}")
        cause = cause.__cause__
    return "\n".join(lines)


def main(argv: list[str] | None = None) -> int:
    """Parse arguments and run the selected role until it fails."""
    parser = build_parser()
    args = parser.parse_args(argv)
    config = RunConfig(file=args.file, endpoint=args.address, quiet=args.quiet)

    try:
        settings = Settings.load(args.config)
    except ConfigError as exc:
        print(format_error(exc), file=sys.stderr)
        parser.print_usage(sys.stderr)
        return 2

    setup_logging(settings, quiet=config.quiet)
    try:
        run_role(args.command, config, settings)
    except KeyboardInterrupt:
        logging.getLogger(__name__).info("Interrupted by user")
        return 130
    except Exception as exc:
        print(format_error(exc), file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
