"""Command line tool for running Go programs as Kubernetes Jobs."""

import argparse
import asyncio
from importlib.metadata import PackageNotFoundError, version
import logging
import sys
import traceback

from jctl.exceptions import JctlException

from . import publish, run

_LOGGER = logging.getLogger(__name__)

PACKAGE = "jctl"


def _version() -> str:
    try:
        return version(PACKAGE)
    except PackageNotFoundError:
        return "unknown"


def _make_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="jctl",
        description="Command line utility for running Go programs as Kubernetes Jobs.",
    )
    parser.add_argument(
        "--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {_version()}")

    subparsers = parser.add_subparsers(dest="command", help="Command", required=True)

    run.RunAction.register(subparsers)
    publish.PublishAction.register(subparsers)
    return parser


def main(argv: list[str] | None = None) -> None:
    """jctl command line tool main entry point."""
    parser = _make_parser()
    args = parser.parse_args(argv)

    if args.log_level:
        logging.basicConfig(level=args.log_level)

    action = args.cls()
    try:
        asyncio.run(action.run(**vars(args)))
    except JctlException as err:
        if args.log_level == "DEBUG":
            traceback.print_exc(file=sys.stderr)
        print("jctl error: ", err, file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
