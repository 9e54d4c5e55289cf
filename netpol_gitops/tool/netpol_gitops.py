"""Command line tool for NetworkPolicy GitOps management."""

import argparse
import asyncio
import logging
import sys
import traceback

from netpol_gitops.exceptions import NetpolException

from . import compare, hash, reconcile, render

_LOGGER = logging.getLogger(__name__)


def _make_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Command line utility for NetworkPolicy GitOps management.",
    )
    parser.add_argument(
        "--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    )

    subparsers = parser.add_subparsers(dest="command", help="Command", required=True)

    hash.HashAction.register(subparsers)
    compare.CompareAction.register(subparsers)
    render.RenderAction.register(subparsers)
    reconcile.ReconcileAction.register(subparsers)
    return parser


def main(argv: list[str] | None = None) -> None:
    """Netpol-gitops command line tool main entry point."""
    parser = _make_parser()
    args = parser.parse_args(argv)

    if args.log_level:
        logging.basicConfig(level=args.log_level)

    action = args.cls()
    try:
        asyncio.run(action.run(**vars(args)))
    except NetpolException as err:
        if args.log_level == "DEBUG":
            traceback.print_exc(file=sys.stderr)
        print("netpol-gitops error: ", err, file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
