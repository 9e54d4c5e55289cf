"""Netpol-gitops compare action."""

from argparse import ArgumentParser, _SubParsersAction as SubParsersAction
import logging
import pathlib
import sys
from typing import cast

from netpol_gitops.drift import load_policy, specs_identical

_LOGGER = logging.getLogger(__name__)

IDENTICAL = "identical"
DRIFT = "drift"


class CompareAction:
    """Compare the rules of two NetworkPolicy files."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "compare",
                help="Compare the rules of two NetworkPolicy files",
                description=(
                    "Report whether two NetworkPolicies enforce the same rules, "
                    "ignoring metadata and the order of rules, peers and ports. "
                    "Exits with status 1 on drift."
                ),
            ),
        )
        args.add_argument("left", type=pathlib.Path, help="First NetworkPolicy file")
        args.add_argument("right", type=pathlib.Path, help="Second NetworkPolicy file")
        args.set_defaults(cls=cls)
        return args

    async def run(  # type: ignore[no-untyped-def]
        self,
        left: pathlib.Path,
        right: pathlib.Path,
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        left_policy = load_policy(left.read_text())
        right_policy = load_policy(right.read_text())
        if specs_identical(left_policy.get("spec"), right_policy.get("spec")):
            print(IDENTICAL)
            return
        print(DRIFT)
        sys.exit(1)
