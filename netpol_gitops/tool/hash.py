"""Netpol-gitops hash action."""

from argparse import ArgumentParser, _SubParsersAction as SubParsersAction
import logging
import pathlib
from typing import cast

from netpol_gitops.drift import load_policy, rules_hash

from .format import PrintFormatter

_LOGGER = logging.getLogger(__name__)


class HashAction:
    """Print the rules hash of NetworkPolicy files."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "hash",
                help="Print the rules hash of NetworkPolicy files",
                description=(
                    "Print the hash of the canonical spec of each NetworkPolicy "
                    "file. Files enforcing the same rules have the same hash."
                ),
            ),
        )
        args.add_argument(
            "files",
            type=pathlib.Path,
            nargs="+",
            help="NetworkPolicy YAML files",
        )
        args.set_defaults(cls=cls)
        return args

    async def run(  # type: ignore[no-untyped-def]
        self,
        files: list[pathlib.Path],
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        results = []
        for path in files:
            policy = load_policy(path.read_text())
            results.append({"file": str(path), "hash": rules_hash(policy.get("spec"))})
        PrintFormatter().print(results)
