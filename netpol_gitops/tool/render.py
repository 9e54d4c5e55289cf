"""Netpol-gitops render action."""

from argparse import ArgumentParser, _SubParsersAction as SubParsersAction
import logging
import pathlib
from typing import cast

from netpol_gitops.template import clean_for_gitops, parse_template, stamp_template

from .format import YamlFormatter

_LOGGER = logging.getLogger(__name__)


class RenderAction:
    """Render a template for namespaces without contacting a cluster."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "render",
                help="Render a NetworkPolicy template for namespaces",
                description=(
                    "Print the manifests a template renders to, as they would be "
                    "committed to the repository. No dry-run validation is performed."
                ),
            ),
        )
        args.add_argument(
            "--template",
            type=pathlib.Path,
            required=True,
            help="Path of the template file",
        )
        args.add_argument(
            "--namespace",
            "-n",
            dest="namespaces",
            action="append",
            required=True,
            help="Target namespace, may be repeated",
        )
        args.add_argument(
            "--template-dir",
            default=None,
            help="Repository directory of the templates recorded in the annotations, "
            "defaults to the directory of the template",
        )
        args.set_defaults(cls=cls)
        return args

    async def run(  # type: ignore[no-untyped-def]
        self,
        template: pathlib.Path,
        namespaces: list[str],
        template_dir: str | None,
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        doc = parse_template(template.read_text(), template.name)
        if template_dir is None:
            template_dir = template.parent.as_posix()
        YamlFormatter().print(
            [
                clean_for_gitops(stamp_template(doc, template_dir, template.name, ns))
                for ns in namespaces
            ]
        )
