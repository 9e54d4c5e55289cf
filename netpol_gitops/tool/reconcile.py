"""Netpol-gitops reconcile action."""

from argparse import ArgumentParser, _SubParsersAction as SubParsersAction
import logging
from typing import cast

from netpol_gitops.cluster.kubernetes import KubernetesCluster
from netpol_gitops.controller import NetworkPolicyController
from netpol_gitops.workflow import Workflow

from .format import PrintFormatter

_LOGGER = logging.getLogger(__name__)


class ReconcileAction:
    """Run one NetworkPolicy reconciliation cycle against a cluster."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "reconcile",
                help="Run one reconciliation cycle for a PermissionBinder",
                description=(
                    "Reconcile the NetworkPolicies of the desired namespaces "
                    "with the GitOps repository configured in a PermissionBinder."
                ),
            ),
        )
        args.add_argument(
            "namespaces",
            nargs="*",
            help="Desired namespaces",
        )
        args.add_argument(
            "--binder",
            required=True,
            help="Name of the PermissionBinder",
        )
        args.add_argument(
            "--binder-namespace",
            default="",
            help="Namespace of the PermissionBinder",
        )
        args.add_argument("--kubeconfig", default=None, help="Path of a kubeconfig file")
        args.add_argument("--context", default=None, help="The kubeconfig context")
        args.set_defaults(cls=cls)
        return args

    async def run(  # type: ignore[no-untyped-def]
        self,
        namespaces: list[str],
        binder: str,
        binder_namespace: str,
        kubeconfig: str | None,
        context: str | None,
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        cluster = await KubernetesCluster.connect(kubeconfig, context)
        try:
            resource = await cluster.get_permission_binder(binder_namespace, binder)
            controller = NetworkPolicyController(Workflow(cluster))
            result = await controller.reconcile(resource, namespaces)
            resource = await cluster.get_permission_binder(binder_namespace, binder)
        finally:
            await cluster.close()

        for step, error in result.errors.items():
            _LOGGER.error("Step %s failed: %s", step, error)
        PrintFormatter(keys=["namespace", "state", "pr"]).print(
            [
                {
                    "namespace": entry.namespace,
                    "state": entry.state,
                    "pr": entry.pr_url or "",
                }
                for entry in resource.status.network_policies
            ]
        )
