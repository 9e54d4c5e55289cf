"""Cluster access capability used by the NetworkPolicy workflows."""

from abc import ABC, abstractmethod
from typing import Any

from netpol_gitops.manifest import PermissionBinder


class Cluster(ABC):
    """Abstract read, dry-run and status update access to the cluster."""

    @abstractmethod
    async def get_secret(self, namespace: str, name: str) -> dict[str, str]:
        """Return the decoded data of a Secret.

        Raises:
            ObjectNotFoundError: If the Secret does not exist.
        """

    @abstractmethod
    async def list_network_policies(self, namespace: str) -> list[dict[str, Any]]:
        """Return the NetworkPolicies of a namespace as raw documents."""

    @abstractmethod
    async def get_network_policy(self, namespace: str, name: str) -> dict[str, Any]:
        """Return a NetworkPolicy as a raw document.

        Raises:
            ObjectNotFoundError: If the NetworkPolicy does not exist.
        """

    @abstractmethod
    async def dry_run_network_policy(self, doc: dict[str, Any]) -> None:
        """Submit a NetworkPolicy for server-side validation without persisting it.

        Raises:
            InputException: If the server rejects the object.
        """

    @abstractmethod
    async def get_permission_binder(self, namespace: str, name: str) -> PermissionBinder:
        """Return the latest copy of a PermissionBinder.

        Raises:
            ObjectNotFoundError: If the resource does not exist.
        """

    @abstractmethod
    async def list_permission_binders(self) -> list[PermissionBinder]:
        """Return all PermissionBinders in the cluster."""

    @abstractmethod
    async def update_permission_binder_status(
        self, binder: PermissionBinder
    ) -> PermissionBinder:
        """Write the status of a PermissionBinder conditioned on its resource version.

        Raises:
            ConflictError: If the resource was modified since it was read.
        """
