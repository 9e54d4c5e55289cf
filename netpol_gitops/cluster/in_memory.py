"""Module for an in memory cluster."""

import copy
import logging
from typing import Any

from netpol_gitops.exceptions import (
    ConflictError,
    InputException,
    ObjectNotFoundError,
)
from netpol_gitops.manifest import PermissionBinder

from .cluster import Cluster

_LOGGER = logging.getLogger(__name__)


def _key(namespace: str | None, name: str) -> tuple[str, str]:
    return (namespace or "", name)


class InMemoryCluster(Cluster):
    """In-memory implementation of the Cluster interface.

    Objects are stored as raw documents. Every status update bumps a global
    resource version so that stale writers observe a conflict the way they
    would against an API server.
    """

    def __init__(self) -> None:
        """Initialize the InMemoryCluster."""
        self._secrets: dict[tuple[str, str], dict[str, str]] = {}
        self._policies: dict[tuple[str, str], dict[str, Any]] = {}
        self._binders: dict[tuple[str, str], dict[str, Any]] = {}
        self._version = 0
        self._pending_conflicts = 0
        self.dry_run_errors: dict[str, str] = {}
        """Rejection messages for dry-runs, keyed by policy name."""
        self.dry_runs: list[dict[str, Any]] = []
        """Every document submitted for dry-run."""
        self.status_updates = 0
        """Number of successful status updates."""

    def _next_version(self) -> str:
        self._version += 1
        return str(self._version)

    def add_secret(self, namespace: str, name: str, data: dict[str, str]) -> None:
        """Add a Secret with already decoded data."""
        self._secrets[_key(namespace, name)] = dict(data)

    def add_network_policy(self, doc: dict[str, Any]) -> None:
        """Add or replace a NetworkPolicy."""
        metadata = doc["metadata"]
        stored = copy.deepcopy(doc)
        stored["metadata"]["resourceVersion"] = self._next_version()
        self._policies[_key(metadata["namespace"], metadata["name"])] = stored

    def delete_network_policy(self, namespace: str, name: str) -> None:
        """Delete a NetworkPolicy if present."""
        self._policies.pop(_key(namespace, name), None)

    def add_permission_binder(self, doc: dict[str, Any]) -> PermissionBinder:
        """Add or replace a PermissionBinder from its raw document."""
        stored = copy.deepcopy(doc)
        stored.setdefault("metadata", {})["resourceVersion"] = self._next_version()
        metadata = stored["metadata"]
        self._binders[_key(metadata.get("namespace"), metadata["name"])] = stored
        return PermissionBinder.parse_doc(copy.deepcopy(stored))

    def inject_conflicts(self, count: int) -> None:
        """Make the next status updates fail as if another writer got there first."""
        self._pending_conflicts = count

    async def get_secret(self, namespace: str, name: str) -> dict[str, str]:
        """Return the decoded data of a Secret."""
        if (data := self._secrets.get(_key(namespace, name))) is None:
            raise ObjectNotFoundError(f"Secret {namespace}/{name} not found")
        return dict(data)

    async def list_network_policies(self, namespace: str) -> list[dict[str, Any]]:
        """Return the NetworkPolicies of a namespace."""
        return [
            copy.deepcopy(doc)
            for (ns, _), doc in sorted(self._policies.items())
            if ns == namespace
        ]

    async def get_network_policy(self, namespace: str, name: str) -> dict[str, Any]:
        """Return a NetworkPolicy."""
        if (doc := self._policies.get(_key(namespace, name))) is None:
            raise ObjectNotFoundError(f"NetworkPolicy {namespace}/{name} not found")
        return copy.deepcopy(doc)

    async def dry_run_network_policy(self, doc: dict[str, Any]) -> None:
        """Validate a NetworkPolicy without storing it."""
        self.dry_runs.append(copy.deepcopy(doc))
        metadata = doc.get("metadata") or {}
        if not (name := metadata.get("name")):
            raise InputException("NetworkPolicy metadata.name is required")
        if not isinstance(doc.get("spec", {}), dict):
            raise InputException(f"NetworkPolicy {name} spec must be an object")
        if (message := self.dry_run_errors.get(name)) is not None:
            raise InputException(message)

    async def get_permission_binder(self, namespace: str, name: str) -> PermissionBinder:
        """Return the latest copy of a PermissionBinder."""
        if (doc := self._binders.get(_key(namespace, name))) is None:
            raise ObjectNotFoundError(f"PermissionBinder {namespace}/{name} not found")
        return PermissionBinder.parse_doc(copy.deepcopy(doc))

    async def list_permission_binders(self) -> list[PermissionBinder]:
        """Return all PermissionBinders."""
        return [
            PermissionBinder.parse_doc(copy.deepcopy(doc))
            for _, doc in sorted(self._binders.items())
        ]

    async def update_permission_binder_status(
        self, binder: PermissionBinder
    ) -> PermissionBinder:
        """Write the status if the resource version still matches."""
        key = _key(binder.namespace, binder.name)
        if (doc := self._binders.get(key)) is None:
            raise ObjectNotFoundError(f"PermissionBinder {binder.namespaced_name} not found")
        if self._pending_conflicts > 0:
            self._pending_conflicts -= 1
            doc["metadata"]["resourceVersion"] = self._next_version()
        current = doc["metadata"]["resourceVersion"]
        if binder.resource_version != current:
            _LOGGER.debug(
                "Conflict updating %s: have %s, current %s",
                binder.namespaced_name,
                binder.resource_version,
                current,
            )
            raise ConflictError(
                f"PermissionBinder {binder.namespaced_name} has been modified"
            )
        doc["status"] = copy.deepcopy(binder.status_doc())
        doc["metadata"]["resourceVersion"] = self._next_version()
        self.status_updates += 1
        return PermissionBinder.parse_doc(copy.deepcopy(doc))
