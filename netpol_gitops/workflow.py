"""Dependencies shared by the NetworkPolicy workflows."""

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta

import httpx

from . import working_copy
from .cluster import Cluster
from .config import ReconcilerOptions
from .credentials import Credentials, resolve_credentials
from .exceptions import InputException
from .git_provider import ProviderClient, new_client
from .manifest import GitRepositorySpec, NetworkPolicyConfig, PermissionBinder
from .metrics import Metrics
from .status import StatusMutation, update_status, utcnow

__all__ = [
    "Workflow",
    "require_config",
]


async def _sleep(delay: timedelta) -> None:
    await asyncio.sleep(delay.total_seconds())


@dataclass
class Workflow:
    """Collaborators of the reconciler, removal and periodic workflows."""

    cluster: Cluster
    """Access to Secrets, NetworkPolicies and the PermissionBinder status."""

    metrics: Metrics = field(default_factory=Metrics)
    """Observability sink."""

    options: ReconcilerOptions = field(default_factory=ReconcilerOptions)
    """Timing knobs."""

    transport: httpx.AsyncBaseTransport | None = None
    """HTTP transport for provider clients, replaced in tests."""

    clock: Callable[[], datetime] = utcnow
    """Source of the current time."""

    sleep: Callable[[timedelta], Awaitable[None]] = _sleep
    """Blocking wait used for pacing."""

    async def credentials(self, spec: GitRepositorySpec) -> Credentials:
        """Resolve the credentials of the repository."""
        return await resolve_credentials(self.cluster, spec.credentials_secret_ref)

    def provider_client(
        self, spec: GitRepositorySpec, credentials: Credentials
    ) -> ProviderClient:
        """Return a client for the pull request API of the repository."""
        return new_client(spec, credentials, transport=self.transport)

    @asynccontextmanager
    async def clone(
        self, spec: GitRepositorySpec, credentials: Credentials, name: str
    ) -> AsyncIterator[working_copy.WorkingCopy]:
        """Clone the repository for the duration of the context."""
        async with working_copy.clone(
            spec.url,
            credentials,
            tls_verify=spec.git_tls_verify,
            metrics=self.metrics,
            name=name,
        ) as wc:
            yield wc

    async def update_status(
        self, binder: PermissionBinder, mutate: StatusMutation
    ) -> PermissionBinder:
        """Apply a status mutation with conditional retries."""
        return await update_status(self.cluster, binder, mutate, self.options)


def require_config(binder: PermissionBinder) -> tuple[NetworkPolicyConfig, GitRepositorySpec]:
    """Return the NetworkPolicy configuration and repository of a binder."""
    if (config := binder.network_policy) is None:
        raise InputException(f"{binder.namespaced_name} has no networkPolicy configuration")
    return config, config.require_git_repository()
