"""Propose the deletion of NetworkPolicies for namespaces leaving the desired set."""

from collections.abc import Iterable
from dataclasses import dataclass, field
import logging
from pathlib import PurePosixPath

from . import layout
from .context import trace_context
from .credentials import Credentials
from .exceptions import NetpolException
from .git_provider import PullRequest, PullRequestRequest
from .kustomization import update_index
from .manifest import GitRepositorySpec, PermissionBinder, PolicyState
from .sanitize import SanitizedError, sanitize_error
from .status import set_pr_entry
from .workflow import Workflow, require_config

__all__ = [
    "RemovalResult",
    "RemovalWorkflow",
    "removal_candidates",
]

_LOGGER = logging.getLogger(__name__)

_SETTLED_STATES = (PolicyState.REMOVED, PolicyState.PR_REMOVAL)


@dataclass
class RemovalResult:
    """Outcome of the removal workflow."""

    removed: dict[str, PullRequest] = field(default_factory=dict)
    """Removal pull request by namespace."""

    unchanged: list[str] = field(default_factory=list)
    """Namespaces with no files left in the repository."""

    failed: dict[str, str] = field(default_factory=dict)
    """Sanitized error message by namespace."""


def removal_candidates(binder: PermissionBinder, desired: Iterable[str]) -> list[str]:
    """Return tracked namespaces that are no longer desired."""
    keep = set(desired)
    return [
        entry.namespace
        for entry in binder.status.network_policies
        if entry.namespace not in keep and entry.state not in _SETTLED_STATES
    ]


class RemovalWorkflow:
    """Opens one deletion pull request per namespace removed from the desired set."""

    def __init__(self, workflow: Workflow) -> None:
        """Initialize RemovalWorkflow."""
        self._workflow = workflow

    async def process(
        self, binder: PermissionBinder, desired: Iterable[str]
    ) -> RemovalResult:
        """Remove every namespace no longer desired, continuing past failures."""
        result = RemovalResult()
        candidates = removal_candidates(binder, desired)
        if not candidates:
            return result
        _, spec = require_config(binder)
        _LOGGER.info("Removing NetworkPolicies of %d namespaces", len(candidates))
        for namespace in candidates:
            try:
                if (pr := await self.remove_namespace(binder, namespace)) is None:
                    result.unchanged.append(namespace)
                else:
                    result.removed[namespace] = pr
            except NetpolException as err:
                _LOGGER.error(
                    "Failed to remove NetworkPolicies of %s/%s: %s",
                    spec.cluster_name,
                    namespace,
                    err,
                )
                result.failed[namespace] = str(err)
        return result

    async def remove_namespace(
        self, binder: PermissionBinder, namespace: str
    ) -> PullRequest | None:
        """Open a pull request deleting the files of a namespace.

        Returns None when the repository holds no files for the namespace.
        """
        _, spec = require_config(binder)
        with trace_context("Remove namespace", namespace):
            credentials = await self._workflow.credentials(spec)
            try:
                return await self._remove(binder, spec, credentials, namespace)
            except SanitizedError:
                raise
            except NetpolException as err:
                raise sanitize_error(err, credentials) from None

    async def _remove(
        self,
        binder: PermissionBinder,
        spec: GitRepositorySpec,
        credentials: Credentials,
        namespace: str,
    ) -> PullRequest | None:
        cluster_name = spec.cluster_name
        branch = layout.removal_branch_name(cluster_name, namespace)
        ns_dir = layout.namespace_dir(cluster_name, namespace)
        index_path = layout.kustomization_path(cluster_name)
        title = layout.removal_title(namespace)

        async with self._workflow.clone(spec, credentials, f"{namespace}-removal") as wc:
            await wc.reset_to_base(spec.base_branch)
            files = await wc.list_yaml_files(ns_dir)
            if not files:
                _LOGGER.info("No NetworkPolicy files for namespace %s", namespace)
                return None
            async with self._workflow.provider_client(spec, credentials) as client:
                await client.delete_branch(branch)
                wc.checkout_branch(branch, create=True)
                for name in files:
                    path = str(PurePosixPath(ns_dir) / name)
                    await wc.remove_file(path)
                    if await wc.exists(index_path):
                        await update_index(wc, index_path, path, add=False)
                await wc.remove_empty_dir(ns_dir)
                if not await wc.commit_and_push(branch, title):
                    return None
                pr = await client.create_pull_request(
                    PullRequestRequest(
                        title=title,
                        head=branch,
                        base=spec.base_branch,
                        body=layout.removal_body(cluster_name, namespace),
                    )
                )
        _LOGGER.info(
            "Created removal pull request #%s for namespace %s", pr.number, namespace
        )
        await self._workflow.update_status(
            binder,
            set_pr_entry(
                namespace,
                PolicyState.PR_REMOVAL,
                pr.number,
                branch,
                pr.url,
                self._workflow.clock(),
            ),
        )
        return pr
