"""Reconcile the NetworkPolicies of a single namespace into the repository.

The reconciler clones the GitOps repository, produces manifests for the
namespace and proposes them as a pull request:

- Variant A (`new`): a template with no matching cluster policy is rendered.
- Variant B (`backup`): a cluster policy named after a template is captured.
- Variant C (`backup`): any other cluster policy is captured verbatim.

Manifests whose file already exists in the repository are never produced
again, so a second run with no template or cluster changes is a no-op. Backup
pull requests always require a manual merge.
"""

from dataclasses import dataclass, field
from enum import StrEnum
import logging
from typing import Any

from . import layout
from .context import trace_context
from .credentials import Credentials
from .exceptions import InputException, NetpolException, TemplateValidationException
from .git_provider import ProviderClient, PullRequest, PullRequestRequest
from .kustomization import ensure_index, update_index
from .manifest import (
    GitRepositorySpec,
    NetworkPolicyConfig,
    PermissionBinder,
    PolicyState,
    SOURCE_TEMPLATE,
)
from .sanitize import SanitizedError, sanitize, sanitize_error
from .status import set_pr_entry
from .template import RenderedPolicy, capture_policy, render_template
from .workflow import Workflow, require_config
from .working_copy import WorkingCopy

__all__ = [
    "Variant",
    "ReconcileResult",
    "NetworkPolicyReconciler",
]

_LOGGER = logging.getLogger(__name__)


class Variant(StrEnum):
    """The classification of a namespace change."""

    NEW = "new"
    """Every manifest was rendered from a template."""

    BACKUP = "backup"
    """At least one manifest was captured from the cluster."""


@dataclass
class ReconcileResult:
    """The outcome of reconciling one namespace."""

    namespace: str

    files: list[str] = field(default_factory=list)
    """Repository paths written for the namespace."""

    variant: Variant | None = None

    pull_request: PullRequest | None = None
    """The created pull request, or the open one that blocked a new one."""

    state: PolicyState | None = None
    """The status state written, if any."""

    @property
    def changed(self) -> bool:
        """Return true if a new pull request was created."""
        return self.state is not None


def classify(policies: list[RenderedPolicy]) -> Variant:
    """Return the variant of a set of produced manifests."""
    if all(policy.source == SOURCE_TEMPLATE for policy in policies):
        return Variant.NEW
    return Variant.BACKUP


def _policy_name(policy: dict[str, Any]) -> str:
    return (policy.get("metadata") or {}).get("name", "")


class NetworkPolicyReconciler:
    """Proposes the NetworkPolicies of namespaces as pull requests."""

    def __init__(self, workflow: Workflow) -> None:
        """Initialize NetworkPolicyReconciler."""
        self._workflow = workflow

    async def reconcile_namespace(
        self, binder: PermissionBinder, namespace: str
    ) -> ReconcileResult:
        """Reconcile one namespace.

        Raises:
            NetpolException: With a sanitized message when any step fails.
        """
        config, spec = require_config(binder)
        with trace_context("Reconcile namespace", namespace):
            credentials = await self._workflow.credentials(spec)
            try:
                return await self._reconcile(binder, config, spec, credentials, namespace)
            except SanitizedError:
                raise
            except NetpolException as err:
                raise sanitize_error(err, credentials) from None

    async def _reconcile(
        self,
        binder: PermissionBinder,
        config: NetworkPolicyConfig,
        spec: GitRepositorySpec,
        credentials: Credentials,
        namespace: str,
    ) -> ReconcileResult:
        result = ReconcileResult(namespace=namespace)
        async with self._workflow.clone(spec, credentials, namespace) as wc:
            await wc.reset_to_base(spec.base_branch)
            produced = await self._produce(wc, config, spec.cluster_name, namespace)
            if not produced:
                _LOGGER.debug("No NetworkPolicy changes for namespace %s", namespace)
                return result

            branch = layout.branch_name(spec.cluster_name, namespace)
            async with self._workflow.provider_client(spec, credentials) as client:
                existing = await client.find_pull_request(branch)
                if existing is not None and existing.is_open:
                    _LOGGER.info(
                        "Pull request #%s for namespace %s is still open, skipping",
                        existing.number,
                        namespace,
                    )
                    result.pull_request = existing
                    return result

                await client.delete_branch(branch)
                wc.checkout_branch(branch, create=True)
                result.files = await self._write(wc, spec.cluster_name, produced)
                result.variant = classify(produced)

                title = layout.pull_request_title(result.variant, namespace)
                if not await wc.commit_and_push(branch, title):
                    _LOGGER.debug("Namespace %s already up to date", namespace)
                    return result

                auto_merge = result.variant == Variant.NEW and config.auto_merge_enabled
                pr = await self._create_pull_request(
                    client,
                    PullRequestRequest(
                        title=title,
                        head=branch,
                        base=spec.base_branch,
                        body=layout.pull_request_body(
                            spec.cluster_name, namespace, result.variant
                        ),
                        labels=[config.auto_merge_label] if auto_merge else [],
                    ),
                    spec.cluster_name,
                    namespace,
                    result.variant,
                )
                binder = await self._workflow.update_status(
                    binder,
                    set_pr_entry(
                        namespace,
                        PolicyState.PR_CREATED,
                        pr.number,
                        branch,
                        pr.url,
                        self._workflow.clock(),
                    ),
                )
                if auto_merge:
                    pr = await self._auto_merge(client, pr)

            result.pull_request = pr
            result.state = PolicyState.PR_MERGED if pr.is_merged else PolicyState.PR_PENDING
            await self._workflow.update_status(
                binder,
                set_pr_entry(
                    namespace,
                    result.state,
                    pr.number,
                    branch,
                    pr.url,
                    self._workflow.clock(),
                ),
            )
        _LOGGER.info(
            "Namespace %s: %s pull request #%s is %s",
            namespace,
            result.variant,
            pr.number,
            result.state,
        )
        return result

    async def _produce(
        self,
        wc: WorkingCopy,
        config: NetworkPolicyConfig,
        cluster_name: str,
        namespace: str,
    ) -> list[RenderedPolicy]:
        """Return the manifests missing from the repository for a namespace."""
        templates = await wc.list_yaml_files(config.template_dir)
        policies = {
            _policy_name(policy): policy
            for policy in await self._workflow.cluster.list_network_policies(namespace)
        }
        backup = config.should_backup(namespace)
        produced: list[RenderedPolicy] = []
        attributed: set[str] = set()

        for template_name in templates:
            name = layout.template_policy_name(namespace, template_name)
            attributed.add(name)
            path = layout.template_file_path(cluster_name, namespace, template_name)
            if await wc.exists(path):
                continue
            if (live := policies.get(name)) is not None:
                if backup:
                    produced.append(
                        capture_policy(live, cluster_name, namespace, template_name)
                    )
                continue
            try:
                produced.append(
                    await render_template(
                        self._workflow.cluster,
                        wc,
                        config.template_dir,
                        template_name,
                        namespace,
                        cluster_name,
                    )
                )
            except TemplateValidationException as err:
                self._workflow.metrics.template_validation_error(cluster_name, template_name)
                _LOGGER.error(
                    "Template %s rejected for namespace %s: %s",
                    template_name,
                    namespace,
                    err,
                )
            except InputException as err:
                _LOGGER.error("Unable to load template %s: %s", template_name, err)

        if backup:
            for name in sorted(policies):
                if name in attributed:
                    continue
                captured = capture_policy(policies[name], cluster_name, namespace)
                if not await wc.exists(captured.path):
                    produced.append(captured)
        return produced

    async def _write(
        self, wc: WorkingCopy, cluster_name: str, produced: list[RenderedPolicy]
    ) -> list[str]:
        index_path = layout.kustomization_path(cluster_name)
        await ensure_index(wc, index_path)
        paths = []
        for policy in produced:
            await wc.write_file(policy.path, policy.content)
            await update_index(wc, index_path, policy.path, add=True)
            paths.append(policy.path)
        return paths

    async def _create_pull_request(
        self,
        client: ProviderClient,
        request: PullRequestRequest,
        cluster_name: str,
        namespace: str,
        variant: Variant,
    ) -> PullRequest:
        metrics = self._workflow.metrics
        try:
            pr = await client.create_pull_request(request)
        except NetpolException as err:
            metrics.pr_creation_error(cluster_name, namespace, variant, err)
            raise
        metrics.pr_created(cluster_name, namespace, variant)
        _LOGGER.info("Created pull request #%s: %s", pr.number, sanitize(pr.url))
        return pr

    async def _auto_merge(self, client: ProviderClient, pr: PullRequest) -> PullRequest:
        """Merge a pull request and poll with backoff for its final state."""
        options = self._workflow.options
        await self._workflow.sleep(options.pre_merge_delay)
        try:
            await client.merge_pull_request(pr.number)
        except NetpolException as err:
            _LOGGER.warning("Auto-merge of pull request #%s failed: %s", pr.number, err)
        delay = options.merge_poll_delay
        for _ in range(options.merge_poll_attempts):
            await self._workflow.sleep(delay)
            delay *= 2
            try:
                current = await client.find_pull_request(pr.branch)
            except NetpolException as err:
                _LOGGER.debug("Polling pull request #%s failed: %s", pr.number, err)
                continue
            if current is None or current.number != pr.number:
                continue
            pr = current
            if pr.is_merged:
                break
        return pr
