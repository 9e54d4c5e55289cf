"""Periodic sweep over managed namespaces.

The sweep runs at most once per reconciliation interval and only observes:
it refreshes the state of tracked pull requests, reports drift between the
cluster and the repository, reprocesses managed namespaces to pick up new
templates and flags pull requests left open for too long.
"""

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
import logging

from .cluster import Cluster
from .config import reconciliation_interval, stale_pr_threshold
from .context import trace_context
from .drift import DriftResult, check_namespace_drift
from .exceptions import NetpolException
from .manifest import OPEN_STATES, PermissionBinder, PolicyState, parse_time
from .metrics import Metrics
from .reconciler import NetworkPolicyReconciler
from .sanitize import sanitize_error
from .status import (
    StatusMutation,
    mark_removed,
    mark_stale_entries,
    set_last_reconciliation,
    set_state,
)
from .workflow import Workflow, require_config

__all__ = [
    "SweepResult",
    "PeriodicSweep",
    "sweep_due",
    "check_multiple_binders",
]

_LOGGER = logging.getLogger(__name__)

_REFRESH_STATES = (*OPEN_STATES, PolicyState.PR_STALE, PolicyState.PR_REMOVAL)


@dataclass
class SweepResult:
    """Observations of one periodic sweep."""

    refreshed: dict[str, PolicyState] = field(default_factory=dict)
    """New state by namespace for pull requests that changed."""

    drift: list[DriftResult] = field(default_factory=list)
    """Every cluster policy compared with its repository file."""

    reprocessed: list[str] = field(default_factory=list)

    errors: list[str] = field(default_factory=list)
    """Sanitized messages of the steps that failed."""

    @property
    def drifted(self) -> list[DriftResult]:
        """Return the policies that differ from the repository."""
        return [result for result in self.drift if not result.identical]


def sweep_due(binder: PermissionBinder, now: datetime) -> bool:
    """Return true if the periodic sweep should run."""
    config, _ = require_config(binder)
    last = parse_time(binder.status.last_network_policy_reconciliation)
    if last is None:
        return True
    return now - last >= reconciliation_interval(config)


async def check_multiple_binders(cluster: Cluster, metrics: Metrics) -> int:
    """Warn when more than one PermissionBinder enables NetworkPolicy management.

    Returns the number of enabled resources.
    """
    enabled = [binder for binder in await cluster.list_permission_binders() if binder.enabled]
    if len(enabled) > 1:
        metrics.multiple_crs_warning.inc()
        _LOGGER.warning(
            "NetworkPolicy management is enabled in %d PermissionBinders (%s), "
            "only one should enable it",
            len(enabled),
            ", ".join(sorted(binder.namespaced_name for binder in enabled)),
        )
    return len(enabled)


class PeriodicSweep:
    """Drift detection, pull request refresh and stale sweep."""

    def __init__(
        self, workflow: Workflow, reconciler: NetworkPolicyReconciler | None = None
    ) -> None:
        """Initialize PeriodicSweep."""
        self._workflow = workflow
        self._reconciler = reconciler or NetworkPolicyReconciler(workflow)

    async def run(self, binder: PermissionBinder, desired: Iterable[str]) -> SweepResult:
        """Run every step of the sweep; a failing step does not stop the others."""
        config, _ = require_config(binder)
        desired = list(desired)
        result = SweepResult()
        with trace_context("Periodic sweep", binder.namespaced_name):
            for step in (self._refresh, self._check_drift):
                try:
                    await step(binder, result)
                except NetpolException as err:
                    _LOGGER.error("Periodic sweep step failed: %s", err)
                    result.errors.append(str(err))
                binder = await self._latest(binder)

            await self._reprocess(binder, desired, result)

            now = self._workflow.clock()
            for mutation in (
                mark_stale_entries(stale_pr_threshold(config), now),
                set_last_reconciliation(now),
            ):
                await self._update(binder, mutation, result)
        return result

    async def _latest(self, binder: PermissionBinder) -> PermissionBinder:
        return await self._workflow.cluster.get_permission_binder(
            binder.namespace or "", binder.name
        )

    async def _update(
        self, binder: PermissionBinder, mutation: StatusMutation, result: SweepResult
    ) -> None:
        try:
            await self._workflow.update_status(binder, mutation)
        except NetpolException as err:
            _LOGGER.error("Failed to update status of %s: %s", binder.namespaced_name, err)
            result.errors.append(str(err))

    async def _refresh(self, binder: PermissionBinder, result: SweepResult) -> None:
        """Follow tracked pull requests to their merged or closed state."""
        entries = [
            entry
            for entry in binder.status.network_policies
            if entry.state in _REFRESH_STATES and entry.pr_branch
        ]
        if not entries:
            return
        _, spec = require_config(binder)
        credentials = await self._workflow.credentials(spec)
        try:
            async with self._workflow.provider_client(spec, credentials) as client:
                for entry in entries:
                    pr = await client.find_pull_request(entry.pr_branch or "")
                    if pr is None or pr.number != entry.pr_number or pr.is_open:
                        continue
                    if entry.state == PolicyState.PR_REMOVAL:
                        state = PolicyState.REMOVED
                        mutation = mark_removed([entry.namespace], self._workflow.clock())
                    elif pr.is_merged:
                        state = PolicyState.PR_MERGED
                        mutation = set_state(entry.namespace, state)
                    else:
                        _LOGGER.warning(
                            "Pull request #%s for namespace %s was closed without merging",
                            pr.number,
                            entry.namespace,
                        )
                        continue
                    _LOGGER.info(
                        "Pull request #%s for namespace %s is %s",
                        pr.number,
                        entry.namespace,
                        pr.state,
                    )
                    await self._update(binder, mutation, result)
                    result.refreshed[entry.namespace] = state
        except NetpolException as err:
            raise sanitize_error(err, credentials) from None

    async def _check_drift(self, binder: PermissionBinder, result: SweepResult) -> None:
        """Compare the policies of merged namespaces with the repository."""
        namespaces = binder.status.namespaces_in_state(PolicyState.PR_MERGED)
        if not namespaces:
            return
        _, spec = require_config(binder)
        options = self._workflow.options
        size = max(options.drift_batch_size, 1)
        credentials = await self._workflow.credentials(spec)
        try:
            async with self._workflow.clone(spec, credentials, "drift") as wc:
                await wc.reset_to_base(spec.base_branch)
                for start in range(0, len(namespaces), size):
                    if start:
                        await self._workflow.sleep(options.drift_batch_delay)
                    for namespace in namespaces[start : start + size]:
                        drift = await check_namespace_drift(
                            self._workflow.cluster, wc, spec.cluster_name, namespace
                        )
                        for item in drift:
                            if not item.identical:
                                self._workflow.metrics.drift(spec.cluster_name, namespace)
                        result.drift.extend(drift)
        except NetpolException as err:
            raise sanitize_error(err, credentials) from None
        if drifted := result.drifted:
            _LOGGER.warning("Detected drift in %d NetworkPolicies", len(drifted))

    async def _reprocess(
        self, binder: PermissionBinder, desired: list[str], result: SweepResult
    ) -> None:
        """Reconcile merged namespaces again to pick up template changes."""
        for namespace in desired:
            entry = binder.status.get(namespace)
            if entry is None or entry.state != PolicyState.PR_MERGED:
                continue
            try:
                reconciled = await self._reconciler.reconcile_namespace(binder, namespace)
            except NetpolException as err:
                _LOGGER.error("Failed to reprocess namespace %s: %s", namespace, err)
                result.errors.append(str(err))
                continue
            result.reprocessed.append(namespace)
            if reconciled.changed:
                binder = await self._latest(binder)
