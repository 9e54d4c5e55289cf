"""One reconciliation cycle of NetworkPolicy management for a PermissionBinder.

The cycle runs the workflows in order and never lets a failing step stop
the following ones:

1. Warn when more than one PermissionBinder enables the feature.
2. Drop namespaces excluded from NetworkPolicy operations.
3. Reconcile namespaces without a status entry, in batches.
4. Propose removals for namespaces no longer desired.
5. Run the periodic sweep when the reconciliation interval has elapsed.
6. Apply the status retention policy.
7. Refresh the pending pull request gauge.
"""

from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
import logging
from typing import Any

from .batch import BatchProcessor, BatchResult
from .config import status_retention
from .context import trace_context
from .exceptions import NetpolException
from .manifest import PermissionBinder
from .periodic import PeriodicSweep, SweepResult, check_multiple_binders, sweep_due
from .reconciler import NetworkPolicyReconciler
from .removal import RemovalResult, RemovalWorkflow
from .status import cleanup_entries
from .workflow import Workflow, require_config

__all__ = [
    "CycleResult",
    "NetworkPolicyController",
]

_LOGGER = logging.getLogger(__name__)


@dataclass
class CycleResult:
    """What each step of a cycle did."""

    namespaces: list[str] = field(default_factory=list)
    """Desired namespaces after exclusions."""

    enabled_binders: int = 0
    batch: BatchResult | None = None
    removal: RemovalResult | None = None
    sweep: SweepResult | None = None

    errors: dict[str, str] = field(default_factory=dict)
    """Sanitized message by failed step."""


class NetworkPolicyController:
    """Runs reconciliation cycles for PermissionBinders."""

    def __init__(self, workflow: Workflow) -> None:
        """Initialize NetworkPolicyController."""
        self._workflow = workflow
        reconciler = NetworkPolicyReconciler(workflow)
        self._batch = BatchProcessor(workflow, reconciler)
        self._removal = RemovalWorkflow(workflow)
        self._sweep = PeriodicSweep(workflow, reconciler)

    async def _step(
        self,
        name: str,
        result: CycleResult,
        func: Callable[..., Awaitable[Any]],
        *args: Any,
    ) -> Any:
        try:
            with trace_context(name):
                return await func(*args)
        except NetpolException as err:
            _LOGGER.error("NetworkPolicy %s failed: %s", name, err)
            result.errors[name] = str(err)
            return None

    async def _latest(self, binder: PermissionBinder) -> PermissionBinder:
        return await self._workflow.cluster.get_permission_binder(
            binder.namespace or "", binder.name
        )

    async def reconcile(
        self, binder: PermissionBinder, namespaces: Iterable[str]
    ) -> CycleResult:
        """Run one cycle for the desired namespaces of a binder."""
        result = CycleResult()
        if not binder.enabled:
            _LOGGER.debug("NetworkPolicy management disabled for %s", binder.namespaced_name)
            return result
        config, spec = require_config(binder)
        result.namespaces = [ns for ns in namespaces if not config.is_excluded(ns)]
        _LOGGER.info(
            "Reconciling NetworkPolicies of %d namespaces for %s",
            len(result.namespaces),
            binder.namespaced_name,
        )

        workflow = self._workflow
        with trace_context("Cycle", binder.namespaced_name):
            result.enabled_binders = (
                await self._step(
                    "binder validation",
                    result,
                    check_multiple_binders,
                    workflow.cluster,
                    workflow.metrics,
                )
                or 0
            )
            result.batch = await self._step(
                "batch", result, self._batch.process, binder, result.namespaces
            )
            binder = await self._latest(binder)
            result.removal = await self._step(
                "removal", result, self._removal.process, binder, result.namespaces
            )
            binder = await self._latest(binder)
            if sweep_due(binder, workflow.clock()):
                result.sweep = await self._step(
                    "periodic sweep", result, self._sweep.run, binder, result.namespaces
                )
            else:
                _LOGGER.debug("Periodic sweep not due for %s", binder.namespaced_name)
            await self._step(
                "cleanup",
                result,
                workflow.update_status,
                binder,
                cleanup_entries(
                    result.namespaces, status_retention(config), workflow.clock()
                ),
            )
            binder = await self._latest(binder)
            workflow.metrics.refresh_pending(spec.cluster_name, binder.status)
        return result
