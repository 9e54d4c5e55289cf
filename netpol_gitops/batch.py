"""Process namespaces in paced batches.

Delays between namespaces and between batches are blocking waits that keep
the provider API under its rate limits and let pull based GitOps appliers
catch up before the next wave of pull requests.
"""

from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
import logging

from .config import BatchSettings
from .exceptions import NetpolException
from .manifest import PermissionBinder, PolicyState
from .reconciler import NetworkPolicyReconciler, ReconcileResult
from .status import set_error
from .workflow import Workflow, require_config

__all__ = [
    "BatchResult",
    "BatchProcessor",
    "pending_namespaces",
    "chunks",
]

_LOGGER = logging.getLogger(__name__)


@dataclass
class BatchResult:
    """Outcome of one batch run."""

    processed: list[ReconcileResult] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    """Sanitized error message by namespace."""

    skipped: list[str] = field(default_factory=list)
    """Namespaces already tracked in status."""


def pending_namespaces(
    binder: PermissionBinder, namespaces: Iterable[str]
) -> tuple[list[str], list[str]]:
    """Split namespaces into those to process and those already tracked.

    A namespace whose entry is `removed` is processed again since it has
    re-entered the desired set.
    """
    pending, skipped = [], []
    for namespace in namespaces:
        entry = binder.status.get(namespace)
        if entry is None or entry.state == PolicyState.REMOVED:
            pending.append(namespace)
        else:
            skipped.append(namespace)
    return pending, skipped


def chunks(items: list[str], size: int) -> Iterator[list[str]]:
    """Yield consecutive slices of at most `size` items."""
    for start in range(0, len(items), max(size, 1)):
        yield items[start : start + size]


class BatchProcessor:
    """Runs the reconciler over namespaces without an existing status entry."""

    def __init__(
        self, workflow: Workflow, reconciler: NetworkPolicyReconciler | None = None
    ) -> None:
        """Initialize BatchProcessor."""
        self._workflow = workflow
        self._reconciler = reconciler or NetworkPolicyReconciler(workflow)

    async def process(
        self, binder: PermissionBinder, namespaces: Iterable[str]
    ) -> BatchResult:
        """Reconcile every untracked namespace, continuing past failures."""
        config, _ = require_config(binder)
        settings = BatchSettings.from_config(config)
        pending, skipped = pending_namespaces(binder, namespaces)
        result = BatchResult(skipped=skipped)
        if skipped:
            _LOGGER.debug("Skipping %d namespaces already tracked", len(skipped))
        batches = list(chunks(pending, settings.batch_size))
        for index, batch in enumerate(batches):
            _LOGGER.info(
                "Processing batch %d/%d with %d namespaces",
                index + 1,
                len(batches),
                len(batch),
            )
            for position, namespace in enumerate(batch):
                await self._process_one(binder, namespace, result)
                if position < len(batch) - 1:
                    await self._workflow.sleep(settings.sleep_between_namespaces)
            if index < len(batches) - 1:
                _LOGGER.debug(
                    "Waiting %s before the next batch", settings.sleep_between_batches
                )
                await self._workflow.sleep(settings.sleep_between_batches)
        return result

    async def _process_one(
        self, binder: PermissionBinder, namespace: str, result: BatchResult
    ) -> None:
        try:
            result.processed.append(
                await self._reconciler.reconcile_namespace(binder, namespace)
            )
        except NetpolException as err:
            _LOGGER.error("Failed to reconcile namespace %s: %s", namespace, err)
            result.failed[namespace] = str(err)
            try:
                await self._workflow.update_status(binder, set_error(namespace, str(err)))
            except NetpolException as status_err:
                _LOGGER.warning(
                    "Failed to record error for namespace %s: %s", namespace, status_err
                )
