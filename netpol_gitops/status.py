"""Conditional updates of the PermissionBinder NetworkPolicy status.

The status list is written concurrently by event-driven reconciliation, the
periodic sweep and the removal workflow. Every write re-reads the latest copy
of the resource, applies a mutation and submits it conditioned on the resource
version, retrying a bounded number of times on conflict.
"""

from collections.abc import Callable, Iterable
from datetime import datetime, timedelta, timezone
import logging

from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from .cluster import Cluster
from .config import ReconcilerOptions
from .exceptions import ConflictError, StatusUpdateException
from .manifest import (
    BinderStatus,
    NetworkPolicyStatus,
    PermissionBinder,
    PolicyState,
    OPEN_STATES,
    format_time,
    parse_time,
)

__all__ = [
    "StatusMutation",
    "update_status",
    "set_pr_entry",
    "set_error",
    "set_state",
    "cleanup_entries",
    "mark_stale_entries",
    "mark_removed",
    "set_last_reconciliation",
]

_LOGGER = logging.getLogger(__name__)

StatusMutation = Callable[[BinderStatus], bool]
"""Mutates the status in place, returning false when nothing changed."""


def utcnow() -> datetime:
    """Return the current time in UTC."""
    return datetime.now(tz=timezone.utc)


async def update_status(
    cluster: Cluster,
    binder: PermissionBinder,
    mutate: StatusMutation,
    options: ReconcilerOptions | None = None,
) -> PermissionBinder:
    """Apply a mutation to the latest status and write it conditionally.

    Returns the updated resource, or the latest copy when the mutation made
    no change.

    Raises:
        StatusUpdateException: If every attempt lost a conflict.
    """
    options = options or ReconcilerOptions()
    retrying = AsyncRetrying(
        stop=stop_after_attempt(options.status_retry_attempts),
        wait=wait_fixed(options.status_retry_delay.total_seconds()),
        retry=retry_if_exception_type(ConflictError),
        reraise=True,
    )
    try:
        async for attempt in retrying:
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    _LOGGER.debug(
                        "Retrying status update of %s (attempt %s)",
                        binder.namespaced_name,
                        attempt.retry_state.attempt_number,
                    )
                fresh = await cluster.get_permission_binder(
                    binder.namespace or "", binder.name
                )
                if not mutate(fresh.status):
                    return fresh
                return await cluster.update_permission_binder_status(fresh)
    except ConflictError as err:
        raise StatusUpdateException(
            f"Failed to update status of {binder.namespaced_name} after "
            f"{options.status_retry_attempts} attempts: {err}"
        ) from err
    raise StatusUpdateException(f"Failed to update status of {binder.namespaced_name}")


def _upsert(status: BinderStatus, namespace: str) -> NetworkPolicyStatus:
    if (entry := status.get(namespace)) is None:
        entry = NetworkPolicyStatus(namespace=namespace, state="")
        status.network_policies.append(entry)
    return entry


def set_pr_entry(
    namespace: str,
    state: PolicyState,
    pr_number: int,
    pr_branch: str,
    pr_url: str,
    now: datetime | None = None,
) -> StatusMutation:
    """Return a mutation recording a pull request for a namespace."""

    def mutate(status: BinderStatus) -> bool:
        timestamp = format_time(now or utcnow())
        entry = _upsert(status, namespace)
        if entry.state == PolicyState.REMOVED:
            entry.removed_at = None
        if state == PolicyState.PR_REMOVAL:
            entry.removed_at = timestamp
        elif entry.pr_number != pr_number or entry.created_at is None:
            entry.created_at = timestamp
        entry.state = state
        entry.pr_number = pr_number
        entry.pr_branch = pr_branch
        entry.pr_url = pr_url
        entry.error_message = None
        return True

    return mutate


def set_error(namespace: str, message: str) -> StatusMutation:
    """Return a mutation recording the last error of an existing entry."""

    def mutate(status: BinderStatus) -> bool:
        if (entry := status.get(namespace)) is None or entry.error_message == message:
            return False
        entry.error_message = message
        return True

    return mutate


def set_state(namespace: str, state: PolicyState, now: datetime | None = None) -> StatusMutation:
    """Return a mutation changing the state of an existing entry."""

    def mutate(status: BinderStatus) -> bool:
        if (entry := status.get(namespace)) is None or entry.state == state:
            return False
        entry.state = state
        if state == PolicyState.REMOVED and entry.removed_at is None:
            entry.removed_at = format_time(now or utcnow())
        return True

    return mutate


def cleanup_entries(
    desired: Iterable[str], retention: timedelta, now: datetime | None = None
) -> StatusMutation:
    """Return a mutation applying the retention policy.

    Entries of desired namespaces are untouched. Entries already removed are
    pruned once older than the retention. Other entries of namespaces no longer
    desired are marked removed, except those tracked by a removal pull request.
    """
    keep = set(desired)

    def mutate(status: BinderStatus) -> bool:
        current = now or utcnow()
        cutoff = current - retention
        result = []
        changed = False
        for entry in status.network_policies:
            if entry.namespace in keep:
                result.append(entry)
                continue
            if entry.state == PolicyState.REMOVED:
                removed_at = parse_time(entry.removed_at)
                if removed_at is not None and removed_at > cutoff:
                    result.append(entry)
                else:
                    _LOGGER.info(
                        "Pruning status of namespace %s removed at %s",
                        entry.namespace,
                        entry.removed_at,
                    )
                    changed = True
                continue
            if entry.state != PolicyState.PR_REMOVAL:
                _LOGGER.info("Marking namespace %s as removed", entry.namespace)
                entry.state = PolicyState.REMOVED
                entry.removed_at = format_time(current)
                changed = True
            result.append(entry)
        status.network_policies = result
        return changed

    return mutate


def mark_stale_entries(threshold: timedelta, now: datetime | None = None) -> StatusMutation:
    """Return a mutation flagging open pull requests older than the threshold."""

    def mutate(status: BinderStatus) -> bool:
        cutoff = (now or utcnow()) - threshold
        changed = False
        for entry in status.network_policies:
            if entry.state not in OPEN_STATES:
                continue
            created_at = parse_time(entry.created_at)
            if created_at is None or created_at >= cutoff:
                continue
            _LOGGER.warning(
                "Pull request #%s for namespace %s is stale (created %s)",
                entry.pr_number,
                entry.namespace,
                entry.created_at,
            )
            entry.state = PolicyState.PR_STALE
            changed = True
        return changed

    return mutate


def mark_removed(namespaces: Iterable[str], now: datetime | None = None) -> StatusMutation:
    """Return a mutation completing the removal of namespaces."""
    targets = set(namespaces)

    def mutate(status: BinderStatus) -> bool:
        timestamp = format_time(now or utcnow())
        changed = False
        for entry in status.network_policies:
            if entry.namespace in targets and entry.state != PolicyState.REMOVED:
                entry.state = PolicyState.REMOVED
                entry.removed_at = timestamp
                changed = True
        return changed

    return mutate


def set_last_reconciliation(now: datetime | None = None) -> StatusMutation:
    """Return a mutation stamping the time of the periodic sweep."""

    def mutate(status: BinderStatus) -> bool:
        status.last_network_policy_reconciliation = format_time(now or utcnow())
        return True

    return mutate
