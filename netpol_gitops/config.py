"""Configuration objects and defaults for netpol-gitops."""

from dataclasses import dataclass
from datetime import timedelta
import logging
import re

from .exceptions import InputException
from .manifest import NetworkPolicyConfig

_LOGGER = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 5
DEFAULT_SLEEP_BETWEEN_NAMESPACES = timedelta(seconds=3)
DEFAULT_SLEEP_BETWEEN_BATCHES = timedelta(seconds=60)
DEFAULT_RECONCILIATION_INTERVAL = timedelta(hours=1)
DEFAULT_STATUS_RETENTION_DAYS = 30
DEFAULT_STALE_PR_THRESHOLD = timedelta(days=30)

_DURATION_RE = re.compile(r"(\d+(?:\.\d+)?)(ns|us|µs|ms|s|m|h|d)")
_UNIT_SECONDS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1,
    "m": 60,
    "h": 3600,
    "d": 86400,
}


def parse_duration(value: str) -> timedelta:
    """Parse a duration string such as `90s`, `1h30m` or `30d`."""
    text = value.strip()
    if text == "0":
        return timedelta()
    if not text:
        raise InputException("Empty duration")
    pos = 0
    total = timedelta()
    for match in _DURATION_RE.finditer(text):
        if match.start() != pos:
            raise InputException(f"Invalid duration '{value}'")
        total += timedelta(seconds=float(match.group(1)) * _UNIT_SECONDS[match.group(2)])
        pos = match.end()
    if pos != len(text):
        raise InputException(f"Invalid duration '{value}'")
    return total


def duration_or_default(value: str | None, default: timedelta, name: str) -> timedelta:
    """Parse a duration, falling back to the default when unset or invalid."""
    if not value:
        return default
    try:
        return parse_duration(value)
    except InputException as err:
        _LOGGER.warning("Invalid %s, using default %s: %s", name, default, err)
        return default


@dataclass
class BatchSettings:
    """Resolved batch pacing settings."""

    batch_size: int = DEFAULT_BATCH_SIZE
    sleep_between_namespaces: timedelta = DEFAULT_SLEEP_BETWEEN_NAMESPACES
    sleep_between_batches: timedelta = DEFAULT_SLEEP_BETWEEN_BATCHES

    @classmethod
    def from_config(cls, config: NetworkPolicyConfig) -> "BatchSettings":
        """Resolve the batch settings from the parent resource configuration."""
        if (spec := config.batch_processing) is None:
            return cls()
        return cls(
            batch_size=spec.batch_size if spec.batch_size > 0 else DEFAULT_BATCH_SIZE,
            sleep_between_namespaces=duration_or_default(
                spec.sleep_between_namespaces,
                DEFAULT_SLEEP_BETWEEN_NAMESPACES,
                "sleepBetweenNamespaces",
            ),
            sleep_between_batches=duration_or_default(
                spec.sleep_between_batches,
                DEFAULT_SLEEP_BETWEEN_BATCHES,
                "sleepBetweenBatches",
            ),
        )


def reconciliation_interval(config: NetworkPolicyConfig) -> timedelta:
    """Return the interval between periodic sweeps."""
    return duration_or_default(
        config.reconciliation_interval,
        DEFAULT_RECONCILIATION_INTERVAL,
        "reconciliationInterval",
    )


def stale_pr_threshold(config: NetworkPolicyConfig) -> timedelta:
    """Return the age after which open pull requests are flagged stale."""
    return duration_or_default(
        config.stale_pr_threshold, DEFAULT_STALE_PR_THRESHOLD, "stalePRThreshold"
    )


def status_retention(config: NetworkPolicyConfig) -> timedelta:
    """Return how long status entries of removed namespaces are kept."""
    days = config.status_retention_days
    if days <= 0:
        days = DEFAULT_STATUS_RETENTION_DAYS
    return timedelta(days=days)


@dataclass
class ReconcilerOptions:
    """Timing knobs for the reconciler that are not part of the resource."""

    pre_merge_delay: timedelta = timedelta(seconds=2)
    """Wait for the provider to process a new pull request before merging."""

    merge_poll_attempts: int = 3
    """Number of polls to observe the final state after a merge attempt."""

    merge_poll_delay: timedelta = timedelta(seconds=1)
    """Base delay between merge polls, doubled on each attempt."""

    drift_batch_size: int = 20
    """Number of namespaces checked for drift before pausing."""

    drift_batch_delay: timedelta = timedelta(seconds=30)
    """Pause between drift check batches."""

    status_retry_attempts: int = 3
    """Attempts for a conditional status update."""

    status_retry_delay: timedelta = timedelta(milliseconds=200)
    """Wait after a status update conflict."""

    @classmethod
    def immediate(cls) -> "ReconcilerOptions":
        """Return options with every delay disabled."""
        return cls(
            pre_merge_delay=timedelta(),
            merge_poll_delay=timedelta(),
            drift_batch_delay=timedelta(),
            status_retry_delay=timedelta(),
        )
