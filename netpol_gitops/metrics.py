"""Prometheus metrics for the NetworkPolicy workflows.

A single `Metrics` instance is created at process start and passed to the
workflows. It owns its own registry so that separate instances (e.g. in
tests) never share counters.
"""

import logging

from prometheus_client import CollectorRegistry, Counter, Gauge

from .exceptions import GitException, is_rate_limit_error
from .manifest import BinderStatus, PolicyState
from .sanitize import SanitizedError

__all__ = [
    "Metrics",
    "ERROR_RATE_LIMIT",
    "ERROR_API",
    "ERROR_GIT",
]

_LOGGER = logging.getLogger(__name__)

ERROR_RATE_LIMIT = "rate_limit"
ERROR_API = "api_error"
ERROR_GIT = "git_error"

STATUS_SUCCESS = "success"
STATUS_ERROR = "error"

_PENDING_STATES = (
    PolicyState.PR_CREATED,
    PolicyState.PR_PENDING,
    PolicyState.PR_STALE,
    PolicyState.PR_REMOVAL,
)


def error_type(err: BaseException) -> str:
    """Classify an error into a fixed label value."""
    if is_rate_limit_error(err) or getattr(err, "status_code", None) == 429:
        return ERROR_RATE_LIMIT
    if isinstance(err, GitException) or (
        isinstance(err, SanitizedError) and err.caused_by(GitException)
    ):
        return ERROR_GIT
    return ERROR_API


class Metrics:
    """Counters and gauges for NetworkPolicy management."""

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        """Initialize Metrics."""
        self.registry = registry if registry is not None else CollectorRegistry()
        self.prs_created = Counter(
            "permission_binder_networkpolicy_prs_created_total",
            "Total number of NetworkPolicy pull requests created",
            ["cluster", "namespace", "variant"],
            registry=self.registry,
        )
        self.pr_creation_errors = Counter(
            "permission_binder_networkpolicy_pr_creation_errors_total",
            "Total number of NetworkPolicy pull request creation errors",
            ["cluster", "namespace", "variant", "error_type"],
            registry=self.registry,
        )
        self.git_operations = Counter(
            "permission_binder_networkpolicy_git_operations_total",
            "Total number of git operations",
            ["operation", "status"],
            registry=self.registry,
        )
        self.template_validation_errors = Counter(
            "permission_binder_networkpolicy_template_validation_errors_total",
            "Total number of templates rejected by dry-run validation",
            ["cluster", "template"],
            registry=self.registry,
        )
        self.multiple_crs_warning = Counter(
            "permission_binder_multiple_crs_networkpolicy_warning_total",
            "Number of times more than one PermissionBinder enabled NetworkPolicy management",
            registry=self.registry,
        )
        self.drift_detected = Counter(
            "permission_binder_networkpolicy_drift_detected_total",
            "Total number of NetworkPolicies that differ from the repository",
            ["cluster", "namespace"],
            registry=self.registry,
        )
        self.prs_pending = Gauge(
            "permission_binder_networkpolicy_prs_pending",
            "Number of namespaces with an open NetworkPolicy pull request",
            ["cluster", "state"],
            registry=self.registry,
        )

    def git_operation(self, operation: str, success: bool) -> None:
        """Count a git clone or push."""
        status = STATUS_SUCCESS if success else STATUS_ERROR
        self.git_operations.labels(operation=operation, status=status).inc()

    def pr_created(self, cluster: str, namespace: str, variant: str) -> None:
        """Count a created pull request."""
        self.prs_created.labels(cluster=cluster, namespace=namespace, variant=variant).inc()

    def pr_creation_error(
        self, cluster: str, namespace: str, variant: str, err: BaseException
    ) -> None:
        """Count a failed pull request creation by error category."""
        self.pr_creation_errors.labels(
            cluster=cluster,
            namespace=namespace,
            variant=variant,
            error_type=error_type(err),
        ).inc()

    def template_validation_error(self, cluster: str, template: str) -> None:
        """Count a template rejected by dry-run validation."""
        self.template_validation_errors.labels(cluster=cluster, template=template).inc()

    def drift(self, cluster: str, namespace: str) -> None:
        """Count a detected drift."""
        self.drift_detected.labels(cluster=cluster, namespace=namespace).inc()

    def refresh_pending(self, cluster: str, status: BinderStatus) -> None:
        """Set the pending gauge from the status entry counts."""
        for state in _PENDING_STATES:
            count = len(status.namespaces_in_state(state))
            self.prs_pending.labels(cluster=cluster, state=state.value).set(count)
