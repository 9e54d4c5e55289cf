"""Representation of the parent resource, its configuration and status.

The `PermissionBinder` custom resource carries the NetworkPolicy GitOps
configuration in `spec.networkPolicy` and one status entry per managed
namespace in `status.networkPolicies`. Objects here are parsed from the raw
kubernetes documents and serialized back for status updates.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum
import logging
import re
from typing import Any

from mashumaro import DataClassDictMixin, field_options
from mashumaro.config import BaseConfig

from .exceptions import InputException

__all__ = [
    "PolicyState",
    "SecretReference",
    "NamespaceExcludeList",
    "GitRepositorySpec",
    "AutoMergeSpec",
    "BatchProcessingSpec",
    "NetworkPolicyConfig",
    "NetworkPolicyStatus",
    "BinderStatus",
    "PermissionBinder",
    "parse_policy_doc",
]

_LOGGER = logging.getLogger(__name__)


PERMISSION_BINDER_GROUP = "permission.permission-binder.io"
PERMISSION_BINDER_VERSION = "v1"
PERMISSION_BINDER_PLURAL = "permissionbinders"
PERMISSION_BINDER_KIND = "PermissionBinder"

NETWORK_POLICY_DOMAIN = "networking.k8s.io"
NETWORK_POLICY_API_VERSION = "networking.k8s.io/v1"
NETWORK_POLICY_KIND = "NetworkPolicy"

# Provenance annotations stamped on every manifest written to the repository
ANNOTATION_PREFIX = "network-policy.permission-binder.io"
ANNOTATION_TEMPLATE = f"{ANNOTATION_PREFIX}/template"
ANNOTATION_TEMPLATE_VERSION = f"{ANNOTATION_PREFIX}/template-version"
ANNOTATION_TEMPLATE_PATH = f"{ANNOTATION_PREFIX}/template-path"
ANNOTATION_SOURCE = f"{ANNOTATION_PREFIX}/source"

SOURCE_TEMPLATE = "template"
SOURCE_BACKUP = "backup"

DEFAULT_OPERATOR_USERNAME = "permission-binder-operator"
DEFAULT_OPERATOR_EMAIL = "permission-binder-operator@example.com"
DEFAULT_AUTO_MERGE_LABEL = "auto-merge"


class PolicyState(StrEnum):
    """Lifecycle state of a namespace status entry."""

    PR_CREATED = "pr-created"
    PR_PENDING = "pr-pending"
    PR_MERGED = "pr-merged"
    PR_STALE = "pr-stale"
    PR_REMOVAL = "pr-removal"
    REMOVED = "removed"


OPEN_STATES = frozenset({PolicyState.PR_CREATED, PolicyState.PR_PENDING})


def format_time(value: datetime) -> str:
    """Format a timestamp as RFC3339 in UTC, the format stored in status."""
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_time(value: str | None) -> datetime | None:
    """Parse an RFC3339 status timestamp, returning None when unparseable."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        _LOGGER.debug("Ignoring unparseable timestamp %s", value)
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class BaseManifest(DataClassDictMixin):
    """Base class for all manifest objects."""

    class Config(BaseConfig):
        omit_none = True
        serialize_by_alias = True


@dataclass
class SecretReference(BaseManifest):
    """A reference to a Secret in a specific namespace."""

    name: str
    """The name of the Secret."""

    namespace: str
    """The namespace of the Secret."""

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


@dataclass
class NamespaceExcludeList(BaseManifest):
    """Explicit names and regular expression patterns for excluding namespaces."""

    patterns: list[str] = field(default_factory=list)
    """Regular expressions matched against the namespace name."""

    explicit: list[str] = field(default_factory=list)
    """Exact namespace names."""

    def matches(self, namespace: str) -> bool:
        """Return true if the namespace is excluded by this list."""
        if namespace in self.explicit:
            return True
        for pattern in self.patterns:
            try:
                if re.search(pattern, namespace):
                    return True
            except re.error as err:
                _LOGGER.debug("Skipping invalid exclude pattern %s: %s", pattern, err)
        return False


@dataclass
class GitRepositorySpec(BaseManifest):
    """The GitOps repository that holds the rendered NetworkPolicies."""

    url: str
    """The HTTPS URL of the repository."""

    base_branch: str = field(metadata=field_options(alias="baseBranch"))
    """The branch that pull requests target."""

    cluster_name: str = field(metadata=field_options(alias="clusterName"))
    """The cluster name used in repository paths and branch names."""

    credentials_secret_ref: SecretReference | None = field(
        metadata=field_options(alias="credentialsSecretRef"), default=None
    )
    """Secret holding the `token` and optional `username`/`email` keys."""

    provider: str | None = None
    """Explicit provider (github, gitlab, bitbucket), required for self-hosted."""

    api_base_url: str | None = field(
        metadata=field_options(alias="apiBaseURL"), default=None
    )
    """Override for the provider API base URL."""

    git_tls_verify: bool = field(
        metadata=field_options(alias="gitTlsVerify"), default=True
    )
    """Verify TLS certificates for git and API connections."""


@dataclass
class AutoMergeSpec(BaseManifest):
    """Auto-merge configuration for pull requests created from templates."""

    enabled: bool = True
    """Attempt to merge new-variant pull requests after creation."""

    label: str = DEFAULT_AUTO_MERGE_LABEL
    """Label added to pull requests eligible for auto-merge."""


@dataclass
class BatchProcessingSpec(BaseManifest):
    """Batching and pacing of namespace processing."""

    batch_size: int = field(metadata=field_options(alias="batchSize"), default=5)
    """Number of namespaces in a batch."""

    sleep_between_namespaces: str = field(
        metadata=field_options(alias="sleepBetweenNamespaces"), default="3s"
    )
    """Delay between namespaces in one batch."""

    sleep_between_batches: str = field(
        metadata=field_options(alias="sleepBetweenBatches"), default="60s"
    )
    """Delay between batches, lets pull-based appliers catch up."""


@dataclass
class NetworkPolicyConfig(BaseManifest):
    """The `spec.networkPolicy` section of the parent resource."""

    enabled: bool = False
    """Whether NetworkPolicy management is enabled."""

    git_repository: GitRepositorySpec | None = field(
        metadata=field_options(alias="gitRepository"), default=None
    )
    """The GitOps repository."""

    template_dir: str = field(metadata=field_options(alias="templateDir"), default="")
    """Repository directory holding template manifests."""

    backup_existing: bool = field(
        metadata=field_options(alias="backupExisting"), default=False
    )
    """Capture existing cluster policies into the repository."""

    exclude_namespaces: NamespaceExcludeList | None = field(
        metadata=field_options(alias="excludeNamespaces"), default=None
    )
    """Namespaces excluded from all NetworkPolicy operations."""

    exclude_backup_for_namespaces: NamespaceExcludeList | None = field(
        metadata=field_options(alias="excludeBackupForNamespaces"), default=None
    )
    """Namespaces excluded from backup only."""

    auto_merge: AutoMergeSpec | None = field(
        metadata=field_options(alias="autoMerge"), default=None
    )
    """Auto-merge configuration."""

    reconciliation_interval: str = field(
        metadata=field_options(alias="reconciliationInterval"), default="1h"
    )
    """Interval between periodic sweeps."""

    status_retention_days: int = field(
        metadata=field_options(alias="statusRetentionDays"), default=30
    )
    """Days to retain status entries of removed namespaces."""

    stale_pr_threshold: str = field(
        metadata=field_options(alias="stalePRThreshold"), default="30d"
    )
    """Age after which an open pull request is flagged as stale."""

    batch_processing: BatchProcessingSpec | None = field(
        metadata=field_options(alias="batchProcessing"), default=None
    )
    """Batch pacing configuration."""

    def is_excluded(self, namespace: str) -> bool:
        """Return true if the namespace is excluded from all operations."""
        return self.exclude_namespaces is not None and self.exclude_namespaces.matches(
            namespace
        )

    def should_backup(self, namespace: str) -> bool:
        """Return true if existing policies in the namespace should be captured."""
        if not self.backup_existing:
            return False
        if self.exclude_backup_for_namespaces is None:
            return True
        return not self.exclude_backup_for_namespaces.matches(namespace)

    @property
    def auto_merge_enabled(self) -> bool:
        """Return true if new-variant pull requests are merged automatically."""
        return self.auto_merge is not None and self.auto_merge.enabled

    @property
    def auto_merge_label(self) -> str:
        """Return the label applied to auto-merge pull requests."""
        if self.auto_merge is not None and self.auto_merge.label:
            return self.auto_merge.label
        return DEFAULT_AUTO_MERGE_LABEL

    def require_git_repository(self) -> GitRepositorySpec:
        """Return the repository configuration or raise if absent."""
        if self.git_repository is None:
            raise InputException("NetworkPolicy is missing gitRepository configuration")
        return self.git_repository


@dataclass
class NetworkPolicyStatus(BaseManifest):
    """Status of NetworkPolicy management for one namespace."""

    namespace: str
    """The namespace name."""

    state: str
    """One of the PolicyState values; unknown values are preserved verbatim."""

    pr_number: int | None = field(
        metadata=field_options(alias="prNumber"), default=None
    )
    """The pull request number."""

    pr_branch: str | None = field(
        metadata=field_options(alias="prBranch"), default=None
    )
    """The pull request source branch."""

    pr_url: str | None = field(metadata=field_options(alias="prUrl"), default=None)
    """The pull request URL."""

    created_at: str | None = field(
        metadata=field_options(alias="createdAt"), default=None
    )
    """RFC3339 time the pull request was recorded."""

    removed_at: str | None = field(
        metadata=field_options(alias="removedAt"), default=None
    )
    """RFC3339 time the namespace left the desired set."""

    error_message: str | None = field(
        metadata=field_options(alias="errorMessage"), default=None
    )
    """The last (sanitized) error for this namespace."""


@dataclass
class BinderStatus(BaseManifest):
    """The NetworkPolicy part of the parent resource status."""

    network_policies: list[NetworkPolicyStatus] = field(
        metadata=field_options(alias="networkPolicies"), default_factory=list
    )
    """One entry per namespace."""

    last_network_policy_reconciliation: str | None = field(
        metadata=field_options(alias="lastNetworkPolicyReconciliation"), default=None
    )
    """RFC3339 time of the last periodic sweep."""

    def get(self, namespace: str) -> NetworkPolicyStatus | None:
        """Return the status entry for a namespace."""
        for entry in self.network_policies:
            if entry.namespace == namespace:
                return entry
        return None

    def namespaces_in_state(self, state: PolicyState) -> list[str]:
        """Return the namespaces whose entry is in the given state."""
        return [
            entry.namespace for entry in self.network_policies if entry.state == state
        ]


@dataclass
class PermissionBinder:
    """The parent resource that owns the NetworkPolicy configuration and status."""

    name: str
    """The name of the resource."""

    namespace: str | None
    """The namespace of the resource."""

    network_policy: NetworkPolicyConfig | None = None
    """The `spec.networkPolicy` configuration."""

    status: BinderStatus = field(default_factory=BinderStatus)
    """The NetworkPolicy fields of the status."""

    resource_version: str | None = None
    """Version used for conditional status updates."""

    raw_status: dict[str, Any] = field(default_factory=dict)
    """Status fields owned by other subsystems, preserved on update."""

    @classmethod
    def parse_doc(cls, doc: dict[str, Any]) -> "PermissionBinder":
        """Parse a PermissionBinder from a kubernetes resource object."""
        if doc.get("kind") != PERMISSION_BINDER_KIND:
            raise InputException(f"Invalid {cls} unexpected kind: {doc.get('kind')}")
        if not (metadata := doc.get("metadata")):
            raise InputException(f"Invalid {cls} missing metadata: {doc}")
        if not (name := metadata.get("name")):
            raise InputException(f"Invalid {cls} missing metadata.name: {doc}")
        spec = doc.get("spec") or {}
        network_policy = None
        if (np_doc := spec.get("networkPolicy")) is not None:
            network_policy = NetworkPolicyConfig.from_dict(np_doc)
        raw_status = dict(doc.get("status") or {})
        status = BinderStatus.from_dict(
            {
                key: raw_status.pop(key)
                for key in ("networkPolicies", "lastNetworkPolicyReconciliation")
                if key in raw_status
            }
        )
        return cls(
            name=name,
            namespace=metadata.get("namespace"),
            network_policy=network_policy,
            status=status,
            resource_version=metadata.get("resourceVersion"),
            raw_status=raw_status,
        )

    @property
    def namespaced_name(self) -> str:
        """Return the namespace and name concatenated as an id."""
        if self.namespace:
            return f"{self.namespace}/{self.name}"
        return self.name

    @property
    def enabled(self) -> bool:
        """Return true if NetworkPolicy management is enabled."""
        return self.network_policy is not None and self.network_policy.enabled

    def status_doc(self) -> dict[str, Any]:
        """Return the full status subresource including other subsystems' fields."""
        return {**self.raw_status, **self.status.to_dict()}


def _check_version(doc: dict[str, Any], version: str) -> None:
    """Assert that the resource has the specified version."""
    if not (api_version := doc.get("apiVersion")):
        raise InputException(f"Invalid object missing apiVersion: {doc}")
    if not api_version.startswith(version):
        raise InputException(f"Invalid object expected '{version}': {doc}")


def parse_policy_doc(doc: Any) -> dict[str, Any]:
    """Validate that a raw document is a NetworkPolicy and return it.

    A missing apiVersion or kind is accepted since templates commonly omit
    them; they are defaulted when the manifest is serialized. An empty
    metadata is returned as an empty mapping.
    """
    if not isinstance(doc, dict):
        raise InputException(f"Expected NetworkPolicy document, got {type(doc)}")
    if (kind := doc.get("kind")) is not None and kind != NETWORK_POLICY_KIND:
        raise InputException(f"Expected kind {NETWORK_POLICY_KIND}, got {kind}")
    if doc.get("apiVersion") is not None:
        _check_version(doc, NETWORK_POLICY_DOMAIN)
    metadata = doc.get("metadata")
    if metadata is not None and not isinstance(metadata, dict):
        raise InputException(f"Invalid NetworkPolicy metadata: {metadata}")
    doc["metadata"] = metadata or {}
    spec = doc.get("spec")
    if spec is not None and not isinstance(spec, dict):
        raise InputException(f"Invalid NetworkPolicy spec: {spec}")
    return doc
