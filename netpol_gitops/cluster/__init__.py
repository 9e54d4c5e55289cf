"""Access to the cluster objects consumed by the NetworkPolicy workflows.

The workflows only need a narrow capability: read Secrets and NetworkPolicies,
dry-run a NetworkPolicy, and read or conditionally update the status of the
PermissionBinder that owns the configuration. `InMemoryCluster` backs tests
and offline use, `KubernetesCluster` talks to a real API server.
"""

from .cluster import Cluster
from .in_memory import InMemoryCluster

__all__ = [
    "Cluster",
    "InMemoryCluster",
]
