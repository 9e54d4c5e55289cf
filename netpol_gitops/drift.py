"""Detect drift between cluster NetworkPolicies and the repository of record.

Policies are compared by a hash of a canonical form of their `spec`. The
canonical form keeps only the pod selector, policy types and the ingress and
egress rules, with every list sorted and the defaults the API server fills in
made explicit, so that semantically equal specs written in a different order
produce the same hash. Object metadata never affects enforcement and is
ignored.
"""

from dataclasses import dataclass
import hashlib
import json
import logging
from typing import Any

import yaml

from . import layout
from .cluster import Cluster
from .exceptions import InputException
from .manifest import ANNOTATION_TEMPLATE, parse_policy_doc
from .working_copy import WorkingCopy

__all__ = [
    "canonical_spec",
    "rules_hash",
    "specs_identical",
    "DriftResult",
    "check_namespace_drift",
]

_LOGGER = logging.getLogger(__name__)

DEFAULT_PROTOCOL = "TCP"
POLICY_TYPE_INGRESS = "Ingress"
POLICY_TYPE_EGRESS = "Egress"


def _serialize(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"))


def _sorted_by_serialized(values: list[Any]) -> list[Any]:
    return sorted(values, key=_serialize)


def canonical_selector(selector: dict[str, Any] | None) -> dict[str, Any]:
    """Return a label selector with sorted labels and expression values."""
    result: dict[str, Any] = {}
    if not selector:
        return result
    if match_labels := selector.get("matchLabels"):
        result["matchLabels"] = {key: match_labels[key] for key in sorted(match_labels)}
    if expressions := selector.get("matchExpressions"):
        result["matchExpressions"] = _sorted_by_serialized(
            [
                {
                    "key": expr.get("key"),
                    "operator": expr.get("operator"),
                    "values": sorted(expr.get("values") or []),
                }
                for expr in expressions
            ]
        )
    return result


def _canonical_peer(peer: dict[str, Any]) -> dict[str, Any]:
    result: dict[str, Any] = {}
    if "podSelector" in peer:
        result["podSelector"] = canonical_selector(peer["podSelector"])
    if "namespaceSelector" in peer:
        result["namespaceSelector"] = canonical_selector(peer["namespaceSelector"])
    if ip_block := peer.get("ipBlock"):
        block: dict[str, Any] = {"cidr": ip_block.get("cidr")}
        if except_ := ip_block.get("except"):
            block["except"] = sorted(except_)
        result["ipBlock"] = block
    return result


def _canonical_port(port: dict[str, Any]) -> dict[str, Any]:
    result: dict[str, Any] = {"protocol": port.get("protocol") or DEFAULT_PROTOCOL}
    if port.get("port") is not None:
        result["port"] = port["port"]
    if port.get("endPort") is not None:
        result["endPort"] = port["endPort"]
    return result


def _canonical_rules(rules: list[dict[str, Any]] | None, peers_key: str) -> list[Any]:
    canonical = []
    for rule in rules or []:
        entry: dict[str, Any] = {}
        if ports := rule.get("ports"):
            entry["ports"] = _sorted_by_serialized([_canonical_port(p) for p in ports])
        if peers := rule.get(peers_key):
            entry[peers_key] = _sorted_by_serialized([_canonical_peer(p) for p in peers])
        canonical.append(entry)
    return _sorted_by_serialized(canonical)


def _policy_types(spec: dict[str, Any]) -> list[str]:
    """Return the policy types, defaulted the way the API server does."""
    if types := spec.get("policyTypes"):
        return sorted(set(types))
    types = [POLICY_TYPE_INGRESS]
    if spec.get("egress"):
        types.append(POLICY_TYPE_EGRESS)
    return sorted(types)


def canonical_spec(spec: dict[str, Any] | None) -> dict[str, Any]:
    """Return the order-independent form of a NetworkPolicy spec."""
    spec = spec or {}
    result: dict[str, Any] = {
        "podSelector": canonical_selector(spec.get("podSelector")),
        "policyTypes": _policy_types(spec),
    }
    if ingress := _canonical_rules(spec.get("ingress"), "from"):
        result["ingress"] = ingress
    if egress := _canonical_rules(spec.get("egress"), "to"):
        result["egress"] = egress
    return result


def rules_hash(spec: dict[str, Any] | None) -> str:
    """Return the sha256 hex digest of the canonical spec."""
    return hashlib.sha256(_serialize(canonical_spec(spec)).encode("utf-8")).hexdigest()


def specs_identical(spec1: dict[str, Any] | None, spec2: dict[str, Any] | None) -> bool:
    """Return true if two specs enforce the same rules."""
    return rules_hash(spec1) == rules_hash(spec2)


def policy_file_path(cluster_name: str, namespace: str, policy: dict[str, Any]) -> str:
    """Return the repository file expected to hold a cluster policy."""
    metadata = policy.get("metadata") or {}
    annotations = metadata.get("annotations") or {}
    if template := annotations.get(ANNOTATION_TEMPLATE):
        return layout.template_file_path(cluster_name, namespace, template)
    return layout.backup_file_path(cluster_name, namespace, metadata.get("name", ""))


def load_policy(content: str) -> dict[str, Any]:
    """Parse a NetworkPolicy from YAML content."""
    try:
        doc = yaml.safe_load(content)
    except yaml.YAMLError as err:
        raise InputException(f"Unable to parse NetworkPolicy YAML: {err}") from err
    return parse_policy_doc(doc)


@dataclass(frozen=True)
class DriftResult:
    """The comparison of one cluster policy with its repository file."""

    namespace: str
    policy: str
    path: str
    identical: bool


async def check_namespace_drift(
    cluster: Cluster,
    working_copy: WorkingCopy,
    cluster_name: str,
    namespace: str,
) -> list[DriftResult]:
    """Compare every cluster policy of a namespace that has a repository file."""
    results = []
    for policy in await cluster.list_network_policies(namespace):
        name = (policy.get("metadata") or {}).get("name", "")
        path = policy_file_path(cluster_name, namespace, policy)
        if not await working_copy.exists(path):
            continue
        try:
            repo_policy = load_policy(await working_copy.read_file(path))
        except InputException as err:
            _LOGGER.error("Failed to compare %s with %s: %s", name, path, err)
            continue
        identical = specs_identical(policy.get("spec"), repo_policy.get("spec"))
        if identical:
            _LOGGER.debug("NetworkPolicy %s/%s matches %s", namespace, name, path)
        else:
            _LOGGER.warning("Drift detected for NetworkPolicy %s/%s (%s)", namespace, name, path)
        results.append(DriftResult(namespace, name, path, identical))
    return results
