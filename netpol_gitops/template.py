"""Render NetworkPolicy templates and capture cluster policies for GitOps.

Every manifest written to the repository passes through `clean_for_gitops`,
which keeps only declarative fields so that the committed YAML is stable and
diff friendly.
"""

import copy
from dataclasses import dataclass
import logging
from pathlib import PurePosixPath
from typing import Any

import yaml
from slugify import slugify

from . import layout
from .cluster import Cluster
from .exceptions import InputException, TemplateValidationException
from .manifest import (
    ANNOTATION_SOURCE,
    ANNOTATION_TEMPLATE,
    ANNOTATION_TEMPLATE_PATH,
    ANNOTATION_TEMPLATE_VERSION,
    NETWORK_POLICY_API_VERSION,
    NETWORK_POLICY_KIND,
    SOURCE_BACKUP,
    SOURCE_TEMPLATE,
    parse_policy_doc,
)
from .working_copy import WorkingCopy

__all__ = [
    "RenderedPolicy",
    "clean_for_gitops",
    "to_yaml",
    "load_template",
    "stamp_template",
    "render_template",
    "capture_policy",
]

_LOGGER = logging.getLogger(__name__)

TEMPLATE_VERSION = "HEAD"
DRY_RUN_NAMESPACE = "default"

_METADATA_FIELDS_TO_REMOVE = (
    "managedFields",
    "creationTimestamp",
    "generation",
    "uid",
    "resourceVersion",
    "selfLink",
)

# Annotations owned by the platform rather than the operator
_INTERNAL_ANNOTATION_PREFIXES = (
    "kubectl.kubernetes.io/",
    "deployment.kubernetes.io/",
    "pod-template-hash",
    "kubernetes.io/",
)

_TOP_LEVEL_ORDER = ("apiVersion", "kind", "metadata", "spec")


@dataclass(frozen=True)
class RenderedPolicy:
    """A manifest ready to be written to the repository."""

    name: str
    """The NetworkPolicy name."""

    path: str
    """The repository path of the file."""

    content: str
    """The YAML content."""

    source: str
    """Either `template` or `backup`."""

    template: str | None = None
    """The template file name the policy derives from."""


def _is_internal_annotation(key: str) -> bool:
    return any(key.startswith(prefix) for prefix in _INTERNAL_ANNOTATION_PREFIXES)


def clean_for_gitops(doc: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of the object with only declarative fields.

    The apiVersion and kind are defaulted when missing but never replaced.
    """
    obj = copy.deepcopy(doc)
    obj.pop("status", None)
    if not obj.get("apiVersion"):
        obj["apiVersion"] = NETWORK_POLICY_API_VERSION
    if not obj.get("kind"):
        obj["kind"] = NETWORK_POLICY_KIND
    if isinstance(metadata := obj.get("metadata"), dict):
        for key in _METADATA_FIELDS_TO_REMOVE:
            metadata.pop(key, None)
        if isinstance(annotations := metadata.get("annotations"), dict):
            for key in [k for k in annotations if _is_internal_annotation(k)]:
                del annotations[key]
        for key in ("annotations", "labels"):
            if key in metadata and not metadata[key]:
                del metadata[key]
    ordered = {key: obj[key] for key in _TOP_LEVEL_ORDER if key in obj}
    ordered.update({key: value for key, value in obj.items() if key not in ordered})
    return ordered


def to_yaml(doc: dict[str, Any]) -> str:
    """Serialize a cleaned manifest."""
    return yaml.dump(clean_for_gitops(doc), sort_keys=False, default_flow_style=False)


def parse_template(content: str, template_name: str) -> dict[str, Any]:
    """Parse the NetworkPolicy of a template file."""
    try:
        doc = yaml.safe_load(content)
    except yaml.YAMLError as err:
        raise InputException(f"Unable to parse template {template_name}: {err}") from err
    return parse_policy_doc(doc)


async def load_template(
    working_copy: WorkingCopy, template_dir: str, template_name: str
) -> dict[str, Any]:
    """Read and parse a template from the working copy."""
    path = str(PurePosixPath(template_dir) / template_name)
    return parse_template(await working_copy.read_file(path), template_name)


def stamp_template(
    template: dict[str, Any], template_dir: str, template_name: str, namespace: str
) -> dict[str, Any]:
    """Return the template stamped with the identity and provenance for a namespace."""
    policy = copy.deepcopy(template)
    metadata = policy.get("metadata") or {}
    policy["metadata"] = metadata
    metadata["name"] = layout.template_policy_name(namespace, template_name)
    metadata["namespace"] = namespace
    annotations = metadata.get("annotations") or {}
    annotations.update(
        {
            ANNOTATION_TEMPLATE: template_name,
            ANNOTATION_TEMPLATE_PATH: str(PurePosixPath(template_dir) / template_name),
            ANNOTATION_TEMPLATE_VERSION: TEMPLATE_VERSION,
            ANNOTATION_SOURCE: SOURCE_TEMPLATE,
        }
    )
    metadata["annotations"] = annotations
    return policy


async def validate_template(
    cluster: Cluster, template: dict[str, Any], template_name: str
) -> None:
    """Dry-run the unmodified template, independent of any namespace."""
    candidate = copy.deepcopy(template)
    metadata = candidate.get("metadata") or {}
    candidate["metadata"] = metadata
    metadata["name"] = slugify(
        f"dry-run-{layout.template_stem(template_name)}", max_length=63
    )
    metadata["namespace"] = DRY_RUN_NAMESPACE
    try:
        await cluster.dry_run_network_policy(candidate)
    except InputException as err:
        raise TemplateValidationException(template_name, str(err)) from err


async def render_template(
    cluster: Cluster,
    working_copy: WorkingCopy,
    template_dir: str,
    template_name: str,
    namespace: str,
    cluster_name: str,
) -> RenderedPolicy:
    """Render a template into the manifest for a namespace.

    The template is validated with a dry-run before and after it is stamped
    for the namespace.

    Raises:
        TemplateValidationException: If a dry-run rejects the policy.
    """
    template = await load_template(working_copy, template_dir, template_name)
    await validate_template(cluster, template, template_name)
    policy = stamp_template(template, template_dir, template_name, namespace)
    try:
        await cluster.dry_run_network_policy(policy)
    except InputException as err:
        raise TemplateValidationException(template_name, str(err)) from err
    name = policy["metadata"]["name"]
    _LOGGER.debug("Rendered template %s for namespace %s", template_name, namespace)
    return RenderedPolicy(
        name=name,
        path=layout.template_file_path(cluster_name, namespace, template_name),
        content=to_yaml(policy),
        source=SOURCE_TEMPLATE,
        template=template_name,
    )


def capture_policy(
    policy: dict[str, Any],
    cluster_name: str,
    namespace: str,
    template_name: str | None = None,
) -> RenderedPolicy:
    """Capture a live cluster policy as a manifest for the repository.

    A policy derived from a template is written to the template file path,
    any other policy to a file named after the policy.
    """
    doc = copy.deepcopy(policy)
    metadata = doc.get("metadata") or {}
    doc["metadata"] = metadata
    name = metadata.get("name", "")
    annotations = metadata.get("annotations") or {}
    annotations[ANNOTATION_SOURCE] = SOURCE_BACKUP
    metadata["annotations"] = annotations
    if template_name:
        path = layout.template_file_path(cluster_name, namespace, template_name)
    else:
        path = layout.backup_file_path(cluster_name, namespace, name)
    return RenderedPolicy(
        name=name,
        path=path,
        content=to_yaml(doc),
        source=SOURCE_BACKUP,
        template=template_name,
    )
