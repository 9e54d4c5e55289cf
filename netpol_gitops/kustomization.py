"""Maintain the kustomization index listing the committed NetworkPolicy files."""

from dataclasses import dataclass, field
import logging
from pathlib import PurePosixPath
from typing import Any

import yaml

from .exceptions import InputException
from .working_copy import WorkingCopy

__all__ = [
    "Kustomization",
    "ensure_index",
    "update_index",
]

_LOGGER = logging.getLogger(__name__)

KUSTOMIZE_API_VERSION = "kustomize.config.k8s.io/v1beta1"
KUSTOMIZE_KIND = "Kustomization"


@dataclass
class Kustomization:
    """A kustomization file whose resources list is kept sorted and unique."""

    contents: dict[str, Any] = field(default_factory=dict)
    """Fields other than `resources`, preserved as read."""

    resources: list[str] = field(default_factory=list)
    """Resource paths relative to the kustomization file."""

    @classmethod
    def new(cls) -> "Kustomization":
        """Return an empty kustomization."""
        return cls(
            contents={"apiVersion": KUSTOMIZE_API_VERSION, "kind": KUSTOMIZE_KIND}
        )

    @classmethod
    def parse(cls, content: str) -> "Kustomization":
        """Parse a kustomization file."""
        try:
            doc = yaml.safe_load(content) or {}
        except yaml.YAMLError as err:
            raise InputException(f"Unable to parse kustomization: {err}") from err
        if not isinstance(doc, dict):
            raise InputException(f"Invalid kustomization document: {doc}")
        resources = doc.pop("resources", None) or []
        if not isinstance(resources, list):
            raise InputException(f"Invalid kustomization resources: {resources}")
        return cls(contents=doc, resources=sorted({str(r) for r in resources}))

    def add(self, resource: str) -> bool:
        """Add a resource, returning false if it was already listed."""
        if resource in self.resources:
            return False
        self.resources = sorted({*self.resources, resource})
        return True

    def remove(self, resource: str) -> bool:
        """Remove a resource, returning false if it was not listed."""
        if resource not in self.resources:
            return False
        self.resources = [r for r in self.resources if r != resource]
        return True

    def to_yaml(self) -> str:
        """Serialize the kustomization."""
        return yaml.dump(
            {**self.contents, "resources": self.resources}, sort_keys=False
        )


async def ensure_index(working_copy: WorkingCopy, index_path: str) -> None:
    """Create an empty kustomization index if it does not exist."""
    if await working_copy.exists(index_path):
        return
    await working_copy.write_file(index_path, Kustomization.new().to_yaml())
    _LOGGER.info("Created kustomization index %s", index_path)


def _relative(index_path: str, resource_path: str) -> str:
    base = PurePosixPath(index_path).parent
    path = PurePosixPath(resource_path)
    if path.is_relative_to(base):
        return str(path.relative_to(base))
    return resource_path


async def update_index(
    working_copy: WorkingCopy, index_path: str, resource_path: str, add: bool
) -> None:
    """Add or remove a repository file in the index.

    The resource is recorded relative to the directory of the index. Removing
    a resource that is not listed is a no-op.
    """
    await ensure_index(working_copy, index_path)
    index = Kustomization.parse(await working_copy.read_file(index_path))
    entry = _relative(index_path, resource_path)
    changed = index.add(entry) if add else index.remove(entry)
    if not changed:
        _LOGGER.debug("Kustomization %s already up to date for %s", index_path, entry)
        return
    await working_copy.write_file(index_path, index.to_yaml())
    _LOGGER.debug(
        "%s %s in kustomization %s", "Added" if add else "Removed", entry, index_path
    )
