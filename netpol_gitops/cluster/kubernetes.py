"""Cluster access backed by the Kubernetes API server."""

import base64
import logging
from typing import Any

from kubernetes_asyncio import client, config
from kubernetes_asyncio.client.exceptions import ApiException
from kubernetes_asyncio.config.config_exception import ConfigException

from netpol_gitops.exceptions import (
    ConflictError,
    InputException,
    NetpolException,
    ObjectNotFoundError,
)
from netpol_gitops.manifest import (
    NETWORK_POLICY_API_VERSION,
    NETWORK_POLICY_KIND,
    PERMISSION_BINDER_GROUP,
    PERMISSION_BINDER_KIND,
    PERMISSION_BINDER_PLURAL,
    PERMISSION_BINDER_VERSION,
    PermissionBinder,
)

from .cluster import Cluster

_LOGGER = logging.getLogger(__name__)

_DRY_RUN_ALL = "All"


def _api_error(err: ApiException, what: str) -> NetpolException:
    """Translate an API server error into the library exception types."""
    if err.status == 404:
        return ObjectNotFoundError(f"{what} not found")
    if err.status == 409:
        return ConflictError(f"{what} has been modified: {err.reason}")
    return NetpolException(f"Request for {what} failed ({err.status}): {err.reason}")


class KubernetesCluster(Cluster):
    """Cluster implementation using the kubernetes_asyncio client."""

    def __init__(self, api_client: client.ApiClient) -> None:
        """Initialize KubernetesCluster."""
        self._api_client = api_client
        self._core = client.CoreV1Api(api_client)
        self._networking = client.NetworkingV1Api(api_client)
        self._custom = client.CustomObjectsApi(api_client)

    @classmethod
    async def connect(
        cls, kubeconfig: str | None = None, context: str | None = None
    ) -> "KubernetesCluster":
        """Load in-cluster configuration, falling back to a kubeconfig file."""
        try:
            config.load_incluster_config()
            _LOGGER.debug("Using in-cluster configuration")
        except ConfigException:
            await config.load_kube_config(config_file=kubeconfig, context=context)
            _LOGGER.debug("Using kubeconfig %s", kubeconfig or "(default)")
        return cls(client.ApiClient())

    async def close(self) -> None:
        """Close the underlying API client."""
        await self._api_client.close()

    def _to_doc(self, obj: Any) -> dict[str, Any]:
        """Serialize a typed API object into a camelCase document."""
        return self._api_client.sanitize_for_serialization(obj)

    async def get_secret(self, namespace: str, name: str) -> dict[str, str]:
        """Return the decoded data of a Secret."""
        try:
            secret = await self._core.read_namespaced_secret(name, namespace)
        except ApiException as err:
            raise _api_error(err, f"Secret {namespace}/{name}") from err
        return {
            key: base64.b64decode(value).decode("utf-8")
            for key, value in (secret.data or {}).items()
        }

    async def list_network_policies(self, namespace: str) -> list[dict[str, Any]]:
        """Return the NetworkPolicies of a namespace."""
        try:
            result = await self._networking.list_namespaced_network_policy(namespace)
        except ApiException as err:
            raise _api_error(err, f"NetworkPolicies in {namespace}") from err
        docs = []
        for item in result.items:
            doc = self._to_doc(item)
            doc.setdefault("apiVersion", NETWORK_POLICY_API_VERSION)
            doc.setdefault("kind", NETWORK_POLICY_KIND)
            docs.append(doc)
        return docs

    async def get_network_policy(self, namespace: str, name: str) -> dict[str, Any]:
        """Return a NetworkPolicy."""
        try:
            item = await self._networking.read_namespaced_network_policy(name, namespace)
        except ApiException as err:
            raise _api_error(err, f"NetworkPolicy {namespace}/{name}") from err
        doc = self._to_doc(item)
        doc.setdefault("apiVersion", NETWORK_POLICY_API_VERSION)
        doc.setdefault("kind", NETWORK_POLICY_KIND)
        return doc

    async def dry_run_network_policy(self, doc: dict[str, Any]) -> None:
        """Submit a NetworkPolicy create with server-side dry-run."""
        namespace = (doc.get("metadata") or {}).get("namespace") or "default"
        try:
            await self._networking.create_namespaced_network_policy(
                namespace, doc, dry_run=_DRY_RUN_ALL
            )
        except ApiException as err:
            if err.status == 409:
                # AlreadyExists still means the object itself is valid
                return
            if err.status is not None and 400 <= err.status < 500:
                raise InputException(f"{err.reason}: {err.body}") from err
            raise _api_error(err, "NetworkPolicy dry-run") from err

    async def get_permission_binder(self, namespace: str, name: str) -> PermissionBinder:
        """Return the latest copy of a PermissionBinder."""
        try:
            doc = await self._custom.get_namespaced_custom_object(
                PERMISSION_BINDER_GROUP,
                PERMISSION_BINDER_VERSION,
                namespace,
                PERMISSION_BINDER_PLURAL,
                name,
            )
        except ApiException as err:
            raise _api_error(err, f"PermissionBinder {namespace}/{name}") from err
        return PermissionBinder.parse_doc(doc)

    async def list_permission_binders(self) -> list[PermissionBinder]:
        """Return all PermissionBinders."""
        try:
            result = await self._custom.list_cluster_custom_object(
                PERMISSION_BINDER_GROUP,
                PERMISSION_BINDER_VERSION,
                PERMISSION_BINDER_PLURAL,
            )
        except ApiException as err:
            raise _api_error(err, "PermissionBinders") from err
        return [PermissionBinder.parse_doc(doc) for doc in result.get("items", [])]

    async def update_permission_binder_status(
        self, binder: PermissionBinder
    ) -> PermissionBinder:
        """Replace the status subresource conditioned on the resource version."""
        body = {
            "apiVersion": f"{PERMISSION_BINDER_GROUP}/{PERMISSION_BINDER_VERSION}",
            "kind": PERMISSION_BINDER_KIND,
            "metadata": {
                "name": binder.name,
                "namespace": binder.namespace,
                "resourceVersion": binder.resource_version,
            },
            "status": binder.status_doc(),
        }
        try:
            doc = await self._custom.replace_namespaced_custom_object_status(
                PERMISSION_BINDER_GROUP,
                PERMISSION_BINDER_VERSION,
                binder.namespace,
                PERMISSION_BINDER_PLURAL,
                binder.name,
                body,
            )
        except ApiException as err:
            raise _api_error(err, f"PermissionBinder {binder.namespaced_name}") from err
        return PermissionBinder.parse_doc(doc)
