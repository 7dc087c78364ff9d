"""Cluster client backed by the official ``kubernetes`` dynamic client.

One :class:`KubeClient` talks to exactly one kubeconfig context.  It speaks in
manifest dicts so that any kind (built-in or custom resource) can be created,
read and deleted without generated model classes.
"""

from __future__ import annotations

import threading
from typing import Any

from kubernetes import client as k8s_client
from kubernetes import config as k8s_config
from kubernetes.client.exceptions import ApiException
from kubernetes.dynamic import DynamicClient
from kubernetes.dynamic.exceptions import NotFoundError

from kubetestkit.clients.base import resource_version_of
from kubetestkit.models.resources import ManagedResource
from kubetestkit.observability.logging import get_logger

_HTTP_NOT_FOUND = 404


class KubeClient:
    """Create/get/delete access to one cluster context.

    Args:
        context: kubeconfig context name.  ``None`` uses the current context.
        kubeconfig: Path to a kubeconfig file.  ``None`` uses ``$KUBECONFIG``
            or ``~/.kube/config``.
        api_client: Pre-built ``ApiClient``; skips kubeconfig loading entirely.
    """

    def __init__(
        self,
        context: str | None = None,
        kubeconfig: str | None = None,
        api_client: k8s_client.ApiClient | None = None,
    ) -> None:
        self._context = context or ""
        self._log = get_logger("kube_client", context=self._context or "current")
        if api_client is None:
            api_client = k8s_config.new_client_from_config(config_file=kubeconfig, context=context)
        self._api_client = api_client
        # Discovery hits the API server, so the dynamic client is built on first use.
        self._dynamic: DynamicClient | None = None
        self._dynamic_lock = threading.Lock()

    @property
    def context_name(self) -> str:
        return self._context

    @property
    def api_client(self) -> k8s_client.ApiClient:
        return self._api_client

    @property
    def dynamic(self) -> DynamicClient:
        with self._dynamic_lock:
            if self._dynamic is None:
                self._dynamic = DynamicClient(self._api_client)
            return self._dynamic

    def core_v1(self) -> k8s_client.CoreV1Api:
        """Typed CoreV1 API bound to this context, for tests that prefer models."""
        return k8s_client.CoreV1Api(self._api_client)

    # ------------------------------------------------------------------
    # ClusterClient contract
    # ------------------------------------------------------------------

    def ping(self) -> None:
        info = k8s_client.VersionApi(self._api_client).get_code()
        self._log.debug("cluster_reachable", server_version=getattr(info, "git_version", "unknown"))

    def create(self, body: dict[str, Any]) -> ManagedResource:
        api = self._resource_api(body.get("apiVersion", "v1"), body.get("kind", ""))
        namespace = (body.get("metadata") or {}).get("namespace")
        created = api.create(body=body, namespace=namespace if api.namespaced else None)
        resource = ManagedResource.from_manifest(created.to_dict())
        self._log.debug("resource_created", resource=str(resource))
        return resource

    def delete(self, resource: ManagedResource) -> None:
        api = self._resource_api(resource.api_version, resource.kind)
        try:
            api.delete(name=resource.name, namespace=resource.namespace if api.namespaced else None)
        except NotFoundError:
            self._log.debug("resource_already_absent", resource=str(resource))
        except ApiException as exc:
            if exc.status != _HTTP_NOT_FOUND:
                raise
            self._log.debug("resource_already_absent", resource=str(resource))

    def get(self, resource: ManagedResource) -> dict[str, Any] | None:
        api = self._resource_api(resource.api_version, resource.kind)
        try:
            found = api.get(name=resource.name, namespace=resource.namespace if api.namespaced else None)
        except NotFoundError:
            return None
        except ApiException as exc:
            if exc.status == _HTTP_NOT_FOUND:
                return None
            raise
        state: dict[str, Any] = found.to_dict()
        return state

    def resource_version(self, state: dict[str, Any] | None) -> str:
        return resource_version_of(state)

    def close(self) -> None:
        self._api_client.close()

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _resource_api(self, api_version: str, kind: str) -> Any:
        return self.dynamic.resources.get(api_version=api_version, kind=kind)
