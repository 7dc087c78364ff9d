"""Handles for cluster objects tracked for cleanup."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from kubernetes import client as k8s_client


class CleanupStrategy(StrEnum):
    """When resources tracked for a context are deleted."""

    AUTOMATIC = "automatic"
    MANUAL = "manual"
    NEVER = "never"


class DeletionMode(StrEnum):
    """How an AUTOMATIC drain deletes the batch it pulled from the registry."""

    PARALLEL = "parallel"
    SEQUENTIAL = "sequential"


@dataclass(frozen=True)
class ManagedResource:
    """Opaque handle to one cluster object.

    Identity is ``(api_version, kind, namespace, name)``.  ``resource_version``,
    ``uid`` and ``body`` ride along for re-issuing calls and for condition
    predicates but do not take part in equality, so a handle re-read from the
    cluster still matches the one in the registry.
    """

    kind: str
    name: str
    namespace: str | None = None
    api_version: str = "v1"
    resource_version: str = field(default="", compare=False)
    uid: str = field(default="", compare=False)
    body: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.kind, self.namespace or "", self.name)

    @property
    def is_cluster_scoped(self) -> bool:
        return self.namespace is None

    def __str__(self) -> str:
        if self.namespace is None:
            return f"{self.kind}/{self.name}"
        return f"{self.kind}/{self.namespace}/{self.name}"

    def with_state(self, state: dict[str, Any]) -> ManagedResource:
        """Return a copy refreshed from a freshly read cluster state."""
        metadata = state.get("metadata") or {}
        return ManagedResource(
            kind=self.kind,
            name=self.name,
            namespace=self.namespace,
            api_version=self.api_version,
            resource_version=str(_first(metadata, "resourceVersion", "resource_version") or ""),
            uid=str(metadata.get("uid") or self.uid),
            body=copy.deepcopy(state),
        )

    @classmethod
    def from_manifest(cls, obj: Any) -> ManagedResource:
        """Build a handle from a manifest dict or a kubernetes model object.

        Accepts camelCase manifests (YAML/JSON, dynamic client instances) and
        generated models such as ``V1Deployment``, which are serialized to
        their wire form.
        Missing kind or name are left empty; the registry rejects such handles.
        """
        raw = _as_dict(obj)
        metadata = raw.get("metadata") or {}
        namespace = metadata.get("namespace") or None
        return cls(
            kind=str(raw.get("kind") or ""),
            name=str(metadata.get("name") or ""),
            namespace=namespace,
            api_version=str(_first(raw, "apiVersion", "api_version") or "v1"),
            resource_version=str(_first(metadata, "resourceVersion", "resource_version") or ""),
            uid=str(metadata.get("uid") or ""),
            body=raw,
        )

    @classmethod
    def namespace_manifest(
        cls,
        name: str,
        labels: dict[str, str] | None = None,
        annotations: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        """Manifest for a test Namespace."""
        metadata: dict[str, Any] = {"name": name}
        if labels:
            metadata["labels"] = dict(labels)
        if annotations:
            metadata["annotations"] = dict(annotations)
        return {"apiVersion": "v1", "kind": "Namespace", "metadata": metadata}


def _as_dict(obj: Any) -> dict[str, Any]:
    if isinstance(obj, ManagedResource):
        return copy.deepcopy(obj.body) if obj.body else {
            "apiVersion": obj.api_version,
            "kind": obj.kind,
            "metadata": {"name": obj.name, "namespace": obj.namespace},
        }
    if isinstance(obj, dict):
        return copy.deepcopy(obj)
    if hasattr(obj, "openapi_types"):
        # Generated models: camelCase wire keys, None fields dropped.
        serialized = k8s_client.ApiClient().sanitize_for_serialization(obj)
        if isinstance(serialized, dict):
            return serialized
    to_dict = getattr(obj, "to_dict", None)
    if callable(to_dict):
        result = to_dict()
        if isinstance(result, dict):
            return result
    raise TypeError(f"Cannot build a resource handle from {type(obj).__name__}")


def _first(mapping: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = mapping.get(key)
        if value:
            return value
    return None
