"""In-memory cluster client for unit tests.

:class:`InMemoryClusterClient` satisfies
:class:`~kubetestkit.clients.base.ClusterClient` without a cluster.  It records
every call in order, can be told to fail specific creates or deletes, and can
keep a deleted object "terminating" for a number of reads to exercise the
wait paths.
"""

from __future__ import annotations

import copy
import threading
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from kubetestkit.clients.base import resource_version_of
from kubetestkit.clients.cmd_client import KubeCmdClient
from kubetestkit.models.resources import ManagedResource

_Key = tuple[str, str, str]


@dataclass
class _Stored:
    state: dict[str, Any]
    # reads left before a deleted object disappears; None = not deleting
    terminating_reads: int | None = None


@dataclass
class InMemoryClusterClient:
    """Fake cluster client holding objects in a dict.

    Attributes:
        context_name: Reported kubeconfig context.
        calls: ``(verb, "Kind/ns/name")`` for every create and delete, in the
            order they were issued.
        fail_create: Keys (``kind, namespace or "", name``) whose create raises.
        fail_delete: Keys whose delete raises.
        stuck: Keys that never disappear after deletion.
        terminating_reads: Reads a deleted object stays visible for.
        ping_error: Raised by :meth:`ping` when set.
    """

    context_name: str = ""
    calls: list[tuple[str, str]] = field(default_factory=list)
    fail_create: set[_Key] = field(default_factory=set)
    fail_delete: set[_Key] = field(default_factory=set)
    stuck: set[_Key] = field(default_factory=set)
    terminating_reads: int = 0
    ping_error: Exception | None = None
    on_delete: Callable[[ManagedResource], None] | None = None

    def __post_init__(self) -> None:
        self._objects: dict[_Key, _Stored] = {}
        self._version = 0
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # ClusterClient contract
    # ------------------------------------------------------------------

    def ping(self) -> None:
        if self.ping_error is not None:
            raise self.ping_error

    def create(self, body: dict[str, Any]) -> ManagedResource:
        handle = ManagedResource.from_manifest(body)
        with self._lock:
            self.calls.append(("create", str(handle)))
            if handle.key in self.fail_create:
                raise RuntimeError(f"create rejected for {handle}")
            if handle.key in self._objects:
                raise RuntimeError(f"{handle} already exists")
            state = copy.deepcopy(body)
            metadata = state.setdefault("metadata", {})
            metadata["uid"] = uuid.uuid4().hex
            metadata["resourceVersion"] = self._next_version()
            self._objects[handle.key] = _Stored(state=state)
        return ManagedResource.from_manifest(state)

    def delete(self, resource: ManagedResource) -> None:
        with self._lock:
            self.calls.append(("delete", str(resource)))
            if resource.key in self.fail_delete:
                raise RuntimeError(f"delete rejected for {resource}")
            stored = self._objects.get(resource.key)
            if stored is not None and stored.terminating_reads is None:
                stored.terminating_reads = self.terminating_reads
        if self.on_delete is not None:
            self.on_delete(resource)

    def get(self, resource: ManagedResource) -> dict[str, Any] | None:
        with self._lock:
            stored = self._objects.get(resource.key)
            if stored is None:
                return None
            if stored.terminating_reads is not None and resource.key not in self.stuck:
                if stored.terminating_reads <= 0:
                    del self._objects[resource.key]
                    return None
                stored.terminating_reads -= 1
            return copy.deepcopy(stored.state)

    def resource_version(self, state: dict[str, Any] | None) -> str:
        return resource_version_of(state)

    # ------------------------------------------------------------------
    # Test helpers
    # ------------------------------------------------------------------

    def put(self, body: dict[str, Any]) -> ManagedResource:
        """Store an object without recording a create call."""
        handle = ManagedResource.from_manifest(body)
        with self._lock:
            state = copy.deepcopy(body)
            metadata = state.setdefault("metadata", {})
            metadata.setdefault("uid", uuid.uuid4().hex)
            metadata["resourceVersion"] = self._next_version()
            self._objects[handle.key] = _Stored(state=state)
        return ManagedResource.from_manifest(state)

    def exists(self, kind: str, name: str, namespace: str | None = None) -> bool:
        with self._lock:
            return (kind, namespace or "", name) in self._objects

    def deleted(self) -> list[str]:
        """Resources in the order their deletes were issued."""
        return [target for verb, target in self.calls if verb == "delete"]

    def created(self) -> list[str]:
        return [target for verb, target in self.calls if verb == "create"]

    def _next_version(self) -> str:
        self._version += 1
        return str(self._version)


def in_memory_factory(
    clients: dict[str | None, InMemoryClusterClient] | None = None,
) -> Callable[[str | None], tuple[InMemoryClusterClient, KubeCmdClient]]:
    """Client factory for :class:`~kubetestkit.context.router.ContextRouter`.

    Hands out one :class:`InMemoryClusterClient` per kubeconfig context,
    creating them on demand and remembering them in *clients*.  The kubectl
    slot is a :class:`~kubetestkit.clients.cmd_client.KubeCmdClient` for the
    same context (it is never invoked unless a test calls it).
    """
    registry = clients if clients is not None else {}

    def _factory(kube_context: str | None) -> tuple[InMemoryClusterClient, KubeCmdClient]:
        client = registry.get(kube_context)
        if client is None:
            client = InMemoryClusterClient(context_name=kube_context or "")
            registry[kube_context] = client
        return client, KubeCmdClient(context=kube_context or "")

    return _factory
