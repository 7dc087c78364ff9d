"""Contract between the lifecycle manager and a cluster API client.

Anything satisfying :class:`ClusterClient` can back a context: the real
:class:`~kubetestkit.clients.kube_client.KubeClient` in live runs, in-memory
fakes in unit tests.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from kubetestkit.models.resources import ManagedResource


@runtime_checkable
class ClusterClient(Protocol):
    """Typed create/read/delete access to one cluster context."""

    @property
    def context_name(self) -> str:
        """kubeconfig context this client talks to ("" for current context)."""
        ...

    def ping(self) -> None:
        """Raise if the API server is unreachable or credentials are rejected."""
        ...

    def create(self, body: dict[str, Any]) -> ManagedResource:
        """Create the object described by *body* and return its handle."""
        ...

    def delete(self, resource: ManagedResource) -> None:
        """Issue deletion.  Deleting an already-absent object must not raise."""
        ...

    def get(self, resource: ManagedResource) -> dict[str, Any] | None:
        """Current state of *resource*, or None when it no longer exists."""
        ...

    def resource_version(self, state: dict[str, Any] | None) -> str:
        """Comparable change token for *state*; "" when absent."""
        ...


def resource_version_of(state: dict[str, Any] | None) -> str:
    """Default ``resource_version`` implementation for manifest-shaped dicts."""
    if not state:
        return ""
    metadata = state.get("metadata") or {}
    return str(metadata.get("resourceVersion") or "")
