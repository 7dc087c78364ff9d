"""Dependency resolution: map a capability request to a live object.

Tests declare what they need (a client, the kubectl client, the resource
manager, one namespace or all of them) and optionally which context it comes
from.  :func:`resolve` turns that declaration into the object held by the
:class:`~kubetestkit.context.router.ContextRouter`.

Resolution only reads router state and is safe to call concurrently.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from types import MappingProxyType
from typing import Any

from kubetestkit.context.router import ContextHandle, ContextRouter
from kubetestkit.errors import (
    ContextNotAvailableError,
    NamespaceNotFoundError,
    NamespacesUnavailableError,
    UnsupportedInjectionError,
)
from kubetestkit.models.config import PRIMARY_CONTEXT


class Capability(StrEnum):
    CLIENT = "client"
    COMMAND_CLIENT = "command_client"
    RESOURCE_MANAGER = "resource_manager"
    NAMESPACE_SET = "namespace_set"
    NAMESPACE = "namespace"


@dataclass(frozen=True)
class CapabilityRequest:
    """What a test asks for.

    ``capability`` is usually a :class:`Capability`; any other value is
    rejected at resolution time with :class:`UnsupportedInjectionError`.
    ``name`` is required for :attr:`Capability.NAMESPACE`.
    """

    capability: Capability | str
    context: str | None = None
    name: str | None = None

    @property
    def context_name(self) -> str:
        return self.context or PRIMARY_CONTEXT

    def __str__(self) -> str:
        parts = [str(self.capability)]
        if self.name:
            parts.append(f"name={self.name}")
        parts.append(f"context={self.context_name}")
        return f"{parts[0]}({', '.join(parts[1:])})"


def resolve(router: ContextRouter, request: CapabilityRequest) -> Any:
    """Return the live object satisfying *request*.

    Raises:
        ContextNotAvailableError: the context was never materialized.
        NamespacesUnavailableError: the context has no namespace set.
        NamespaceNotFoundError: the named namespace is not in the set.
        UnsupportedInjectionError: the capability is not recognised.
    """
    handle = router.get(request.context_name)
    if handle is None:
        raise ContextNotAvailableError(request.context_name)
    capability = _as_capability(request)

    if capability is Capability.CLIENT:
        return handle.client
    if capability is Capability.COMMAND_CLIENT:
        return handle.cmd_client
    if capability is Capability.RESOURCE_MANAGER:
        return handle.manager
    if capability is Capability.NAMESPACE_SET:
        return MappingProxyType(_namespaces(handle))
    return _namespace(handle, request)


def _as_capability(request: CapabilityRequest) -> Capability:
    try:
        return Capability(request.capability)
    except ValueError:
        raise UnsupportedInjectionError(str(request)) from None


def _namespaces(handle: ContextHandle) -> dict[str, Any]:
    if handle.namespaces is None:
        raise NamespacesUnavailableError(handle.name)
    return handle.namespaces


def _namespace(handle: ContextHandle, request: CapabilityRequest) -> Any:
    if not request.name:
        raise UnsupportedInjectionError(f"{request} (namespace request without a name)")
    namespaces = _namespaces(handle)
    try:
        return namespaces[request.name]
    except KeyError:
        raise NamespaceNotFoundError(request.name, handle.name) from None


class DependencyResolver:
    """Convenience wrapper binding :func:`resolve` to one router."""

    def __init__(self, router: ContextRouter) -> None:
        self._router = router

    def resolve(self, request: CapabilityRequest) -> Any:
        return resolve(self._router, request)

    def client(self, context: str | None = None) -> Any:
        return self.resolve(CapabilityRequest(Capability.CLIENT, context))

    def cmd_client(self, context: str | None = None) -> Any:
        return self.resolve(CapabilityRequest(Capability.COMMAND_CLIENT, context))

    def resource_manager(self, context: str | None = None) -> Any:
        return self.resolve(CapabilityRequest(Capability.RESOURCE_MANAGER, context))

    def namespaces(self, context: str | None = None) -> Any:
        return self.resolve(CapabilityRequest(Capability.NAMESPACE_SET, context))

    def namespace(self, name: str, context: str | None = None) -> Any:
        return self.resolve(CapabilityRequest(Capability.NAMESPACE, context, name))
