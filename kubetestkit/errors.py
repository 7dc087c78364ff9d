"""Exception taxonomy for kubetestkit.

Creation and resolution errors propagate straight to the test.  Teardown
errors are collected and raised once as :class:`AggregatedFailureError`.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from kubetestkit.models.resources import ManagedResource


class KubeTestKitError(Exception):
    """Base class for every error raised by kubetestkit."""


# ---------------------------------------------------------------------------
# Resource lifecycle
# ---------------------------------------------------------------------------


class InvalidResourceError(KubeTestKitError, ValueError):
    """Raised when a resource handle lacks an identifiable kind or name."""


class ResourceCreationError(KubeTestKitError):
    """Raised when a create call fails.  Earlier creates stay tracked."""

    def __init__(self, resource: ManagedResource | str, cause: Exception) -> None:
        super().__init__(f"Failed to create {resource}: {cause}")
        self.resource = resource
        self.cause = cause


class ResourceDeletionTimeoutError(KubeTestKitError, TimeoutError):
    """Raised when a deleted resource is still present after the timeout."""

    def __init__(self, resource: ManagedResource, timeout: float) -> None:
        super().__init__(f"Timed out after {timeout:.1f}s waiting for deletion of {resource}")
        self.resource = resource
        self.timeout = timeout


class ResourceConditionTimeoutError(KubeTestKitError, TimeoutError):
    """Raised when a created resource never reaches its readiness condition."""

    def __init__(self, resource: ManagedResource, timeout: float) -> None:
        super().__init__(f"Timed out after {timeout:.1f}s waiting for {resource} to become ready")
        self.resource = resource
        self.timeout = timeout


class ResourceDeletionError(KubeTestKitError):
    """Raised when the delete call itself fails (as opposed to timing out)."""

    def __init__(self, resource: ManagedResource, cause: Exception) -> None:
        super().__init__(f"Failed to delete {resource}: {cause}")
        self.resource = resource
        self.cause = cause


class AggregatedFailureError(KubeTestKitError):
    """Wraps one or more failures collected from a batch of independent units.

    The message concatenates every underlying failure so that no single
    failure hides the others.
    """

    def __init__(self, errors: Sequence[Exception], summary: str = "operations failed") -> None:
        if not errors:
            raise ValueError("AggregatedFailureError requires at least one error")
        self.errors: tuple[Exception, ...] = tuple(errors)
        details = "; ".join(f"{type(err).__name__}: {err}" for err in self.errors)
        super().__init__(f"{len(self.errors)} {summary}: {details}")


# ---------------------------------------------------------------------------
# Contexts
# ---------------------------------------------------------------------------


class ContextNotAvailableError(KubeTestKitError, LookupError):
    """Raised when a requested context was never materialized."""

    def __init__(self, context: str) -> None:
        super().__init__(f"Resource manager not available for context: {context}")
        self.context = context


class ContextInitializationError(KubeTestKitError):
    """Raised when a context cannot be brought up (client or namespaces)."""

    def __init__(self, name: str, cause: Exception) -> None:
        super().__init__(f"Context '{name}' failed to initialize: {cause}")
        self.name = name
        self.cause = cause


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------


class NamespaceNotFoundError(KubeTestKitError, LookupError):
    """Raised when a requested namespace is not part of the test configuration."""

    def __init__(self, name: str, context: str = "primary") -> None:
        super().__init__(f"Namespace '{name}' not found in context '{context}' test configuration")
        self.name = name
        self.context = context


class NamespacesUnavailableError(KubeTestKitError, LookupError):
    """Raised when a context never materialized a namespace set."""

    def __init__(self, context: str) -> None:
        super().__init__(f"Namespace objects not available for context: {context}")
        self.context = context


class UnsupportedInjectionError(KubeTestKitError):
    """Raised when a capability request matches no known capability."""

    def __init__(self, description: str) -> None:
        super().__init__(f"Cannot resolve injection for: {description}")
        self.description = description


# ---------------------------------------------------------------------------
# Command client
# ---------------------------------------------------------------------------


class KubeCmdError(KubeTestKitError):
    """Raised when a kubectl invocation exits non-zero."""

    def __init__(self, command: Sequence[str], returncode: int, stderr: str) -> None:
        joined = " ".join(command)
        super().__init__(f"Command '{joined}' failed with exit code {returncode}: {stderr.strip()}")
        self.command = tuple(command)
        self.returncode = returncode
        self.stderr = stderr
