"""Context router: one lifecycle manager per cluster context.

A test always has the implicit ``primary`` context and may declare any number
of additional, explicitly named contexts.  :meth:`ContextRouter.materialize`
brings each one up in declaration order: acquire and validate a client, create
the declared namespaces as tracked resources, register the handle.

Startup is fail-fast, teardown is not: a context that fails part-way through
materialization stays registered so :meth:`ContextRouter.teardown_all` still
deletes whatever it did create, and teardown visits every context before
reporting failures.

Each test owns its own router.  Routers are never shared between tests.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from dataclasses import dataclass
from kubetestkit.clients.base import ClusterClient
from kubetestkit.clients.cmd_client import KubeCmdClient
from kubetestkit.errors import AggregatedFailureError, ContextInitializationError
from kubetestkit.lifecycle.manager import ResourceManager
from kubetestkit.models.config import PRIMARY_CONTEXT, KubeTestConfig, KubeTestKitConfig
from kubetestkit.models.resources import CleanupStrategy, ManagedResource
from kubetestkit.observability.logging import get_logger
from kubetestkit.observability.metrics import contexts_materialized_total, teardown_failures_total
from kubetestkit.registry.resource_registry import ResourceRegistry

# kubeconfig context (None = current) -> (API client, kubectl client)
ClientFactory = Callable[[str | None], tuple[ClusterClient, KubeCmdClient | None]]

_log = get_logger("context_router")


@dataclass
class ContextHandle:
    """Everything a test can reach inside one context.

    ``namespaces`` stays None until every declared namespace was created.
    """

    name: str
    client: ClusterClient
    cmd_client: KubeCmdClient | None
    manager: ResourceManager
    cleanup: CleanupStrategy = CleanupStrategy.AUTOMATIC
    namespaces: dict[str, ManagedResource] | None = None

    @property
    def registry(self) -> ResourceRegistry:
        return self.manager.registry


def default_client_factory(settings: KubeTestKitConfig) -> ClientFactory:
    """Factory building real ``KubeClient``/``KubeCmdClient`` pairs."""

    def _factory(kube_context: str | None) -> tuple[ClusterClient, KubeCmdClient | None]:
        from kubetestkit.clients.kube_client import KubeClient

        return (
            KubeClient(context=kube_context),
            KubeCmdClient(context=kube_context or "", binary=settings.kubectl_binary),
        )

    return _factory


class ContextRouter:
    """Owns the set of active contexts for one test.

    Args:
        settings: Process-wide settings; lifecycle timeouts are passed on to
            every manager.
        client_factory: Builds the clients for a kubeconfig context.  Defaults
            to :func:`default_client_factory`.
    """

    def __init__(
        self,
        settings: KubeTestKitConfig | None = None,
        client_factory: ClientFactory | None = None,
    ) -> None:
        self._settings = settings or KubeTestKitConfig()
        self._client_factory = client_factory or default_client_factory(self._settings)
        self._contexts: dict[str, ContextHandle] = {}
        self._config: KubeTestConfig | None = None

    @property
    def config(self) -> KubeTestConfig | None:
        """Test configuration passed to :meth:`materialize`, if any."""
        return self._config

    # ------------------------------------------------------------------
    # Materialization
    # ------------------------------------------------------------------

    def materialize(self, config: KubeTestConfig) -> ContextRouter:
        """Bring up the primary context and every additional context.

        Raises:
            ContextInitializationError: for the first context whose client or
                namespaces could not be set up.  Contexts (and namespaces)
                created before the failure remain registered.
        """
        self._config = config
        for name, ctx_settings, kube_context in config.context_settings():
            handle = self._connect(name, kube_context, ctx_settings.cleanup)
            self._create_namespaces(
                handle,
                ctx_settings.namespaces,
                ctx_settings.labels,
                ctx_settings.annotations,
            )
        return self

    def register(self, handle: ContextHandle) -> None:
        """Register an externally built handle, replacing any with the same name."""
        self._contexts[handle.name] = handle

    def _connect(self, name: str, kube_context: str | None, cleanup: CleanupStrategy) -> ContextHandle:
        try:
            client, cmd_client = self._client_factory(kube_context)
            client.ping()
        except Exception as exc:
            contexts_materialized_total.labels(result="failed").inc()
            _log.error("context_connect_failed", context=name, kube_context=kube_context, error=str(exc))
            raise ContextInitializationError(name, exc) from exc

        manager = ResourceManager(
            client,
            ResourceRegistry(name),
            cmd_client=cmd_client,
            context=name,
            settings=self._settings.lifecycle,
        )
        handle = ContextHandle(name=name, client=client, cmd_client=cmd_client, manager=manager, cleanup=cleanup)
        self.register(handle)
        return handle

    def _create_namespaces(
        self,
        handle: ContextHandle,
        names: list[str],
        labels: dict[str, str],
        annotations: dict[str, str],
    ) -> None:
        namespaces: dict[str, ManagedResource] = {}
        try:
            for ns in names:
                body = ManagedResource.namespace_manifest(ns, labels, annotations)
                (created,) = handle.manager.create_and_track(body)
                namespaces[ns] = created
        except Exception as exc:
            contexts_materialized_total.labels(result="failed").inc()
            _log.error(
                "context_namespaces_failed",
                context=handle.name,
                created=sorted(namespaces),
                error=str(exc),
            )
            raise ContextInitializationError(handle.name, exc) from exc

        handle.namespaces = namespaces
        contexts_materialized_total.labels(result="ok").inc()
        _log.info("context_materialized", context=handle.name, namespaces=list(namespaces))

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get(self, name: str | None = None) -> ContextHandle | None:
        """Handle for *name* (primary when empty), or None if never materialized."""
        return self._contexts.get(name or PRIMARY_CONTEXT)

    def names(self) -> list[str]:
        return list(self._contexts)

    def __iter__(self) -> Iterator[ContextHandle]:
        return iter(list(self._contexts.values()))

    def __len__(self) -> int:
        return len(self._contexts)

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    def teardown_all(self) -> None:
        """Drain every context per its cleanup strategy.

        Contexts are visited newest-first; within each, deletions are issued in
        reverse creation order.  Failures from all contexts are collected.

        Raises:
            AggregatedFailureError: listing every failed deletion.
        """
        errors: list[Exception] = []
        for handle in reversed(list(self._contexts.values())):
            try:
                handle.manager.drain_registry(handle.cleanup)
            except AggregatedFailureError as exc:
                teardown_failures_total.labels(context=handle.name).inc()
                errors.extend(exc.errors)
            except Exception as exc:
                teardown_failures_total.labels(context=handle.name).inc()
                _log.error("context_teardown_failed", context=handle.name, error=str(exc))
                errors.append(exc)
        if errors:
            raise AggregatedFailureError(errors, summary="teardown failures")

    def close(self) -> None:
        """Release worker pools and client connections of every context."""
        for handle in self._contexts.values():
            handle.manager.close()
            close_fn = getattr(handle.client, "close", None)
            if callable(close_fn):
                try:
                    close_fn()
                except Exception as exc:
                    _log.debug("client_close_failed", context=handle.name, error=str(exc))
