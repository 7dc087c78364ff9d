"""Entry points for a test-execution harness.

The pytest plugin (:mod:`kubetestkit.pytest_plugin`) is built on these, and
any other runner can drive the same lifecycle::

    with kube_test_context(config) as router:
        manager = resolve(router, CapabilityRequest(Capability.RESOURCE_MANAGER))
        manager.create_and_track(config_map)
    # every AUTOMATIC context drained here, newest resource first
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Protocol

from kubetestkit.context.resolver import Capability, CapabilityRequest, DependencyResolver, resolve
from kubetestkit.context.router import ClientFactory, ContextRouter
from kubetestkit.errors import AggregatedFailureError
from kubetestkit.models.config import KubeTestConfig, KubeTestKitConfig, LogCollectionStrategy
from kubetestkit.observability.logging import get_logger

__all__ = [
    "Capability",
    "CapabilityRequest",
    "DependencyResolver",
    "LogCollector",
    "collect_logs",
    "kube_test_context",
    "materialize",
    "resolve",
    "should_collect_logs",
    "teardown_all",
]

_log = get_logger("harness")


class LogCollector(Protocol):
    """Dumps resource YAML and container logs for a finished test."""

    def collect(self, router: ContextRouter, test_name: str) -> None: ...


def materialize(
    config: KubeTestConfig,
    client_factory: ClientFactory | None = None,
    settings: KubeTestKitConfig | None = None,
) -> ContextRouter:
    """Build a router and bring every configured context up.

    If a context fails to initialize, whatever was already created is torn
    down before the :class:`ContextInitializationError` propagates.
    """
    router = ContextRouter(settings=settings, client_factory=client_factory)
    try:
        router.materialize(config)
    except Exception:
        _teardown_after_failed_setup(router)
        raise
    return router


def teardown_all(router: ContextRouter) -> None:
    """Drain every context and release client resources.

    Raises:
        AggregatedFailureError: if any deletion in any context failed.
    """
    try:
        router.teardown_all()
    finally:
        router.close()


def should_collect_logs(config: KubeTestConfig, failed: bool) -> bool:
    if not config.collect_logs:
        return False
    if config.log_collection_strategy is LogCollectionStrategy.AFTER_EACH:
        return True
    return failed


def collect_logs(
    collector: LogCollector | None,
    router: ContextRouter,
    test_name: str,
    failed: bool,
) -> bool:
    """Run *collector* if the test's configuration asks for it.

    Runs before cleanup so the resources are still there to inspect.  A
    collector error is logged and never changes the test outcome.

    Returns:
        True if the collector ran successfully.
    """
    config = router.config
    if collector is None or config is None or not should_collect_logs(config, failed):
        return False
    try:
        collector.collect(router, test_name)
    except Exception as exc:
        _log.warning("log_collection_failed", test=test_name, error=str(exc))
        return False
    _log.info("log_collection_finished", test=test_name, strategy=str(config.log_collection_strategy))
    return True


@contextmanager
def kube_test_context(
    config: KubeTestConfig,
    client_factory: ClientFactory | None = None,
    settings: KubeTestKitConfig | None = None,
) -> Iterator[ContextRouter]:
    """Materialize on entry, tear down on exit (even if the body raised).

    If the body raised, that error propagates.  A cleanup failure on top of it
    is logged and attached to it as a note instead of replacing it.
    """
    router = materialize(config, client_factory=client_factory, settings=settings)
    try:
        yield router
    except BaseException as exc:
        try:
            teardown_all(router)
        except AggregatedFailureError as teardown_exc:
            _log.error("cleanup_failed_after_test_error", error=str(teardown_exc))
            exc.add_note(f"Cleanup also failed: {teardown_exc}")
        raise
    teardown_all(router)


def _teardown_after_failed_setup(router: ContextRouter) -> None:
    try:
        teardown_all(router)
    except AggregatedFailureError as exc:
        _log.error("setup_cleanup_failed", error=str(exc))
