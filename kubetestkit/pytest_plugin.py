"""pytest integration.

Mark a test with ``kubernetes_test`` and request any of the fixtures below::

    @pytest.mark.kubernetes_test(
        namespaces=["ns1", "ns2"],
        cleanup=CleanupStrategy.AUTOMATIC,
        additional_contexts=[ContextConfig(name="staging", namespaces=["stg-ns"])],
    )
    def test_config_map(kube_resource_manager, kube_resolver):
        kube_resource_manager.create_and_track(config_map)
        staging_ns = kube_resolver.namespace("stg-ns", context="staging")

Fixtures:
    kube_router             materialized ContextRouter, torn down after the test
    kube_resolver           DependencyResolver bound to kube_router
    kube_client             primary context API client
    kube_cmd_client         primary context kubectl client
    kube_resource_manager   primary context ResourceManager
    kube_namespaces         primary context namespace set

Override ``kube_client_factory`` to point tests at something other than the
kubeconfig (the unit tests use in-memory clients) and ``kube_log_collector``
to plug in a diagnostics collector.  A failed cleanup is reported as an error
in the test's teardown phase, separate from the test's own result.
"""

from __future__ import annotations

from collections.abc import Iterator
from typing import Any

import pytest

from kubetestkit.config import load_config
from kubetestkit.context.resolver import DependencyResolver
from kubetestkit.context.router import ClientFactory, ContextRouter
from kubetestkit.harness import LogCollector, collect_logs, materialize, teardown_all
from kubetestkit.models.config import KubeTestConfig, KubeTestKitConfig
from kubetestkit.observability.logging import bind_test, setup_logging, unbind_test

MARKER = "kubernetes_test"

_REPORTS_KEY = pytest.StashKey[dict[str, pytest.TestReport]]()


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers",
        f"{MARKER}(**options): provision Kubernetes contexts and namespaces for the test "
        "and clean up everything it creates",
    )


@pytest.hookimpl(hookwrapper=True, tryfirst=True)
def pytest_runtest_makereport(item: pytest.Item, call: pytest.CallInfo[None]) -> Iterator[Any]:
    outcome = yield
    report: pytest.TestReport = outcome.get_result()
    item.stash.setdefault(_REPORTS_KEY, {})[report.when] = report


def config_from_marker(marker: pytest.Mark | None) -> KubeTestConfig:
    """Build the per-test configuration from the ``kubernetes_test`` marker."""
    if marker is None:
        raise LookupError(f"@pytest.mark.{MARKER} marker not found on test")
    if marker.args:
        raise TypeError(f"@pytest.mark.{MARKER} takes keyword arguments only")
    return KubeTestConfig(**marker.kwargs)


def _test_failed(node: pytest.Item) -> bool:
    reports = node.stash.get(_REPORTS_KEY, {})
    return any(report.failed for report in reports.values())


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def kube_settings() -> KubeTestKitConfig:
    settings = load_config()
    setup_logging(settings.log.level)
    return settings


@pytest.fixture(scope="session")
def kube_client_factory() -> ClientFactory | None:
    """None selects real clients built from the kubeconfig."""
    return None


@pytest.fixture(scope="session")
def kube_log_collector() -> LogCollector | None:
    return None


@pytest.fixture
def kube_test_config(request: pytest.FixtureRequest) -> KubeTestConfig:
    try:
        return config_from_marker(request.node.get_closest_marker(MARKER))
    except (LookupError, TypeError, ValueError) as exc:
        pytest.fail(str(exc), pytrace=False)


@pytest.fixture
def kube_router(
    request: pytest.FixtureRequest,
    kube_test_config: KubeTestConfig,
    kube_settings: KubeTestKitConfig,
    kube_client_factory: ClientFactory | None,
    kube_log_collector: LogCollector | None,
) -> Iterator[ContextRouter]:
    test_name = request.node.nodeid
    bind_test(test_name)
    try:
        router = materialize(kube_test_config, client_factory=kube_client_factory, settings=kube_settings)
        yield router
        collect_logs(kube_log_collector, router, test_name, failed=_test_failed(request.node))
        teardown_all(router)
    finally:
        unbind_test()


@pytest.fixture
def kube_resolver(kube_router: ContextRouter) -> DependencyResolver:
    return DependencyResolver(kube_router)


@pytest.fixture
def kube_client(kube_resolver: DependencyResolver) -> Any:
    return kube_resolver.client()


@pytest.fixture
def kube_cmd_client(kube_resolver: DependencyResolver) -> Any:
    return kube_resolver.cmd_client()


@pytest.fixture
def kube_resource_manager(kube_resolver: DependencyResolver) -> Any:
    return kube_resolver.resource_manager()


@pytest.fixture
def kube_namespaces(kube_resolver: DependencyResolver) -> Any:
    return kube_resolver.namespaces()
