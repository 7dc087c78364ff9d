"""Shared fixtures: in-memory clusters and fast lifecycle settings."""

from __future__ import annotations

from collections.abc import Iterator

import pytest

from kubetestkit.fakes import InMemoryClusterClient
from kubetestkit.lifecycle.manager import ResourceManager
from kubetestkit.models.config import KubeTestKitConfig, LifecycleConfig
from kubetestkit.models.resources import DeletionMode
from kubetestkit.registry.resource_registry import ResourceRegistry


@pytest.fixture
def fast_lifecycle() -> LifecycleConfig:
    return LifecycleConfig(
        delete_timeout_seconds=1.0,
        condition_timeout_seconds=1.0,
        poll_interval_seconds=0.01,
        max_workers=4,
    )


@pytest.fixture
def fast_settings(fast_lifecycle: LifecycleConfig) -> KubeTestKitConfig:
    return KubeTestKitConfig(lifecycle=fast_lifecycle)


@pytest.fixture
def cluster() -> InMemoryClusterClient:
    return InMemoryClusterClient(context_name="kind-test")


@pytest.fixture
def manager(cluster: InMemoryClusterClient, fast_lifecycle: LifecycleConfig) -> Iterator[ResourceManager]:
    mgr = ResourceManager(cluster, ResourceRegistry("primary"), settings=fast_lifecycle)
    yield mgr
    mgr.close()


@pytest.fixture
def sequential_manager(cluster: InMemoryClusterClient, fast_lifecycle: LifecycleConfig) -> Iterator[ResourceManager]:
    settings = fast_lifecycle.model_copy(update={"deletion_mode": DeletionMode.SEQUENTIAL})
    mgr = ResourceManager(cluster, settings=settings)
    yield mgr
    mgr.close()
