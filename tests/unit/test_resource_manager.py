"""Tests for kubetestkit.lifecycle.manager — tracking, teardown order and failure containment."""

from __future__ import annotations

import time
from typing import Any

import pytest
from kubernetes.client import (
    V1ConfigMap,
    V1Container,
    V1Deployment,
    V1DeploymentSpec,
    V1LabelSelector,
    V1ObjectMeta,
    V1PodSpec,
    V1PodTemplateSpec,
)

from kubetestkit.clients.cmd_client import KubeCmdClient
from kubetestkit.errors import (
    AggregatedFailureError,
    ResourceConditionTimeoutError,
    ResourceCreationError,
    ResourceDeletionError,
    ResourceDeletionTimeoutError,
)
from kubetestkit.fakes import InMemoryClusterClient
from kubetestkit.lifecycle.manager import ResourceManager, exists
from kubetestkit.models.resources import CleanupStrategy, DeletionMode, ManagedResource


def _cm(name: str, namespace: str = "ns1") -> dict[str, Any]:
    return {"apiVersion": "v1", "kind": "ConfigMap", "metadata": {"name": name, "namespace": namespace}}


def _ns(name: str) -> dict[str, Any]:
    return {"apiVersion": "v1", "kind": "Namespace", "metadata": {"name": name}}


def _deployment(name: str, namespace: str = "ns1") -> V1Deployment:
    labels = {"app": name}
    return V1Deployment(
        api_version="apps/v1",
        kind="Deployment",
        metadata=V1ObjectMeta(name=name, namespace=namespace),
        spec=V1DeploymentSpec(
            selector=V1LabelSelector(match_labels=labels),
            template=V1PodTemplateSpec(
                metadata=V1ObjectMeta(labels=labels),
                spec=V1PodSpec(containers=[V1Container(name=name, image="nginx:1.27", image_pull_policy="Always")]),
            ),
        ),
    )


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------


class TestCreateAndTrack:
    def test_tracks_in_creation_order(self, manager: ResourceManager) -> None:
        created = manager.create_and_track(_ns("ns1"), _cm("a"))
        assert [str(r) for r in created] == ["Namespace/ns1", "ConfigMap/ns1/a"]
        assert manager.registry.snapshot() == tuple(created)

    def test_returned_handles_carry_server_state(self, manager: ResourceManager) -> None:
        (created,) = manager.create_and_track(_cm("a"))
        assert created.uid
        assert created.resource_version

    def test_failure_keeps_earlier_resources_tracked(
        self, manager: ResourceManager, cluster: InMemoryClusterClient
    ) -> None:
        cluster.fail_create.add(("ConfigMap", "ns1", "b"))
        with pytest.raises(ResourceCreationError, match="ConfigMap/ns1/b") as exc_info:
            manager.create_and_track(_cm("a"), _cm("b"), _cm("c"))
        assert isinstance(exc_info.value.cause, RuntimeError)
        assert [str(r) for r in manager.registry.snapshot()] == ["ConfigMap/ns1/a"]
        assert cluster.created() == ["ConfigMap/ns1/a", "ConfigMap/ns1/b"]

    def test_accepts_kubernetes_models(self, manager: ResourceManager, cluster: InMemoryClusterClient) -> None:
        config_map = V1ConfigMap(
            api_version="v1",
            kind="ConfigMap",
            metadata=V1ObjectMeta(name="model", namespace="ns1"),
            data={"key": "value"},
        )

        cm, deployment = manager.create_and_track(config_map, _deployment("web"))

        assert cm == ManagedResource(kind="ConfigMap", name="model", namespace="ns1")
        assert deployment == ManagedResource(kind="Deployment", name="web", namespace="ns1", api_version="apps/v1")
        body = cluster.get(deployment)
        assert body is not None
        assert body["apiVersion"] == "apps/v1"
        assert "status" not in body
        assert body["spec"]["template"]["spec"]["containers"] == [
            {"name": "web", "image": "nginx:1.27", "imagePullPolicy": "Always"}
        ]
        cm_body = cluster.get(cm)
        assert cm_body is not None
        assert cm_body["data"] == {"key": "value"}

    def test_create_callbacks_run(self, manager: ResourceManager) -> None:
        seen: list[str] = []
        manager.add_create_callback(lambda r: seen.append(str(r)))
        manager.create_and_track(_cm("a"))
        assert seen == ["ConfigMap/ns1/a"]

    def test_failing_callback_does_not_break_creation(self, manager: ResourceManager) -> None:
        def broken(resource: ManagedResource) -> None:
            raise RuntimeError("callback bug")

        manager.add_create_callback(broken)
        manager.create_and_track(_cm("a"))
        assert manager.registry.size() == 1

    def test_adopt_tracks_existing_objects(self, manager: ResourceManager, cluster: InMemoryClusterClient) -> None:
        existing = cluster.put(_cm("pre-existing"))
        manager.adopt(existing)
        manager.drain_registry()
        assert cluster.deleted() == ["ConfigMap/ns1/pre-existing"]


class TestCreateWithWait:
    def test_waits_for_existence(self, manager: ResourceManager) -> None:
        created = manager.create_and_track_with_wait(_cm("a"))
        assert len(created) == 1

    def test_condition_timeout_keeps_resource_tracked(self, manager: ResourceManager) -> None:
        with pytest.raises(ResourceConditionTimeoutError, match="ConfigMap/ns1/a"):
            manager.create_and_track_with_wait(_cm("a"), condition=lambda state: False, timeout=0.05)
        assert manager.registry.size() == 1

    def test_custom_readiness_condition(self, manager: ResourceManager) -> None:
        def has_data(state: dict[str, Any] | None) -> bool:
            return bool(state and state.get("data"))

        body = _cm("a")
        body["data"] = {"key": "value"}
        manager.create_and_track_with_wait(body, condition=has_data)


# ---------------------------------------------------------------------------
# Conditions
# ---------------------------------------------------------------------------


class TestConditions:
    def test_exists_predicate(self) -> None:
        assert exists({"metadata": {}})
        assert not exists(None)

    def test_changed_since_detects_update(self, manager: ResourceManager, cluster: InMemoryClusterClient) -> None:
        (created,) = manager.create_and_track(_cm("a"))
        changed = manager.changed_since(created)
        assert not manager.wait_resource_condition(created, changed, timeout=0.05, interval=0.01)

        updated = _cm("a")
        updated["data"] = {"k": "v"}
        cluster.put(updated)
        assert manager.wait_resource_condition(created, changed, timeout=0.5, interval=0.01)

    def test_changed_since_treats_absence_as_change(self, manager: ResourceManager) -> None:
        (created,) = manager.create_and_track(_cm("a"))
        assert manager.changed_since(created)(None)

    def test_deleted_treats_new_uid_as_gone(self, manager: ResourceManager) -> None:
        (created,) = manager.create_and_track(_cm("a"))
        deleted = manager.deleted(created)
        assert not deleted({"metadata": {"uid": created.uid}})
        assert deleted({"metadata": {"uid": "recreated"}})
        assert deleted(None)


# ---------------------------------------------------------------------------
# Explicit deletion
# ---------------------------------------------------------------------------


class TestDeleteWithWait:
    def test_deletes_and_untracks(self, manager: ResourceManager, cluster: InMemoryClusterClient) -> None:
        created = manager.create_and_track(_cm("a"), _cm("b"))
        manager.delete_resource_with_wait(*created)
        assert cluster.deleted() == ["ConfigMap/ns1/a", "ConfigMap/ns1/b"]
        assert manager.registry.is_empty()
        assert not cluster.exists("ConfigMap", "a", "ns1")

    def test_waits_through_terminating(self, manager: ResourceManager, cluster: InMemoryClusterClient) -> None:
        cluster.terminating_reads = 3
        (created,) = manager.create_and_track(_cm("a"))
        manager.delete_resource_with_wait(created)
        assert not cluster.exists("ConfigMap", "a", "ns1")

    def test_absent_resource_is_not_an_error(self, manager: ResourceManager) -> None:
        ghost = ManagedResource(kind="ConfigMap", name="ghost", namespace="ns1")
        manager.delete_resource_with_wait(ghost)
        manager.delete_resource_with_wait(ghost)

    def test_stops_at_first_timeout(self, manager: ResourceManager, cluster: InMemoryClusterClient) -> None:
        stuck, other = manager.create_and_track(_cm("stuck"), _cm("other"))
        cluster.stuck.add(stuck.key)
        with pytest.raises(ResourceDeletionTimeoutError):
            manager.delete_resource_with_wait(stuck, other)
        assert cluster.deleted() == ["ConfigMap/ns1/stuck"]
        assert set(manager.registry.snapshot()) == {stuck, other}

    def test_delete_callbacks_run(self, manager: ResourceManager) -> None:
        seen: list[str] = []
        manager.add_delete_callback(lambda r: seen.append(str(r)))
        (created,) = manager.create_and_track(_cm("a"))
        manager.delete_resource_with_wait(created)
        assert seen == ["ConfigMap/ns1/a"]


class TestDeleteWithoutWait:
    def test_untracks_once_accepted(self, manager: ResourceManager, cluster: InMemoryClusterClient) -> None:
        cluster.terminating_reads = 100
        (created,) = manager.create_and_track(_cm("a"))
        manager.delete_resource_without_wait(created)
        assert manager.registry.is_empty()
        assert cluster.exists("ConfigMap", "a", "ns1")

    def test_rejected_delete_raises_and_keeps_tracking(
        self, manager: ResourceManager, cluster: InMemoryClusterClient
    ) -> None:
        (created,) = manager.create_and_track(_cm("a"))
        cluster.fail_delete.add(created.key)
        with pytest.raises(ResourceDeletionError, match="ConfigMap/ns1/a"):
            manager.delete_resource_without_wait(created)
        assert created in manager.registry


class TestDeleteAsyncWait:
    def test_deletes_all(self, manager: ResourceManager, cluster: InMemoryClusterClient) -> None:
        created = manager.create_and_track(_cm("a"), _cm("b"), _cm("c"))
        manager.delete_resource_async_wait(*created)
        assert cluster.deleted() == ["ConfigMap/ns1/a", "ConfigMap/ns1/b", "ConfigMap/ns1/c"]
        assert manager.registry.is_empty()

    def test_failures_aggregated_and_siblings_untracked(
        self, manager: ResourceManager, cluster: InMemoryClusterClient
    ) -> None:
        a, b, c = manager.create_and_track(_cm("a"), _cm("b"), _cm("c"))
        cluster.fail_delete.update({a.key, c.key})
        with pytest.raises(AggregatedFailureError) as exc_info:
            manager.delete_resource_async_wait(a, b, c)
        assert len(exc_info.value.errors) == 2
        assert "ConfigMap/ns1/a" in str(exc_info.value)
        assert "ConfigMap/ns1/c" in str(exc_info.value)
        assert manager.registry.snapshot() == (a, c)


# ---------------------------------------------------------------------------
# Teardown
# ---------------------------------------------------------------------------


class TestDrainRegistry:
    def test_deletes_in_reverse_creation_order(
        self, manager: ResourceManager, cluster: InMemoryClusterClient
    ) -> None:
        manager.create_and_track(_ns("ns1"), _ns("ns2"), _cm("cfg", namespace="ns2"))
        manager.drain_registry()
        assert cluster.deleted() == ["ConfigMap/ns2/cfg", "Namespace/ns2", "Namespace/ns1"]
        assert manager.registry.is_empty()

    def test_sequential_mode_same_order(
        self, sequential_manager: ResourceManager, cluster: InMemoryClusterClient
    ) -> None:
        sequential_manager.create_and_track(_ns("ns1"), _ns("ns2"), _cm("cfg", namespace="ns2"))
        sequential_manager.drain_registry()
        assert cluster.deleted() == ["ConfigMap/ns2/cfg", "Namespace/ns2", "Namespace/ns1"]

    def test_mode_override(self, manager: ResourceManager, cluster: InMemoryClusterClient) -> None:
        manager.create_and_track(_cm("a"), _cm("b"))
        manager.drain_registry(mode=DeletionMode.SEQUENTIAL)
        assert cluster.deleted() == ["ConfigMap/ns1/b", "ConfigMap/ns1/a"]

    def test_empty_registry_is_noop(self, manager: ResourceManager, cluster: InMemoryClusterClient) -> None:
        manager.drain_registry()
        assert cluster.calls == []

    @pytest.mark.parametrize("strategy", [CleanupStrategy.MANUAL, CleanupStrategy.NEVER])
    def test_non_automatic_strategy_leaves_everything(
        self, manager: ResourceManager, cluster: InMemoryClusterClient, strategy: CleanupStrategy
    ) -> None:
        manager.create_and_track(_cm("a"))
        manager.drain_registry(strategy)
        assert cluster.deleted() == []
        assert manager.registry.size() == 1

    @pytest.mark.parametrize("mode", [DeletionMode.PARALLEL, DeletionMode.SEQUENTIAL])
    def test_one_failure_does_not_stop_the_rest(
        self, manager: ResourceManager, cluster: InMemoryClusterClient, mode: DeletionMode
    ) -> None:
        a, b, c = manager.create_and_track(_cm("a"), _cm("b"), _cm("c"))
        cluster.fail_delete.add(b.key)

        with pytest.raises(AggregatedFailureError, match="deletions failed in context 'primary'") as exc_info:
            manager.drain_registry(mode=mode)

        assert cluster.deleted() == ["ConfigMap/ns1/c", "ConfigMap/ns1/b", "ConfigMap/ns1/a"]
        assert manager.registry.snapshot() == (b,)
        assert not cluster.exists("ConfigMap", "a", "ns1")
        assert not cluster.exists("ConfigMap", "c", "ns1")
        (error,) = exc_info.value.errors
        assert isinstance(error, ResourceDeletionError)

    def test_timeout_is_bounded(
        self, manager: ResourceManager, cluster: InMemoryClusterClient
    ) -> None:
        a, b = manager.create_and_track(_cm("a"), _cm("b"))
        cluster.stuck.add(a.key)

        start = time.monotonic()
        with pytest.raises(AggregatedFailureError) as exc_info:
            manager.drain_registry()
        elapsed = time.monotonic() - start

        assert elapsed < 3.0
        (error,) = exc_info.value.errors
        assert isinstance(error, ResourceDeletionTimeoutError)
        assert manager.registry.snapshot() == (a,)

    def test_parallel_waits_overlap(self, manager: ResourceManager, cluster: InMemoryClusterClient) -> None:
        created = manager.create_and_track(_cm("a"), _cm("b"), _cm("c"))
        cluster.stuck.update(r.key for r in created)

        start = time.monotonic()
        with pytest.raises(AggregatedFailureError) as exc_info:
            manager.drain_registry()
        elapsed = time.monotonic() - start

        assert len(exc_info.value.errors) == 3
        # three 1s timeouts running concurrently, not back to back
        assert elapsed < 2.5

    def test_failed_resources_retried_on_next_drain(
        self, manager: ResourceManager, cluster: InMemoryClusterClient
    ) -> None:
        a, b = manager.create_and_track(_cm("a"), _cm("b"))
        cluster.fail_delete.add(a.key)
        with pytest.raises(AggregatedFailureError):
            manager.drain_registry()

        cluster.fail_delete.clear()
        manager.delete_all_resources()
        assert manager.registry.is_empty()
        assert not cluster.exists("ConfigMap", "a", "ns1")

    @pytest.mark.parametrize("mode", [DeletionMode.PARALLEL, DeletionMode.SEQUENTIAL])
    def test_interrupted_drain_keeps_unconfirmed_tracked(
        self, manager: ResourceManager, cluster: InMemoryClusterClient, mode: DeletionMode
    ) -> None:
        a, b, c = manager.create_and_track(_cm("a"), _cm("b"), _cm("c"))

        def interrupt(resource: ManagedResource) -> None:
            if resource == b:
                raise KeyboardInterrupt

        cluster.on_delete = interrupt
        with pytest.raises(KeyboardInterrupt):
            manager.drain_registry(mode=mode)

        assert not cluster.exists("ConfigMap", "c", "ns1")
        assert manager.registry.snapshot() == (a, b)

    def test_exposes_context_clients(self, cluster: InMemoryClusterClient) -> None:
        kubectl = KubeCmdClient(context="kind-dev")
        mgr = ResourceManager(cluster, cmd_client=kubectl, context="staging")
        assert mgr.client is cluster
        assert mgr.cmd_client is kubectl
        assert ResourceManager(cluster).cmd_client is None

    def test_context_manager_closes_pool(self, cluster: InMemoryClusterClient) -> None:
        with ResourceManager(cluster) as mgr:
            mgr.create_and_track(_cm("a"))
            mgr.drain_registry()
        mgr.close()
        assert mgr.registry.is_empty()
