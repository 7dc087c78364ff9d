"""Resource lifecycle manager for one cluster context.

Creates resources through a :class:`~kubetestkit.clients.base.ClusterClient`,
records every success in the context's :class:`ResourceRegistry`, and deletes
them again in one of three ways:

``delete_resource_with_wait``
    Sequential.  Each resource is deleted and confirmed absent before the next
    delete is issued, so completion order equals the order given.
``delete_resource_without_wait``
    Fire-and-forget.  Untracked as soon as the delete call is accepted.
``delete_resource_async_wait``
    One unit of work (delete + wait for absence) per resource on a shared
    thread pool.  Delete calls are still *issued* in the order given; each unit
    waits only for its predecessor's issuance, not its completion, so
    completion order is not guaranteed.  Every unit runs to completion or
    timeout; failures are collected and raised together.

Teardown (:meth:`ResourceManager.drain_registry`) pulls the registry
newest-first and feeds that batch to the parallel or sequential path.
Resources that could not be deleted go back into the registry so a later
drain retries them.
"""

from __future__ import annotations

import contextvars
import threading
import time
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Any

from structlog.typing import FilteringBoundLogger

from kubetestkit.clients.base import ClusterClient
from kubetestkit.clients.cmd_client import KubeCmdClient
from kubetestkit.errors import (
    AggregatedFailureError,
    ResourceConditionTimeoutError,
    ResourceCreationError,
    ResourceDeletionError,
    ResourceDeletionTimeoutError,
)
from kubetestkit.lifecycle.polling import poll_until
from kubetestkit.models.config import LifecycleConfig
from kubetestkit.models.resources import CleanupStrategy, DeletionMode, ManagedResource
from kubetestkit.observability.logging import get_logger
from kubetestkit.observability.metrics import (
    resource_creation_failures_total,
    resource_deletion_failures_total,
    resource_deletion_seconds,
    resources_created_total,
    resources_deleted_total,
)
from kubetestkit.registry.resource_registry import ResourceRegistry

ResourceState = dict[str, Any] | None
ResourcePredicate = Callable[[ResourceState], bool]
ResourceCallback = Callable[[ManagedResource], None]

# (resource, error) for every unit of a batch that did not succeed
_Failures = list[tuple[ManagedResource, Exception]]


def exists(state: ResourceState) -> bool:
    return state is not None


class ResourceManager:
    """Tracks and cleans up resources created in one context.

    Args:
        client: Cluster client for the context.
        registry: Registry to record into.  A fresh one is created if omitted.
        cmd_client: kubectl client for the same context, exposed to tests.
        context: Context name, used in logs, metrics and error messages.
        settings: Timeouts, poll interval, worker pool size and drain mode.
    """

    def __init__(
        self,
        client: ClusterClient,
        registry: ResourceRegistry | None = None,
        *,
        cmd_client: KubeCmdClient | None = None,
        context: str = "primary",
        settings: LifecycleConfig | None = None,
    ) -> None:
        self._client = client
        self._cmd_client = cmd_client
        self._context = context
        self._registry = registry if registry is not None else ResourceRegistry(context)
        self._settings = settings or LifecycleConfig()
        self._log = get_logger("resource_manager", context=context)

        self._create_callbacks: list[ResourceCallback] = []
        self._delete_callbacks: list[ResourceCallback] = []

        self._executor: ThreadPoolExecutor | None = None
        self._executor_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def client(self) -> ClusterClient:
        return self._client

    @property
    def cmd_client(self) -> KubeCmdClient | None:
        return self._cmd_client

    @property
    def registry(self) -> ResourceRegistry:
        return self._registry

    @property
    def context(self) -> str:
        return self._context

    @property
    def settings(self) -> LifecycleConfig:
        return self._settings

    def add_create_callback(self, callback: ResourceCallback) -> None:
        """Call *callback* with every resource after it is created and tracked."""
        self._create_callbacks.append(callback)

    def add_delete_callback(self, callback: ResourceCallback) -> None:
        """Call *callback* with every resource after its deletion is confirmed."""
        self._delete_callbacks.append(callback)

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_and_track(self, *manifests: Any) -> list[ManagedResource]:
        """Create each manifest in order, tracking each success immediately.

        Manifests may be dicts, kubernetes model objects or
        :class:`ManagedResource` handles carrying a body.

        Raises:
            ResourceCreationError: on the first failing create.  Resources
                created before it remain tracked.
        """
        created: list[ManagedResource] = []
        for manifest in manifests:
            body = _manifest_of(manifest)
            kind = str(body.get("kind") or "unknown")
            try:
                resource = self._client.create(body)
            except Exception as exc:
                resource_creation_failures_total.labels(context=self._context, kind=kind).inc()
                described = ManagedResource.from_manifest(body)
                self._log.warning("resource_create_failed", resource=str(described), error=str(exc))
                raise ResourceCreationError(described, exc) from exc
            self._registry.record(resource)
            resources_created_total.labels(context=self._context, kind=resource.kind).inc()
            self._log.info("resource_created", resource=str(resource))
            _run_callbacks(self._create_callbacks, resource, self._log, "create")
            created.append(resource)
        return created

    def create_and_track_with_wait(
        self,
        *manifests: Any,
        condition: ResourcePredicate = exists,
        timeout: float | None = None,
    ) -> list[ManagedResource]:
        """Create and track, then wait for each resource's readiness *condition*.

        Raises:
            ResourceCreationError: as :meth:`create_and_track`.
            ResourceConditionTimeoutError: for the first resource that is not
                ready in time.  It stays tracked.
        """
        created = self.create_and_track(*manifests)
        effective_timeout = timeout if timeout is not None else self._settings.condition_timeout_seconds
        for resource in created:
            if not self.wait_resource_condition(resource, condition, timeout=effective_timeout):
                raise ResourceConditionTimeoutError(resource, effective_timeout)
        return created

    def adopt(self, *resources: Any) -> list[ManagedResource]:
        """Track resources that already exist so teardown deletes them too."""
        adopted = [_handle_of(resource) for resource in resources]
        for resource in adopted:
            self._registry.record(resource)
            self._log.info("resource_adopted", resource=str(resource))
        return adopted

    # ------------------------------------------------------------------
    # Conditions
    # ------------------------------------------------------------------

    def wait_resource_condition(
        self,
        resource: ManagedResource,
        predicate: ResourcePredicate,
        timeout: float | None = None,
        interval: float | None = None,
    ) -> bool:
        """Poll the resource until ``predicate(state)`` holds.

        ``state`` is the current manifest dict, or None once the resource is
        gone.  Returns False on timeout instead of raising.
        """
        return poll_until(
            lambda: predicate(self._client.get(resource)),
            timeout=timeout if timeout is not None else self._settings.condition_timeout_seconds,
            interval=interval if interval is not None else self._settings.poll_interval_seconds,
            description=str(resource),
        )

    def changed_since(self, resource: ManagedResource) -> ResourcePredicate:
        """Predicate that holds once *resource* differs from the tracked version.

        Absence counts as a change.
        """
        baseline = resource.resource_version

        def _changed(state: ResourceState) -> bool:
            return state is None or self._client.resource_version(state) != baseline

        return _changed

    def deleted(self, resource: ManagedResource) -> ResourcePredicate:
        """Predicate that holds once *resource* is gone.

        An object with the same name but a different uid is a re-creation and
        counts as gone.
        """

        def _deleted(state: ResourceState) -> bool:
            if state is None:
                return True
            uid = (state.get("metadata") or {}).get("uid")
            return bool(resource.uid and uid and uid != resource.uid)

        return _deleted

    # ------------------------------------------------------------------
    # Deletion
    # ------------------------------------------------------------------

    def delete_resource_with_wait(self, *resources: Any) -> None:
        """Delete each resource and wait for it to disappear, one at a time.

        Raises:
            ResourceDeletionError: if a delete call is rejected.
            ResourceDeletionTimeoutError: if a resource is still present after
                the delete timeout.  It and every later resource stay tracked.
        """
        for resource in (_handle_of(r) for r in resources):
            self._delete_and_wait(resource)
            self._untrack(resource, DeletionMode.SEQUENTIAL)

    def delete_resource_without_wait(self, *resources: Any) -> None:
        """Issue deletes without waiting; untrack each once its delete is accepted.

        Raises:
            ResourceDeletionError: on the first rejected delete call.
        """
        for resource in (_handle_of(r) for r in resources):
            self._issue_delete(resource)
            self._registry.remove(resource)
            resources_deleted_total.labels(context=self._context, kind=resource.kind, mode="no_wait").inc()
            self._log.info("resource_delete_issued", resource=str(resource))

    def delete_resource_async_wait(self, *resources: Any) -> None:
        """Delete all resources concurrently and wait for every one.

        Successful deletions are untracked even when siblings fail.

        Raises:
            AggregatedFailureError: naming every resource that failed.
        """
        failures = self._delete_parallel([_handle_of(r) for r in resources])
        if failures:
            raise AggregatedFailureError([exc for _, exc in failures], summary="deletions failed")

    def drain_registry(
        self,
        strategy: CleanupStrategy = CleanupStrategy.AUTOMATIC,
        mode: DeletionMode | None = None,
    ) -> None:
        """Delete everything tracked, newest first, if *strategy* is AUTOMATIC.

        MANUAL and NEVER leave the registry untouched.  In SEQUENTIAL mode a
        failing resource does not stop the rest of the drain.  Whatever could
        not be deleted is put back into the registry.

        Raises:
            AggregatedFailureError: if any resource could not be deleted.
        """
        if strategy is not CleanupStrategy.AUTOMATIC:
            self._log.info("cleanup_skipped", strategy=str(strategy), tracked=self._registry.size())
            return

        batch = list(self._registry.drain_reverse())
        if not batch:
            return
        effective_mode = mode or self._settings.deletion_mode
        self._log.info("cleanup_started", resources=len(batch), mode=str(effective_mode))

        confirmed: list[ManagedResource] = []
        try:
            if effective_mode is DeletionMode.PARALLEL:
                failures = self._delete_parallel(batch, confirmed)
            else:
                failures = self._delete_sequential(batch, confirmed)
        except BaseException:
            # Interrupted mid-batch: anything not confirmed deleted is tracked again.
            self._registry.restore(resource for resource in batch if resource not in confirmed)
            raise

        if failures:
            self._registry.restore(resource for resource, _ in failures)
            self._log.error("cleanup_incomplete", failed=len(failures), remaining=self._registry.size())
            raise AggregatedFailureError(
                [exc for _, exc in failures],
                summary=f"deletions failed in context '{self._context}'",
            )
        self._log.info("cleanup_finished", resources=len(batch))

    def delete_all_resources(self) -> None:
        """Drain the registry unconditionally."""
        self.drain_registry(CleanupStrategy.AUTOMATIC)

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Shut the deletion worker pool down.  Safe to call repeatedly."""
        with self._executor_lock:
            if self._executor is not None:
                self._executor.shutdown(wait=True)
                self._executor = None

    def __enter__(self) -> ResourceManager:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _pool(self) -> ThreadPoolExecutor:
        with self._executor_lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self._settings.max_workers,
                    thread_name_prefix=f"kubetestkit-delete-{self._context}",
                )
            return self._executor

    def _issue_delete(self, resource: ManagedResource) -> None:
        try:
            self._client.delete(resource)
        except Exception as exc:
            resource_deletion_failures_total.labels(
                context=self._context, kind=resource.kind, reason="rejected"
            ).inc()
            self._log.warning("resource_delete_failed", resource=str(resource), error=str(exc))
            raise ResourceDeletionError(resource, exc) from exc

    def _await_absence(self, resource: ManagedResource, issued_at: float) -> None:
        timeout = self._settings.delete_timeout_seconds
        if not self.wait_resource_condition(resource, self.deleted(resource), timeout=timeout):
            resource_deletion_failures_total.labels(
                context=self._context, kind=resource.kind, reason="timeout"
            ).inc()
            self._log.warning("resource_delete_timed_out", resource=str(resource), timeout=timeout)
            raise ResourceDeletionTimeoutError(resource, timeout)
        resource_deletion_seconds.labels(context=self._context, kind=resource.kind).observe(
            time.monotonic() - issued_at
        )

    def _delete_and_wait(self, resource: ManagedResource) -> None:
        issued_at = time.monotonic()
        self._issue_delete(resource)
        self._await_absence(resource, issued_at)

    def _untrack(self, resource: ManagedResource, mode: DeletionMode) -> None:
        self._registry.remove(resource)
        resources_deleted_total.labels(context=self._context, kind=resource.kind, mode=str(mode)).inc()
        self._log.info("resource_deleted", resource=str(resource))
        _run_callbacks(self._delete_callbacks, resource, self._log, "delete")

    def _delete_sequential(
        self, batch: list[ManagedResource], confirmed: list[ManagedResource] | None = None
    ) -> _Failures:
        failures: _Failures = []
        for resource in batch:
            try:
                self._delete_and_wait(resource)
            except Exception as exc:
                failures.append((resource, exc))
                continue
            self._untrack(resource, DeletionMode.SEQUENTIAL)
            if confirmed is not None:
                confirmed.append(resource)
        return failures

    def _delete_parallel(
        self, batch: list[ManagedResource], confirmed: list[ManagedResource] | None = None
    ) -> _Failures:
        if not batch:
            return []
        # issued[i] is set once unit i has issued (or failed to issue) its
        # delete; unit i+1 waits on it so delete calls go out in batch order.
        issued = [threading.Event() for _ in batch]

        def _unit(index: int, resource: ManagedResource) -> None:
            if index > 0:
                issued[index - 1].wait()
            issued_at = time.monotonic()
            try:
                self._issue_delete(resource)
            finally:
                issued[index].set()
            self._await_absence(resource, issued_at)

        pool = self._pool()
        futures: list[Future[None]] = [
            pool.submit(contextvars.copy_context().run, _unit, index, resource)
            for index, resource in enumerate(batch)
        ]
        wait(futures)

        failures: _Failures = []
        for resource, future in zip(batch, futures, strict=True):
            exc = future.exception()
            if exc is None:
                self._untrack(resource, DeletionMode.PARALLEL)
                if confirmed is not None:
                    confirmed.append(resource)
            elif isinstance(exc, Exception):
                failures.append((resource, exc))
            else:
                raise exc
        return failures


def _manifest_of(obj: Any) -> dict[str, Any]:
    if isinstance(obj, dict):
        return obj
    return ManagedResource.from_manifest(obj).body


def _handle_of(obj: Any) -> ManagedResource:
    if isinstance(obj, ManagedResource):
        return obj
    return ManagedResource.from_manifest(obj)


def _run_callbacks(
    callbacks: list[ResourceCallback], resource: ManagedResource, log: FilteringBoundLogger, phase: str
) -> None:
    for callback in callbacks:
        try:
            callback(resource)
        except Exception as exc:
            log.warning("resource_callback_failed", phase=phase, resource=str(resource), error=str(exc))
