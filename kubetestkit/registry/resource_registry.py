"""Per-context ordered record of resources created during a test.

Insertion order is significant: cleanup walks the registry newest-first so
that dependents (a Pod, a ConfigMap) go before whatever contains them (the
Namespace).  Explicit owner-reference graphs are not consulted.

Thread-safety: one writer (the context's lifecycle manager, on the test's
thread).  Every read and write holds an internal lock, so snapshots taken from
other threads, e.g. a log collector, are consistent.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable, Iterator

from kubetestkit.errors import InvalidResourceError
from kubetestkit.models.resources import ManagedResource
from kubetestkit.observability.metrics import tracked_resources


class ResourceRegistry:
    """Ordered, drainable sequence of :class:`ManagedResource`.

    Args:
        context: Owning context name, used for metric labels.
    """

    def __init__(self, context: str = "primary") -> None:
        self._context = context
        self._items: list[ManagedResource] = []
        self._lock = threading.RLock()

    @property
    def context(self) -> str:
        return self._context

    def record(self, resource: ManagedResource | None) -> None:
        """Append *resource*.  ``None`` is ignored.

        Raises:
            InvalidResourceError: if the handle has no kind or no name.
        """
        if resource is None:
            return
        if not resource.kind or not resource.name:
            raise InvalidResourceError(
                f"Resource handle must have a kind and a name, got kind={resource.kind!r} name={resource.name!r}"
            )
        with self._lock:
            self._items.append(resource)
            self._update_gauge()

    def drain_reverse(self) -> Iterator[ManagedResource]:
        """Yield resources newest-first, removing each one as it is yielded.

        Stopping early leaves the un-yielded remainder in place.
        """
        while True:
            with self._lock:
                if not self._items:
                    return
                resource = self._items.pop()
                self._update_gauge()
            yield resource

    def remove(self, resource: ManagedResource) -> bool:
        """Drop the newest entry equal to *resource*.  Returns False if absent."""
        with self._lock:
            for index in range(len(self._items) - 1, -1, -1):
                if self._items[index] == resource:
                    del self._items[index]
                    self._update_gauge()
                    return True
            return False

    def restore(self, resources: Iterable[ManagedResource]) -> None:
        """Put back resources a drain could not delete.

        *resources* is given newest-first (drain order); they are re-appended
        so the registry keeps their original creation order.
        """
        with self._lock:
            self._items.extend(reversed(list(resources)))
            self._update_gauge()

    def is_empty(self) -> bool:
        with self._lock:
            return not self._items

    def size(self) -> int:
        with self._lock:
            return len(self._items)

    def snapshot(self) -> tuple[ManagedResource, ...]:
        """Read-only copy in creation order."""
        with self._lock:
            return tuple(self._items)

    def __len__(self) -> int:
        return self.size()

    def __contains__(self, resource: object) -> bool:
        with self._lock:
            return resource in self._items

    def _update_gauge(self) -> None:
        tracked_resources.labels(context=self._context).set(len(self._items))
