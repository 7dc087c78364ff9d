"""Prometheus metrics for kubetestkit."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

# Lifecycle metrics
resources_created_total = Counter(
    "kubetestkit_resources_created_total",
    "Total resources created and tracked for cleanup",
    ["context", "kind"],
)

resource_creation_failures_total = Counter(
    "kubetestkit_resource_creation_failures_total",
    "Total resource create calls that failed",
    ["context", "kind"],
)

resources_deleted_total = Counter(
    "kubetestkit_resources_deleted_total",
    "Total tracked resources deleted",
    ["context", "kind", "mode"],
)

resource_deletion_failures_total = Counter(
    "kubetestkit_resource_deletion_failures_total",
    "Total deletions that failed or timed out",
    ["context", "kind", "reason"],
)

resource_deletion_seconds = Histogram(
    "kubetestkit_resource_deletion_seconds",
    "Time from delete issuance to confirmed absence",
    ["context", "kind"],
    buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0),
)

# Registry metrics
tracked_resources = Gauge(
    "kubetestkit_tracked_resources",
    "Number of resources currently tracked for cleanup",
    ["context"],
)

# Context metrics
contexts_materialized_total = Counter(
    "kubetestkit_contexts_materialized_total",
    "Total cluster contexts materialized for tests",
    ["result"],
)

teardown_failures_total = Counter(
    "kubetestkit_teardown_failures_total",
    "Total context teardowns that ended with at least one failure",
    ["context"],
)
