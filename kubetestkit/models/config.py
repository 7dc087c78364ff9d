"""Configuration models.

Two families live here:

- :class:`KubeTestKitConfig` -- process-wide settings loaded from
  ``KUBETESTKIT_*`` environment variables by :func:`kubetestkit.config.load_config`.
- :class:`KubeTestConfig` / :class:`ContextConfig` -- the fully-resolved
  per-test configuration produced by test discovery (the pytest marker).

All models use Pydantic v2 and are frozen once built.
"""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from kubetestkit.models.resources import CleanupStrategy, DeletionMode

PRIMARY_CONTEXT = "primary"
DEFAULT_NAMESPACE = "default-test"

_VALID_LOG_LEVELS = frozenset({"debug", "info", "warning", "error"})


class LogCollectionStrategy(StrEnum):
    """When the external log collector runs relative to cleanup."""

    ON_FAILURE = "on_failure"
    AFTER_EACH = "after_each"


# ---------------------------------------------------------------------------
# Process-wide settings
# ---------------------------------------------------------------------------


class LogConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    level: str = "info"

    @field_validator("level")
    @classmethod
    def validate_level(cls, value: str) -> str:
        normalised = value.lower()
        if normalised not in _VALID_LOG_LEVELS:
            raise ValueError(f"Invalid log level: {value!r}")
        return normalised


class LifecycleConfig(BaseModel):
    """Timeouts and worker pool sizing for the lifecycle manager."""

    model_config = ConfigDict(frozen=True)

    delete_timeout_seconds: float = Field(default=180.0, ge=1.0, le=3600.0)
    condition_timeout_seconds: float = Field(default=180.0, ge=1.0, le=3600.0)
    poll_interval_seconds: float = Field(default=1.0, ge=0.01, le=60.0)
    max_workers: int = Field(default=8, ge=1, le=64)
    deletion_mode: DeletionMode = DeletionMode.PARALLEL


class KubeTestKitConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    log: LogConfig = Field(default_factory=LogConfig)
    lifecycle: LifecycleConfig = Field(default_factory=LifecycleConfig)
    kubectl_binary: str = "kubectl"


# ---------------------------------------------------------------------------
# Per-test configuration
# ---------------------------------------------------------------------------


def parse_key_value_pairs(pairs: list[str]) -> dict[str, str]:
    """Turn ``["env=staging", "team=qa"]`` into a dict.

    Raises ValueError on entries without ``=`` or with an empty key.
    """
    parsed: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        key = key.strip()
        if not sep or not key:
            raise ValueError(f"Expected key=value, got: {pair!r}")
        parsed[key] = value.strip()
    return parsed


class _NamespacedContext(BaseModel):
    """Fields shared by the primary context and every additional context."""

    model_config = ConfigDict(frozen=True)

    namespaces: list[str] = Field(default_factory=list)
    cleanup: CleanupStrategy = CleanupStrategy.AUTOMATIC
    namespace_labels: list[str] = Field(default_factory=list)
    namespace_annotations: list[str] = Field(default_factory=list)

    @field_validator("namespace_labels", "namespace_annotations")
    @classmethod
    def validate_pairs(cls, value: list[str]) -> list[str]:
        parse_key_value_pairs(value)
        return value

    @field_validator("namespaces")
    @classmethod
    def validate_unique_namespaces(cls, value: list[str]) -> list[str]:
        if len(set(value)) != len(value):
            raise ValueError(f"Duplicate namespace names: {value}")
        return value

    @property
    def labels(self) -> dict[str, str]:
        return parse_key_value_pairs(self.namespace_labels)

    @property
    def annotations(self) -> dict[str, str]:
        return parse_key_value_pairs(self.namespace_annotations)


class ContextConfig(_NamespacedContext):
    """An additional, explicitly named cluster context."""

    name: str = Field(min_length=1)

    @field_validator("name")
    @classmethod
    def validate_name(cls, value: str) -> str:
        if value == PRIMARY_CONTEXT:
            raise ValueError(f"Context name {PRIMARY_CONTEXT!r} is reserved for the default context")
        return value


class KubeTestConfig(_NamespacedContext):
    """Fully-resolved configuration for one test.

    The top-level namespace fields describe the primary context.  When no
    namespace is declared the primary context gets ``default-test``.
    """

    namespaces: list[str] = Field(default_factory=lambda: [DEFAULT_NAMESPACE])
    kube_context: str | None = None

    collect_logs: bool = False
    log_collection_strategy: LogCollectionStrategy = LogCollectionStrategy.ON_FAILURE
    log_collection_path: str = ""
    collect_previous_logs: bool = False
    collect_namespaced_resources: list[str] = Field(
        default_factory=lambda: ["pods", "services", "configmaps", "secrets"]
    )
    collect_cluster_wide_resources: list[str] = Field(default_factory=list)

    additional_contexts: list[ContextConfig] = Field(default_factory=list)

    @field_validator("namespaces")
    @classmethod
    def default_namespace(cls, value: list[str]) -> list[str]:
        return value or [DEFAULT_NAMESPACE]

    @model_validator(mode="after")
    def validate_context_names(self) -> KubeTestConfig:
        names = [ctx.name for ctx in self.additional_contexts]
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate additional context names: {names}")
        return self

    def context_settings(self) -> list[tuple[str, _NamespacedContext, str | None]]:
        """``(name, settings, kubeconfig_context)`` for every context, primary first.

        Additional contexts are addressed by name in the kubeconfig.
        """
        settings: list[tuple[str, _NamespacedContext, str | None]] = [
            (PRIMARY_CONTEXT, self, self.kube_context)
        ]
        settings.extend((ctx.name, ctx, ctx.name) for ctx in self.additional_contexts)
        return settings
