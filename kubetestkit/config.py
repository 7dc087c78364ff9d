"""Environment-driven configuration loading.

Every setting is read from a ``KUBETESTKIT_*`` environment variable.  Numeric
values outside their bounds are clamped rather than rejected so that a CI
pipeline with an aggressive override still runs; unknown enum-like values
(log level, deletion mode) raise ``ValueError``.

    KUBETESTKIT_LOG_LEVEL                   debug | info | warning | error
    KUBETESTKIT_DELETE_TIMEOUT              seconds, 1 - 3600 (default 180)
    KUBETESTKIT_CONDITION_TIMEOUT           seconds, 1 - 3600 (default 180)
    KUBETESTKIT_POLL_INTERVAL               seconds, 0.01 - 60 (default 1)
    KUBETESTKIT_MAX_WORKERS                 1 - 64 (default 8)
    KUBETESTKIT_DELETION_MODE               parallel | sequential
    KUBETESTKIT_KUBECTL                     kubectl binary (default "kubectl")
"""

from __future__ import annotations

import os

from kubetestkit.models.config import KubeTestKitConfig, LifecycleConfig, LogConfig
from kubetestkit.models.resources import DeletionMode

_PREFIX = "KUBETESTKIT_"


def _env(name: str) -> str | None:
    return os.environ.get(f"{_PREFIX}{name}")


def _env_int(name: str, default: int, minimum: int, maximum: int) -> int:
    raw = _env(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValueError(f"Invalid integer for {_PREFIX}{name}: {raw!r}") from exc
    return max(minimum, min(maximum, value))


def _env_float(name: str, default: float, minimum: float, maximum: float) -> float:
    raw = _env(name)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise ValueError(f"Invalid number for {_PREFIX}{name}: {raw!r}") from exc
    return max(minimum, min(maximum, value))


def _env_deletion_mode() -> DeletionMode:
    raw = _env("DELETION_MODE")
    if raw is None:
        return DeletionMode.PARALLEL
    try:
        return DeletionMode(raw.strip().lower())
    except ValueError as exc:
        raise ValueError(f"Invalid deletion mode: {raw!r}") from exc


def load_config() -> KubeTestKitConfig:
    """Build a :class:`KubeTestKitConfig` from the current environment."""
    return KubeTestKitConfig(
        log=LogConfig(level=_env("LOG_LEVEL") or "info"),
        lifecycle=LifecycleConfig(
            delete_timeout_seconds=_env_float("DELETE_TIMEOUT", 180.0, 1.0, 3600.0),
            condition_timeout_seconds=_env_float("CONDITION_TIMEOUT", 180.0, 1.0, 3600.0),
            poll_interval_seconds=_env_float("POLL_INTERVAL", 1.0, 0.01, 60.0),
            max_workers=_env_int("MAX_WORKERS", 8, 1, 64),
            deletion_mode=_env_deletion_mode(),
        ),
        kubectl_binary=_env("KUBECTL") or "kubectl",
    )
