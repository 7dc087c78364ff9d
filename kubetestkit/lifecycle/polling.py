"""Condition polling against remote state.

:func:`poll_until` evaluates a condition at a fixed interval until it holds or
the timeout elapses.  It never sleeps past the deadline, so a call returns no
later than ``timeout`` plus the duration of one condition evaluation.
"""

from __future__ import annotations

import time
from collections.abc import Callable

from kubetestkit.observability.logging import get_logger

_log = get_logger("polling")


def poll_until(
    condition: Callable[[], bool],
    timeout: float,
    interval: float,
    description: str = "condition",
    *,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> bool:
    """Poll *condition* until it returns True or *timeout* seconds pass.

    Exceptions raised by *condition* count as "not yet"; the last one is
    logged when the wait gives up.

    Returns:
        True if the condition held within the timeout, False otherwise.
    """
    deadline = clock() + timeout
    last_error: Exception | None = None
    attempts = 0

    while True:
        attempts += 1
        try:
            if condition():
                return True
        except Exception as exc:  # noqa: BLE001
            last_error = exc

        remaining = deadline - clock()
        if remaining <= 0:
            _log.debug(
                "poll_timed_out",
                description=description,
                timeout=timeout,
                attempts=attempts,
                last_error=str(last_error) if last_error else None,
            )
            return False
        sleep(min(interval, remaining))
