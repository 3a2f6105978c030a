"""Generic wait/polling utilities for providers.

Polling is bounded by an absolute deadline on an injectable clock, so the
same code runs against wall-clock time in production and a fake clock in
tests.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable

from tenacity import (
    RetryCallState,
    RetryError,
    Retrying,
    retry_if_exception_type,
)

from cumulus.core.exceptions import OperationCancelledError
from cumulus.types.protocols import Clock


class SystemClock:
    """Monotonic wall clock."""

    def now(self) -> float:
        return time.monotonic()

    def sleep(self, seconds: float) -> None:
        time.sleep(seconds)


class _NotReadyError(Exception):
    """Resource not yet visible - retry."""


def poll_until[T](
    poll_fn: Callable[[], T | None],
    *,
    deadline: float,
    clock: Clock,
    interval: float,
    error_backoff: float = 0.0,
    retry_on: tuple[type[Exception], ...] = (),
    cancel: threading.Event | None = None,
) -> T | None:
    """Call poll_fn until it returns something other than None.

    Args:
        poll_fn: Function polling for the resource.
        deadline: Absolute time (on ``clock``) after which polling stops.
        clock: Time source used for the deadline and for sleeping.
        interval: Time between polls.
        error_backoff: Extra delay after a poll raised one of ``retry_on``.
        retry_on: Exceptions treated as transient and swallowed.
        cancel: Optional token; when set, polling aborts.

    Returns:
        The first non-None result, or None once the deadline has passed.

    Raises:
        OperationCancelledError: If ``cancel`` was set.
    """

    def _attempt() -> T:
        if cancel is not None and cancel.is_set():
            raise OperationCancelledError("Polling cancelled by caller")
        result = poll_fn()
        if result is None:
            raise _NotReadyError()
        return result

    def _stop(_: RetryCallState) -> bool:
        return clock.now() >= deadline

    def _wait(state: RetryCallState) -> float:
        if state.outcome is not None and state.outcome.failed:
            if not isinstance(state.outcome.exception(), _NotReadyError):
                return error_backoff + interval
        return interval

    retrying = Retrying(
        stop=_stop,
        wait=_wait,
        sleep=clock.sleep,
        retry=retry_if_exception_type((_NotReadyError, *retry_on)),
    )
    try:
        return retrying(_attempt)
    except RetryError:
        return None
