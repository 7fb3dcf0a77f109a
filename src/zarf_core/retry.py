"""Retry and poll primitive shared by every "try until it works" loop.

A policy is bounded either by an attempt count or by a wall-clock deadline,
never both. A policy with neither bound runs until its cancel event is set.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

from .errors import is_retryable
from .shared.logging import get_logger

T = TypeVar("T")

log = get_logger(__name__)


class RetryCancelled(Exception):
    """Raised when a cancel event ends an unbounded retry loop."""


@dataclass(frozen=True)
class RetryPolicy:
    """How often and for how long to retry."""

    max_attempts: int | None = None
    timeout_seconds: float | None = None
    interval_seconds: float = 1.0

    def __post_init__(self) -> None:
        if self.max_attempts is not None and self.timeout_seconds is not None:
            raise ValueError("RetryPolicy takes max_attempts or timeout_seconds, not both")
        if self.max_attempts is not None and self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.interval_seconds < 0:
            raise ValueError("interval_seconds must not be negative")

    @classmethod
    def attempts(cls, count: int, interval_seconds: float) -> RetryPolicy:
        return cls(max_attempts=count, interval_seconds=interval_seconds)

    @classmethod
    def deadline(cls, timeout_seconds: float, interval_seconds: float) -> RetryPolicy:
        return cls(timeout_seconds=timeout_seconds, interval_seconds=interval_seconds)

    @classmethod
    def forever(cls, interval_seconds: float) -> RetryPolicy:
        return cls(interval_seconds=interval_seconds)

    @property
    def unbounded(self) -> bool:
        return self.max_attempts is None and self.timeout_seconds is None


class _Budget:
    """Tracks attempts and elapsed time against a policy."""

    def __init__(
        self,
        policy: RetryPolicy,
        clock: Callable[[], float],
        cancel: threading.Event | None,
    ):
        self.policy = policy
        self.clock = clock
        self.cancel = cancel
        self.started = clock()
        self.attempt = 0

    def cancelled(self) -> bool:
        return self.cancel is not None and self.cancel.is_set()

    def exhausted(self) -> bool:
        if self.cancelled():
            return True
        if self.policy.max_attempts is not None:
            return self.attempt >= self.policy.max_attempts
        if self.policy.timeout_seconds is not None:
            return self.clock() - self.started >= self.policy.timeout_seconds
        return False

    def elapsed(self) -> float:
        return self.clock() - self.started


def _wait(
    seconds: float,
    sleep: Callable[[float], None],
    cancel: threading.Event | None,
) -> None:
    if cancel is not None and sleep is time.sleep:
        cancel.wait(seconds)
    else:
        sleep(seconds)


def retry_call(
    fn: Callable[[], T],
    policy: RetryPolicy,
    retryable: Callable[[BaseException], bool] = is_retryable,
    on_retry: Callable[[int, BaseException], None] | None = None,
    cancel: threading.Event | None = None,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> T:
    """Call ``fn`` until it returns, re-raising the last error once the budget is spent.

    Args:
        fn: Zero-argument callable performing one full attempt.
        policy: Attempt or deadline bound plus the fixed inter-attempt delay.
        retryable: Classifier; a False result re-raises immediately.
        on_retry: Optional callback with (attempt, error) before each delay.
        cancel: Optional event that ends the loop early.
        sleep: Sleep function (injectable for tests).
        clock: Monotonic clock (injectable for tests).

    Returns:
        Whatever ``fn`` returns on its first successful attempt.

    Raises:
        RetryCancelled: If the cancel event was set before any attempt succeeded
            and no error was recorded.
    """
    if policy.unbounded and cancel is None:
        raise ValueError("an unbounded retry policy requires a cancel event")

    budget = _Budget(policy, clock, cancel)
    last_error: BaseException | None = None

    while True:
        if budget.cancelled():
            if last_error is not None:
                raise last_error
            raise RetryCancelled("retry loop cancelled")

        budget.attempt += 1
        try:
            return fn()
        except Exception as e:
            last_error = e
            if not retryable(e):
                raise
            if budget.exhausted():
                raise
            log.debug(
                "retry.attempt_failed",
                attempt=budget.attempt,
                max_attempts=policy.max_attempts,
                error=str(e),
            )
            if on_retry:
                on_retry(budget.attempt, e)

        _wait(policy.interval_seconds, sleep, cancel)


def poll_until(
    check: Callable[[], bool],
    policy: RetryPolicy,
    cancel: threading.Event | None = None,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> bool:
    """Evaluate ``check`` at a fixed interval until it holds or the budget runs out.

    Exceptions raised by ``check`` count as "not ready yet".

    Returns:
        True if the condition held, False if the budget was exhausted.
    """
    if policy.unbounded and cancel is None:
        raise ValueError("an unbounded poll policy requires a cancel event")

    budget = _Budget(policy, clock, cancel)

    while not budget.cancelled():
        budget.attempt += 1
        try:
            if check():
                return True
        except Exception as e:
            log.debug("poll.check_failed", attempt=budget.attempt, error=str(e))

        if budget.exhausted():
            return False

        _wait(policy.interval_seconds, sleep, cancel)

    return False
