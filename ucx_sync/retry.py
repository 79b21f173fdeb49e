"""Retry policy for per-file operations.

A small value object describing how many times an operation is tried
and how long to wait between tries.  Kept free of filesystem code so
the retry behaviour can be exercised on its own.
"""

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class TransferCancelled(Exception):
    """Raised when a cooperative cancellation request is observed."""


def linear_backoff(base: float) -> Callable[[int], float]:
    """Return a backoff function waiting ``attempt * base`` seconds."""
    def _delay(attempt: int) -> float:
        return attempt * base
    return _delay


@dataclass(frozen=True)
class RetryPolicy:
    """
    How to retry a failing operation.

    Attributes
    ----------
    max_attempts : int
        Total number of tries, including the first.
    backoff : callable
        Maps the number of the attempt that just failed (1-based) to the
        seconds to wait before the next one.
    retry_on : tuple of exception types
        Exceptions that trigger another attempt; anything else propagates.
    """
    max_attempts: int = 3
    backoff: Callable[[int], float] = field(default_factory=lambda: linear_backoff(1.0))
    retry_on: tuple[type[BaseException], ...] = (OSError,)

    def delay(self, attempt: int) -> float:
        return max(0.0, self.backoff(attempt))

    def run(
        self,
        operation: Callable[[], T],
        cancel: threading.Event | None = None,
        on_retry: Callable[[int, BaseException], None] | None = None,
    ) -> T:
        """
        Call *operation* until it succeeds or the attempts are exhausted.

        *cancel* is checked before every attempt and interrupts the backoff
        wait; when set, :class:`TransferCancelled` is raised.  The last
        error is re-raised once every attempt has failed.
        """
        attempts = max(1, self.max_attempts)
        for attempt in range(1, attempts + 1):
            if cancel is not None and cancel.is_set():
                raise TransferCancelled()
            try:
                return operation()
            except self.retry_on as exc:
                if attempt >= attempts:
                    raise
                if on_retry is not None:
                    on_retry(attempt, exc)
                delay = self.delay(attempt)
                logger.debug("Retrying in %.1fs (attempt %d failed: %s)", delay, attempt, exc)
                if cancel is not None:
                    if cancel.wait(delay):
                        raise TransferCancelled() from exc
                elif delay:
                    time.sleep(delay)
        raise AssertionError("unreachable")
