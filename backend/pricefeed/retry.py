"""Bounded backoff consulted by the price feed before each scheduled fetch."""

from __future__ import annotations

import time
from collections.abc import Callable, Sequence

from loguru import logger


class RetryPolicy:
    """Delay scheduled fetches after consecutive transient failures.

    The n-th consecutive failure holds fetches back for ``schedule[n - 1]``
    seconds; failures beyond the schedule reuse its last entry, so the wait is
    bounded. A success resets the count.
    """

    def __init__(
        self,
        schedule: Sequence[float],
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._schedule = tuple(float(delay) for delay in schedule) or (0.0,)
        self._clock = clock
        self._failures = 0
        self._retry_at: float | None = None

    @property
    def consecutive_failures(self) -> int:
        return self._failures

    def seconds_until_retry(self) -> float:
        if self._retry_at is None:
            return 0.0
        return max(0.0, self._retry_at - self._clock())

    def allows_attempt(self) -> bool:
        return self.seconds_until_retry() <= 0.0

    def record_success(self) -> None:
        if self._failures:
            logger.info("Price feed recovered after {} failed fetches", self._failures)
        self._failures = 0
        self._retry_at = None

    def record_failure(self) -> float:
        self._failures += 1
        delay = self._schedule[min(self._failures, len(self._schedule)) - 1]
        self._retry_at = self._clock() + delay
        return delay


__all__ = ["RetryPolicy"]
