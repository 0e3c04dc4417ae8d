"""Pacing policies consulted between distribution transfers."""

from __future__ import annotations

import threading
import time
from typing import Callable, Protocol


class Pacer(Protocol):
    """Blocks until the next attempt is allowed."""

    def wait(self) -> None:
        """Called before every attempt after the first."""


class NoDelayPacer:
    """Never waits; counts consultations."""

    def __init__(self) -> None:
        self.calls = 0

    def wait(self) -> None:
        self.calls += 1


class FixedIntervalPacer:
    """Sleeps a fixed interval before each paced attempt."""

    def __init__(
        self,
        interval_seconds: float = 0.1,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if interval_seconds < 0:
            raise ValueError("interval_seconds must be non-negative")
        self.interval_seconds = interval_seconds
        self._sleep = sleep

    def wait(self) -> None:
        if self.interval_seconds > 0:
            self._sleep(self.interval_seconds)


class TokenBucketPacer:
    """Token bucket allowing ``burst`` immediate attempts, refilled at ``rate_per_sec``."""

    def __init__(
        self,
        rate_per_sec: float,
        burst: float = 1.0,
        *,
        sleep: Callable[[float], None] = time.sleep,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        if rate_per_sec <= 0:
            raise ValueError("rate_per_sec must be positive")
        if burst < 1:
            raise ValueError("burst must be at least 1")
        self.rate_per_sec = rate_per_sec
        self.burst = burst
        self._sleep = sleep
        self._monotonic = monotonic
        # The first attempt is unpaced, so it has already spent one token.
        self._tokens = burst - 1
        self._last = monotonic()
        self._lock = threading.Lock()

    def _refill(self) -> None:
        now = self._monotonic()
        self._tokens = min(self.burst, self._tokens + (now - self._last) * self.rate_per_sec)
        self._last = now

    def wait(self) -> None:
        # Shared across concurrent distributions; waiters queue on the lock.
        with self._lock:
            self._refill()
            if self._tokens < 1:
                self._sleep((1 - self._tokens) / self.rate_per_sec)
                self._refill()
                # Guard against clocks that did not advance by the full sleep.
                self._tokens = max(self._tokens, 1.0)
            self._tokens -= 1
