from __future__ import annotations

import threading
import time
from typing import Callable


class RateLimiter:
    """Process-wide floor on the spacing between external quote fetches.

    ``acquire`` reserves the next slot atomically: the instant the caller is
    allowed to proceed is recorded before the lock is released, so two
    concurrent callers can never compute the same wait and fire together.
    The actual sleep happens in ``wait`` outside the lock.
    """

    def __init__(
        self,
        min_interval_sec: float,
        *,
        clock: Callable[[], float] = time.time,
        sleep_fn: Callable[[float], None] = time.sleep,
    ) -> None:
        if min_interval_sec < 0:
            raise ValueError("min_interval_sec must be >= 0")
        self.min_interval_sec = float(min_interval_sec)
        self._clock = clock
        self._sleep_fn = sleep_fn
        self._lock = threading.Lock()
        self._last_invocation: float | None = None

        self.acquisitions = 0
        self.waits = 0
        self.waited_sec_total = 0.0

    def acquire(self, now: float) -> float:
        with self._lock:
            wait = 0.0
            if self._last_invocation is not None:
                wait = max(self.min_interval_sec - (now - self._last_invocation), 0.0)
            self._last_invocation = now + wait
            self.acquisitions += 1
            if wait > 0:
                self.waits += 1
                self.waited_sec_total += wait
            return wait

    def wait(self) -> float:
        wait = self.acquire(self._clock())
        if wait > 0:
            self._sleep_fn(wait)
        return wait

    def metrics(self) -> dict[str, float | int]:
        return {
            "limiter_min_interval_ms": int(self.min_interval_sec * 1000),
            "limiter_acquisitions": self.acquisitions,
            "limiter_waits": self.waits,
            "limiter_waited_ms_total": int(self.waited_sec_total * 1000),
        }
