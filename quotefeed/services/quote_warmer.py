from __future__ import annotations

import threading
import time
from typing import Callable

from quotefeed.services.batch_resolver import BatchResolver


class CacheWarmer:
    """Background refresh of a fixed symbol list so requests land on a warm cache."""

    def __init__(
        self,
        *,
        batch_resolver: BatchResolver,
        symbols: list[str],
        interval_sec: int = 60,
        sleep_fn: Callable[[float], None] = time.sleep,
    ) -> None:
        self.batch_resolver = batch_resolver
        self.symbols = list(symbols)
        self.interval_sec = interval_sec
        self._sleep_fn = sleep_fn
        self.running = False
        self.ready = False
        self.attempts = 0
        self.runs = 0
        self.consecutive_failures = 0
        self.last_error: str | None = None
        self._thread: threading.Thread | None = None

    def next_delay_sec(self) -> int:
        # retry quickly until the first batch lands, then settle on the interval
        if self.ready:
            return self.interval_sec
        return min(15, 2 + self.attempts * 2)

    def run_once(self) -> bool:
        self.runs += 1
        try:
            self.batch_resolver.resolve_batch(self.symbols)
        except Exception as exc:
            self.consecutive_failures += 1
            self.last_error = str(exc)
            print(
                f"[WARM][warm_error] error={exc} consecutive_failures={self.consecutive_failures}",
                flush=True,
            )
            return False
        self.ready = True
        self.attempts = 0
        self.consecutive_failures = 0
        self.last_error = None
        return True

    def _sleep(self, seconds: int) -> None:
        for _ in range(seconds):
            if not self.running:
                return
            self._sleep_fn(1.0)

    def run_forever(self) -> None:
        while self.running:
            self.run_once()
            self._sleep(self.next_delay_sec())
            self.attempts += 1

    def start(self) -> threading.Thread:
        self.running = True
        thread = threading.Thread(target=self.run_forever, daemon=True, name="quote-cache-warmer")
        self._thread = thread
        print(f"[WARM][warmer_start] symbols={','.join(self.symbols)} interval_sec={self.interval_sec}", flush=True)
        thread.start()
        return thread

    def stop(self, timeout: float = 1.0) -> None:
        self.running = False
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
        print("[WARM][warmer_stop] thread=quote-cache-warmer", flush=True)

    def metrics(self) -> dict:
        return {
            "warm_symbols": len(self.symbols),
            "warm_ready": self.ready,
            "warm_runs": self.runs,
            "warm_consecutive_failures": self.consecutive_failures,
            "warm_last_error": self.last_error,
        }
