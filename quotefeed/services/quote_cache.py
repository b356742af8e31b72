from __future__ import annotations

import threading
import time
from typing import Callable

from quotefeed.schemas.quote import QuoteRecord


class QuoteCache:
    """Latest record per symbol. Entries are never evicted, only treated as stale."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._rows: dict[str, QuoteRecord] = {}

    def get(self, symbol: str) -> QuoteRecord | None:
        return self._rows.get(symbol)

    def put(self, record: QuoteRecord) -> QuoteRecord:
        return self.replace(record.symbol, lambda _current: record)

    def replace(self, symbol: str, build: Callable[[QuoteRecord | None], QuoteRecord]) -> QuoteRecord:
        """Build the new entry from the live one and store it under one lock hold."""
        with self._lock:
            current = self._rows.get(symbol)
            record = build(current)
            # timestamps never move backwards for a symbol
            if current is not None and current.timestamp > record.timestamp:
                return current
            self._rows[symbol] = record
            return record

    @staticmethod
    def is_fresh(record: QuoteRecord, ttl_sec: float, now: float) -> bool:
        return (now - record.timestamp) < ttl_sec

    def list_all(self) -> list[QuoteRecord]:
        with self._lock:
            return list(self._rows.values())

    def ages_ms(self, now: float | None = None) -> list[dict]:
        ref = time.time() if now is None else now
        return [
            {"symbol": row.symbol, "age_ms": int(max(ref - row.timestamp, 0.0) * 1000)}
            for row in self.list_all()
        ]

    def __len__(self) -> int:
        return len(self._rows)
