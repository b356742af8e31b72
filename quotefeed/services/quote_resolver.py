from __future__ import annotations

import math
import time
from typing import Callable, Protocol

from quotefeed.errors import NoSymbolsProvided, NoValidPrice, QuoteUnavailable
from quotefeed.schemas.quote import QuoteRecord, RawQuote
from quotefeed.services.quote_cache import QuoteCache
from quotefeed.services.rate_limiter import RateLimiter


class QuoteSource(Protocol):
    def fetch(self, symbol: str, timeout: float) -> RawQuote: ...


def reconcile(symbol: str, raw: RawQuote, prior: QuoteRecord | None, now: float) -> QuoteRecord:
    """Build the record to cache from a raw fetch and the previously cached one."""
    price = raw.price
    if price is None or price == 0 or not math.isfinite(price):
        raise NoValidPrice(symbol, price)

    # NaN or infinite deltas from the source are treated as missing
    raw_change = raw.change if raw.change is not None and math.isfinite(raw.change) else None
    raw_percent = raw.percent if raw.percent is not None and math.isfinite(raw.percent) else None

    if raw_change is not None:
        change = raw_change
        percent = raw_percent if raw_percent is not None else 0.0
    elif prior is not None:
        change = price - prior.price
        percent = (change / prior.price) * 100 if prior.price != 0 else 0.0
    else:
        change = 0.0
        percent = 0.0

    return QuoteRecord(
        symbol=symbol,
        name=raw.name or symbol,
        price=price,
        change=change,
        percent=percent,
        timestamp=now,
    )


class QuoteResolver:
    """Cache-first, rate-limited single symbol resolution with stale fallback."""

    def __init__(
        self,
        *,
        quote_cache: QuoteCache,
        rate_limiter: RateLimiter,
        source: QuoteSource,
        ttl_sec: float = 30.0,
        timeout_sec: float = 15.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.quote_cache = quote_cache
        self.rate_limiter = rate_limiter
        self.source = source
        self.ttl_sec = ttl_sec
        self.timeout_sec = timeout_sec
        self._clock = clock

        self.cache_hits = 0
        self.fetches = 0
        self.fetch_failures = 0
        self.stale_fallbacks = 0
        self.unavailable = 0

    def resolve(self, symbol: str) -> QuoteRecord:
        symbol = str(symbol).strip().upper()
        if not symbol:
            raise NoSymbolsProvided()

        cached = self.quote_cache.get(symbol)
        if cached is not None and self.quote_cache.is_fresh(cached, self.ttl_sec, self._clock()):
            self.cache_hits += 1
            print(f"[QUOTE][cache_hit] symbol={symbol}", flush=True)
            return cached

        waited = self.rate_limiter.wait()
        if waited > 0:
            print(f"[QUOTE][rate_limit_wait] symbol={symbol} wait_ms={int(waited * 1000)}", flush=True)

        # another caller may have refreshed the symbol while we waited
        cached = self.quote_cache.get(symbol)
        if cached is not None and self.quote_cache.is_fresh(cached, self.ttl_sec, self._clock()):
            self.cache_hits += 1
            print(f"[QUOTE][cache_hit_after_wait] symbol={symbol}", flush=True)
            return cached

        self.fetches += 1
        print(f"[QUOTE][fetch] symbol={symbol}", flush=True)
        try:
            raw = self.source.fetch(symbol, self.timeout_sec)
            stored = self.quote_cache.replace(
                symbol, lambda prior: reconcile(symbol, raw, prior, self._clock())
            )
        except Exception as exc:
            self.fetch_failures += 1
            print(f"[QUOTE][fetch_error] symbol={symbol} error={exc}", flush=True)
            cached = self.quote_cache.get(symbol)
            if cached is not None:
                self.stale_fallbacks += 1
                print(f"[QUOTE][stale_fallback] symbol={symbol} ts={cached.timestamp}", flush=True)
                return cached
            self.unavailable += 1
            raise QuoteUnavailable(symbol, exc) from exc

        print(
            f"[QUOTE][fetched] symbol={symbol} price={stored.price} "
            f"change={stored.change} percent={stored.percent}",
            flush=True,
        )
        return stored

    def metrics(self) -> dict[str, int]:
        return {
            "cache_hits": self.cache_hits,
            "fetches": self.fetches,
            "fetch_failures": self.fetch_failures,
            "stale_fallbacks": self.stale_fallbacks,
            "unavailable": self.unavailable,
        }
