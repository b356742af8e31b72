import math
import threading
import time
import unittest

from quotefeed.errors import NoSymbolsProvided, NoValidPrice, QuoteUnavailable, SourceUnavailable
from quotefeed.schemas.quote import QuoteRecord, RawQuote
from quotefeed.services.quote_cache import QuoteCache
from quotefeed.services.quote_resolver import QuoteResolver
from quotefeed.services.rate_limiter import RateLimiter


class FakeClock:
    def __init__(self, now: float) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.now += seconds


class StubSource:
    def __init__(self, clock: FakeClock, quotes: dict[str, RawQuote]) -> None:
        self.clock = clock
        self.quotes = quotes
        self.calls: list[tuple[str, float]] = []
        self.timeouts: list[float] = []

    def fetch(self, symbol: str, timeout: float) -> RawQuote:
        self.calls.append((symbol, self.clock()))
        self.timeouts.append(timeout)
        return self.quotes[symbol]


class FailingSource:
    def __init__(self) -> None:
        self.calls = 0

    def fetch(self, symbol: str, timeout: float) -> RawQuote:
        self.calls += 1
        raise SourceUnavailable(symbol, f"timeout:{symbol}")


class SlowFirstSource:
    """First fetch is slow, so a second caller overlaps it."""

    def __init__(self, second_fails: bool = False) -> None:
        self.second_fails = second_fails
        self.calls = 0
        self.first_started = threading.Event()
        self._lock = threading.Lock()

    def fetch(self, symbol: str, timeout: float) -> RawQuote:
        with self._lock:
            self.calls += 1
            call = self.calls
        if call == 1:
            self.first_started.set()
            time.sleep(0.05)
            return RawQuote(price=110.0)
        if self.second_fails:
            raise SourceUnavailable(symbol, "timeout")
        return RawQuote(price=110.0)


def _make_resolver(source, clock: FakeClock, cache: QuoteCache | None = None, min_interval: float = 5.0):
    cache = cache or QuoteCache()
    limiter = RateLimiter(min_interval, clock=clock, sleep_fn=clock.sleep)
    resolver = QuoteResolver(
        quote_cache=cache,
        rate_limiter=limiter,
        source=source,
        ttl_sec=30.0,
        timeout_sec=15.0,
        clock=clock,
    )
    return resolver, cache, limiter


def _cached(symbol: str, price: float, ts: float) -> QuoteRecord:
    return QuoteRecord(symbol=symbol, name=symbol, price=price, change=1.5, percent=2.5, timestamp=ts)


class QuoteResolverTest(unittest.TestCase):
    def test_fresh_cache_skips_source_and_limiter(self):
        clock = FakeClock(1000.0)
        source = StubSource(clock, {"AAPL": RawQuote(price=200.0)})
        cache = QuoteCache()
        cache.put(_cached("AAPL", 150.0, 990.0))
        resolver, _, limiter = _make_resolver(source, clock, cache)

        quote = resolver.resolve("AAPL")

        self.assertEqual(quote.price, 150.0)
        self.assertEqual(source.calls, [])
        self.assertEqual(limiter.metrics()["limiter_acquisitions"], 0)
        self.assertEqual(resolver.metrics()["cache_hits"], 1)

    def test_stale_cache_triggers_fetch_and_derives_change(self):
        clock = FakeClock(1000.0)
        source = StubSource(clock, {"AAPL": RawQuote(price=110.0)})
        cache = QuoteCache()
        cache.put(_cached("AAPL", 100.0, 900.0))
        resolver, _, _ = _make_resolver(source, clock, cache)

        quote = resolver.resolve("AAPL")

        self.assertEqual(len(source.calls), 1)
        self.assertEqual(quote.price, 110.0)
        self.assertAlmostEqual(quote.change, 10.0)
        self.assertAlmostEqual(quote.percent, 10.0)
        self.assertEqual(quote.timestamp, 1000.0)
        self.assertIs(cache.get("AAPL"), quote)

    def test_no_prior_record_sets_zero_change(self):
        clock = FakeClock(1000.0)
        source = StubSource(clock, {"NEW": RawQuote(price=50.0)})
        resolver, _, _ = _make_resolver(source, clock)

        quote = resolver.resolve("new")

        self.assertEqual(quote.symbol, "NEW")
        self.assertEqual(quote.name, "NEW")
        self.assertEqual(quote.change, 0.0)
        self.assertEqual(quote.percent, 0.0)

    def test_unchanged_price_resets_delta_and_refreshes_timestamp(self):
        clock = FakeClock(1000.0)
        source = StubSource(clock, {"AAPL": RawQuote(price=100.0)})
        cache = QuoteCache()
        cache.put(_cached("AAPL", 100.0, 900.0))
        resolver, _, _ = _make_resolver(source, clock, cache)

        quote = resolver.resolve("AAPL")

        self.assertEqual(quote.change, 0.0)
        self.assertEqual(quote.percent, 0.0)
        self.assertEqual(quote.timestamp, 1000.0)

    def test_source_change_fields_used_as_is(self):
        clock = FakeClock(1000.0)
        source = StubSource(
            clock,
            {"AAPL": RawQuote(price=110.0, change=-3.0, percent=-2.65, name="Apple Inc.")},
        )
        cache = QuoteCache()
        cache.put(_cached("AAPL", 100.0, 900.0))
        resolver, _, _ = _make_resolver(source, clock, cache)

        quote = resolver.resolve("AAPL")

        self.assertEqual(quote.change, -3.0)
        self.assertEqual(quote.percent, -2.65)
        self.assertEqual(quote.name, "Apple Inc.")

    def test_source_change_without_percent_defaults_percent_to_zero(self):
        clock = FakeClock(1000.0)
        source = StubSource(clock, {"AAPL": RawQuote(price=110.0, change=4.0)})
        resolver, _, _ = _make_resolver(source, clock)

        quote = resolver.resolve("AAPL")

        self.assertEqual(quote.change, 4.0)
        self.assertEqual(quote.percent, 0.0)

    def test_prior_zero_price_gives_zero_percent(self):
        clock = FakeClock(1000.0)
        source = StubSource(clock, {"AAPL": RawQuote(price=5.0)})
        cache = QuoteCache()
        cache.put(QuoteRecord(symbol="AAPL", name="AAPL", price=0.0, timestamp=900.0))
        resolver, _, _ = _make_resolver(source, clock, cache)

        quote = resolver.resolve("AAPL")

        self.assertEqual(quote.change, 5.0)
        self.assertEqual(quote.percent, 0.0)

    def test_consecutive_fetches_are_spaced_by_min_interval(self):
        clock = FakeClock(1000.0)
        source = StubSource(
            clock,
            {"AAPL": RawQuote(price=1.0), "MSFT": RawQuote(price=2.0), "TSLA": RawQuote(price=3.0)},
        )
        resolver, _, _ = _make_resolver(source, clock)

        for symbol in ("AAPL", "MSFT", "TSLA"):
            resolver.resolve(symbol)

        times = [ts for _, ts in source.calls]
        gaps = [b - a for a, b in zip(times, times[1:])]
        self.assertTrue(all(gap >= 5.0 for gap in gaps), gaps)
        self.assertEqual(source.timeouts, [15.0, 15.0, 15.0])

    def test_failure_with_stale_cache_returns_existing_entry(self):
        clock = FakeClock(1000.0)
        source = FailingSource()
        cache = QuoteCache()
        existing = _cached("AAPL", 100.0, 900.0)
        cache.put(existing)
        resolver, _, _ = _make_resolver(source, clock, cache)

        quote = resolver.resolve("AAPL")

        self.assertEqual(source.calls, 1)
        self.assertEqual(quote, existing)
        self.assertIs(cache.get("AAPL"), existing)
        self.assertEqual(resolver.metrics()["stale_fallbacks"], 1)

    def test_failure_without_cache_raises_quote_unavailable(self):
        clock = FakeClock(1000.0)
        resolver, cache, _ = _make_resolver(FailingSource(), clock)

        with self.assertRaises(QuoteUnavailable) as ctx:
            resolver.resolve("AAPL")

        self.assertEqual(ctx.exception.symbol, "AAPL")
        self.assertIsInstance(ctx.exception.cause, SourceUnavailable)
        self.assertIsNone(cache.get("AAPL"))

    def test_zero_price_is_no_valid_price(self):
        clock = FakeClock(1000.0)
        source = StubSource(clock, {"AAPL": RawQuote(price=0.0)})
        resolver, cache, _ = _make_resolver(source, clock)

        with self.assertRaises(QuoteUnavailable) as ctx:
            resolver.resolve("AAPL")

        self.assertIsInstance(ctx.exception.cause, NoValidPrice)
        self.assertIsNone(cache.get("AAPL"))

    def test_missing_or_non_finite_price_falls_back_to_cache(self):
        for bad in (None, math.nan, math.inf):
            clock = FakeClock(1000.0)
            source = StubSource(clock, {"AAPL": RawQuote(price=bad)})
            cache = QuoteCache()
            existing = _cached("AAPL", 100.0, 900.0)
            cache.put(existing)
            resolver, _, _ = _make_resolver(source, clock, cache)

            self.assertEqual(resolver.resolve("AAPL"), existing)
            self.assertEqual(cache.get("AAPL").timestamp, 900.0)

    def test_empty_symbol_rejected(self):
        clock = FakeClock(1000.0)
        resolver, _, _ = _make_resolver(FailingSource(), clock)
        with self.assertRaises(NoSymbolsProvided):
            resolver.resolve("   ")

    def test_non_finite_source_change_is_rederived_from_prior(self):
        clock = FakeClock(1000.0)
        source = StubSource(clock, {"AAPL": RawQuote(price=110.0, change=math.nan, percent=math.inf)})
        cache = QuoteCache()
        cache.put(_cached("AAPL", 100.0, 900.0))
        resolver, _, _ = _make_resolver(source, clock, cache)

        quote = resolver.resolve("AAPL")

        self.assertAlmostEqual(quote.change, 10.0)
        self.assertAlmostEqual(quote.percent, 10.0)

    def test_non_finite_percent_with_valid_change_defaults_to_zero(self):
        clock = FakeClock(1000.0)
        source = StubSource(clock, {"AAPL": RawQuote(price=110.0, change=2.0, percent=-math.inf)})
        resolver, _, _ = _make_resolver(source, clock)

        quote = resolver.resolve("AAPL")

        self.assertEqual(quote.change, 2.0)
        self.assertEqual(quote.percent, 0.0)
        self.assertTrue(math.isfinite(resolver.quote_cache.get("AAPL").percent))


class ConcurrentResolveTest(unittest.TestCase):
    def _run_overlapping(self, source: SlowFirstSource):
        cache = QuoteCache()
        cache.put(_cached("AAPL", 100.0, 0.0))
        resolver = QuoteResolver(
            quote_cache=cache,
            rate_limiter=RateLimiter(0.2),
            source=source,
            ttl_sec=0.0,
        )
        results: list[QuoteRecord] = []
        lock = threading.Lock()

        def worker():
            quote = resolver.resolve("AAPL")
            with lock:
                results.append(quote)

        first = threading.Thread(target=worker)
        first.start()
        self.assertTrue(source.first_started.wait(timeout=1.0))
        second = threading.Thread(target=worker)
        second.start()
        first.join()
        second.join()
        return cache, results

    def test_second_fetch_derives_change_from_latest_write(self):
        source = SlowFirstSource()
        cache, results = self._run_overlapping(source)

        live = cache.get("AAPL")
        self.assertEqual(source.calls, 2)
        self.assertEqual(live.price, 110.0)
        self.assertEqual(live.change, 0.0)
        self.assertEqual(live.percent, 0.0)
        self.assertEqual(len(results), 2)

    def test_failed_second_fetch_falls_back_to_latest_write(self):
        source = SlowFirstSource(second_fails=True)
        cache, results = self._run_overlapping(source)

        live = cache.get("AAPL")
        self.assertEqual(source.calls, 2)
        self.assertEqual(live.price, 110.0)
        self.assertEqual([q.price for q in results], [110.0, 110.0])
        self.assertIs(results[1], live)


if __name__ == "__main__":
    unittest.main()
