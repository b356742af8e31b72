from __future__ import annotations

import zlib

from quotefeed.schemas.quote import RawQuote


class DemoQuoteSource:
    """Offline source returning a stable per-symbol price.

    Change fields are omitted so the resolver derives them from the cache.
    """

    def __init__(self, base_price: float = 100.0) -> None:
        self.base_price = base_price
        self.calls = 0

    def fetch(self, symbol: str, timeout: float) -> RawQuote:
        self.calls += 1
        offset = zlib.crc32(symbol.encode("utf-8")) % 10000 / 100
        return RawQuote(price=round(self.base_price + offset, 2))
