from __future__ import annotations


class QuoteFeedError(Exception):
    """Base class for quote acquisition errors."""


class SourceUnavailable(QuoteFeedError):
    def __init__(self, symbol: str, reason: str) -> None:
        super().__init__(f"SOURCE_UNAVAILABLE symbol={symbol} reason={reason}")
        self.symbol = symbol
        self.reason = reason


class NoValidPrice(QuoteFeedError):
    def __init__(self, symbol: str, price: float | None = None) -> None:
        super().__init__(f"NO_VALID_PRICE symbol={symbol} price={price!r}")
        self.symbol = symbol
        self.price = price


class QuoteUnavailable(QuoteFeedError):
    """No cached record and the fetch failed."""

    def __init__(self, symbol: str, cause: Exception | None = None) -> None:
        super().__init__(f"QUOTE_UNAVAILABLE symbol={symbol} cause={cause}")
        self.symbol = symbol
        self.cause = cause


class NoSymbolsProvided(QuoteFeedError):
    def __init__(self) -> None:
        super().__init__("NO_SYMBOLS_PROVIDED")


class AllSymbolsFailed(QuoteFeedError):
    def __init__(self, symbols: list[str]) -> None:
        super().__init__(f"ALL_SYMBOLS_FAILED symbols={','.join(symbols)}")
        self.symbols = list(symbols)
