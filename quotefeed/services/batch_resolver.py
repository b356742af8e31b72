from __future__ import annotations

from quotefeed.errors import AllSymbolsFailed, NoSymbolsProvided, QuoteUnavailable
from quotefeed.schemas.quote import QuoteRecord, SymbolResult
from quotefeed.services.quote_resolver import QuoteResolver


def normalize_symbols(symbols: list[str]) -> list[str]:
    out: list[str] = []
    for symbol in symbols:
        value = str(symbol).strip().upper()
        if value:
            out.append(value)
    return out


class BatchResolver:
    """Resolves symbols one at a time, in input order, keeping partial results."""

    def __init__(self, *, resolver: QuoteResolver) -> None:
        self.resolver = resolver
        self.batches = 0
        self.all_failed_batches = 0
        self.last_batch_target = 0
        self.last_batch_final = 0
        self.last_failed_symbols: list[str] = []

    def resolve_items(self, symbols: list[str]) -> list[SymbolResult]:
        normalized = normalize_symbols(symbols)
        if not normalized:
            raise NoSymbolsProvided()

        items: list[SymbolResult] = []
        for symbol in normalized:
            try:
                record = self.resolver.resolve(symbol)
            except QuoteUnavailable as exc:
                print(f"[BATCH][symbol_skipped] symbol={symbol} error={exc.cause}", flush=True)
                items.append(SymbolResult(symbol=symbol, reason=str(exc.cause)))
                continue
            items.append(SymbolResult(symbol=symbol, record=record))

        failed = [item.symbol for item in items if not item.ok]
        self.batches += 1
        self.last_batch_target = len(items)
        self.last_batch_final = len(items) - len(failed)
        self.last_failed_symbols = failed

        print(
            "[BATCH][batch_resolve] "
            f"target_count={len(items)} final_count={self.last_batch_final} "
            f"failed_symbols={','.join(failed)}",
            flush=True,
        )
        return items

    def resolve_batch(self, symbols: list[str]) -> list[QuoteRecord]:
        items = self.resolve_items(symbols)
        records = [item.record for item in items if item.record is not None]
        if not records:
            self.all_failed_batches += 1
            raise AllSymbolsFailed([item.symbol for item in items])
        return records

    def metrics(self) -> dict[str, int | list[str]]:
        return {
            "batches": self.batches,
            "all_failed_batches": self.all_failed_batches,
            "batch_target_count": self.last_batch_target,
            "batch_final_count": self.last_batch_final,
            "batch_failed_symbols": list(self.last_failed_symbols),
        }
