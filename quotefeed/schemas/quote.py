from pydantic import BaseModel


class RawQuote(BaseModel):
    price: float | None = None
    change: float | None = None
    percent: float | None = None
    name: str | None = None


class QuoteRecord(BaseModel):
    symbol: str
    name: str
    price: float
    change: float = 0.0
    percent: float = 0.0
    timestamp: float


class SymbolResult(BaseModel):
    symbol: str
    record: QuoteRecord | None = None
    reason: str | None = None

    @property
    def ok(self) -> bool:
        return self.record is not None
