from __future__ import annotations

import re
from typing import Any, Dict, Optional

import requests

from quotefeed.errors import SourceUnavailable
from quotefeed.schemas.quote import RawQuote

_NUMBER_RE = re.compile(r"([+-]?[0-9]*\.?[0-9]+)")
_PERCENT_RE = re.compile(r"([+-]?[0-9]*\.?[0-9]+)\s*%")

_PRICE_KEYS = ("price", "last", "lastPrice", "regularMarketPrice", "c")
_CHANGE_KEYS = ("change", "regularMarketChange", "d")
_PERCENT_KEYS = ("percent", "changePercent", "change_pct", "regularMarketChangePercent", "dp")
_NAME_KEYS = ("name", "shortName", "longName", "displayName")


def parse_price_text(value: Any) -> Optional[float]:
    """Parse a price that may arrive as text, e.g. ``"$1,234.50"``."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    text = re.sub(r"[^0-9.\-]", "", str(value).strip())
    if not text:
        return None
    try:
        return float(text)
    except ValueError:
        return None


def parse_change_text(value: Any) -> tuple[Optional[float], Optional[float]]:
    """Split a change cell such as ``"+1.25 (0.80%)"`` into (change, percent)."""
    if value is None or isinstance(value, bool):
        return None, None
    if isinstance(value, (int, float)):
        return float(value), None
    text = str(value).strip().replace(",", "")
    number = _NUMBER_RE.search(text)
    percent = _PERCENT_RE.search(text)
    return (
        float(number.group(1)) if number else None,
        float(percent.group(1)) if percent else None,
    )


def _first(payload: Dict[str, Any], keys: tuple[str, ...]) -> Any:
    for key in keys:
        value = payload.get(key)
        if value is not None and value != "":
            return value
    return None


def parse_quote_payload(payload: Any, symbol: str) -> RawQuote:
    """Map a provider JSON body onto ``RawQuote``.

    Accepts a flat object, a ``{"quote": {...}}`` / ``{"data": {...}}`` wrapper,
    or a one-element list. Missing fields stay ``None``; price validation is
    left to the resolver.
    """
    if isinstance(payload, list):
        payload = payload[0] if payload else {}
    if not isinstance(payload, dict):
        raise SourceUnavailable(symbol, "payload must be a JSON object")
    for wrapper in ("quote", "data", "result"):
        nested = payload.get(wrapper)
        if isinstance(nested, dict):
            payload = {**payload, **nested}
            break

    change, embedded_percent = parse_change_text(_first(payload, _CHANGE_KEYS))
    percent_raw = _first(payload, _PERCENT_KEYS)
    percent = parse_change_text(percent_raw)[0] if percent_raw is not None else embedded_percent
    name = _first(payload, _NAME_KEYS)
    name_text = str(name).strip() if name is not None else ""

    return RawQuote(
        price=parse_price_text(_first(payload, _PRICE_KEYS)),
        change=change,
        percent=percent,
        name=name_text or None,
    )


class HttpQuoteSource:
    """Quote source backed by a JSON endpoint, one GET per symbol.

    ``url_template`` must contain ``{symbol}``, e.g.
    ``https://quotes.example.test/v1/quote/{symbol}``.
    """

    def __init__(
        self,
        url_template: str,
        *,
        session: Optional[Any] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> None:
        if "{symbol}" not in url_template:
            raise ValueError("url_template must contain {symbol}")
        self.url_template = url_template
        self.session = session or requests.Session()
        self.headers = headers or {"accept": "application/json"}

    def fetch(self, symbol: str, timeout: float) -> RawQuote:
        url = self.url_template.format(symbol=symbol)
        try:
            response = self.session.get(url, headers=self.headers, timeout=timeout)
            response.raise_for_status()
            payload = response.json()
        except requests.RequestException as exc:
            raise SourceUnavailable(symbol, str(exc)) from exc
        except ValueError as exc:
            raise SourceUnavailable(symbol, f"invalid JSON: {exc}") from exc
        return parse_quote_payload(payload, symbol)
