from __future__ import annotations

import time
from typing import Any, Optional

from pricehub.errors import FetchError
from pricehub.integrations.rate_limited import RateLimitedFetcher
from pricehub.schemas.quote import SourceQuote


def _to_float(value: Any, default: float = 0.0) -> float:
    try:
        if value is None or value == "":
            return default
        return float(value)
    except (TypeError, ValueError):
        return default


class GateioRestClient:
    """Gate.io spot ticker. Gate.io exposes no per-pair trading status."""

    name = "gateio"
    BASE_URL = "https://api.gateio.ws/api/v4"

    def __init__(self, fetcher: Optional[RateLimitedFetcher] = None) -> None:
        self.fetcher = fetcher or RateLimitedFetcher(self.BASE_URL, source=self.name)

    @staticmethod
    def pair(symbol: str) -> str:
        return f"{symbol.upper()}_USDT"

    def get_ticker(self, symbol: str) -> SourceQuote:
        payload = self.fetcher.fetch("/spot/tickers", {"currency_pair": self.pair(symbol)})
        if not isinstance(payload, list) or not payload:
            raise FetchError(
                "no ticker data received",
                source=self.name,
                endpoint="/spot/tickers",
                kind="NO_DATA",
            )

        row = payload[0]
        last = _to_float(row.get("last") if isinstance(row, dict) else None, default=-1.0)
        if last < 0:
            raise FetchError(
                f"invalid last price: {row!r}",
                source=self.name,
                endpoint="/spot/tickers",
                kind="MALFORMED_PAYLOAD",
            )

        change_pct = _to_float(row.get("change_percentage"))
        open_price = None
        if change_pct > -100.0:
            open_price = last / (1.0 + change_pct / 100.0) or None

        return SourceQuote(
            source=self.name,
            symbol=symbol.upper(),
            price=last,
            volume=_to_float(row.get("base_volume")),
            change_pct=change_pct,
            high_24h=_to_float(row.get("high_24h")),
            low_24h=_to_float(row.get("low_24h")),
            volume_24h=_to_float(row.get("quote_volume")),
            open_price=open_price,
            price_change=(last - open_price) if open_price else None,
            bid_price=_to_float(row.get("highest_bid")),
            ask_price=_to_float(row.get("lowest_ask")),
            status="TRADING",
            trading_enabled=True,
            ts=int(time.time() * 1000),
        )
