from __future__ import annotations

import time
from typing import Any, List, Optional

from pricehub.errors import FetchError
from pricehub.integrations.rate_limited import RateLimitedFetcher
from pricehub.schemas.history import Candle
from pricehub.schemas.quote import SourceQuote

_KNOWN_STATUSES = {"TRADING", "HALT", "BREAK"}


def _to_float(value: Any, default: float = 0.0) -> float:
    try:
        if value is None or value == "":
            return default
        return float(value)
    except (TypeError, ValueError):
        return default


def _required_float(payload: dict, key: str) -> float:
    value = payload.get(key)
    try:
        if value is None or value == "":
            raise ValueError(f"missing {key}")
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"invalid numeric value for {key}: {value!r}") from exc


class MexcRestClient:
    """MEXC spot public endpoints: 24h ticker, symbol status and klines."""

    name = "mexc"
    BASE_URL = "https://api.mexc.com/api/v3"
    KLINE_LIMIT = 1000

    def __init__(self, fetcher: Optional[RateLimitedFetcher] = None) -> None:
        self.fetcher = fetcher or RateLimitedFetcher(self.BASE_URL, source=self.name)

    @staticmethod
    def pair(symbol: str) -> str:
        return f"{symbol.upper()}USDT"

    def _malformed(self, endpoint: str, exc: Exception) -> FetchError:
        return FetchError(str(exc), source=self.name, endpoint=endpoint, kind="MALFORMED_PAYLOAD")

    def _trading_status(self, pair: str) -> str:
        try:
            payload = self.fetcher.fetch("/exchangeInfo", {"symbol": pair})
        except FetchError:
            return "UNKNOWN"

        symbols = payload.get("symbols") if isinstance(payload, dict) else None
        for row in symbols or []:
            if isinstance(row, dict) and row.get("symbol") == pair:
                status = str(row.get("status") or "UNKNOWN").upper()
                return status if status in _KNOWN_STATUSES else "UNKNOWN"
        return "UNKNOWN"

    def get_ticker(self, symbol: str) -> SourceQuote:
        pair = self.pair(symbol)
        payload = self.fetcher.fetch("/ticker/24hr", {"symbol": pair})
        if not isinstance(payload, dict):
            raise self._malformed("/ticker/24hr", ValueError("ticker payload must be an object"))

        try:
            price = _required_float(payload, "lastPrice")
        except ValueError as exc:
            raise self._malformed("/ticker/24hr", exc) from exc

        status = self._trading_status(pair)
        count = payload.get("count")
        return SourceQuote(
            source=self.name,
            symbol=symbol.upper(),
            price=price,
            volume=_to_float(payload.get("volume")),
            change_pct=_to_float(payload.get("priceChangePercent")),
            high_24h=_to_float(payload.get("highPrice")),
            low_24h=_to_float(payload.get("lowPrice")),
            volume_24h=_to_float(payload.get("quoteVolume")),
            open_price=_to_float(payload.get("openPrice")) or None,
            price_change=_to_float(payload.get("priceChange")),
            bid_price=_to_float(payload.get("bidPrice")),
            ask_price=_to_float(payload.get("askPrice")),
            trade_count=int(count) if str(count or "").isdigit() else None,
            status=status,
            # exchangeInfo outage leaves the pair tradable rather than halted
            trading_enabled=status in {"TRADING", "UNKNOWN"},
            ts=int(time.time() * 1000),
        )

    def get_klines(
        self,
        symbol: str,
        start_ms: int,
        end_ms: int,
        interval: str = "1d",
    ) -> List[Candle]:
        payload = self.fetcher.fetch(
            "/klines",
            {
                "symbol": self.pair(symbol),
                "interval": interval,
                "startTime": int(start_ms),
                "endTime": int(end_ms),
                "limit": self.KLINE_LIMIT,
            },
            kind="history",
        )
        if not isinstance(payload, list):
            raise self._malformed("/klines", ValueError("klines payload must be a list"))

        # [open_time, open, high, low, close, volume, close_time, quote_volume]
        candles: List[Candle] = []
        try:
            for row in payload:
                candles.append(
                    Candle(
                        open_time=int(row[0]),
                        open=float(row[1]),
                        high=float(row[2]),
                        low=float(row[3]),
                        close=float(row[4]),
                        volume=float(row[5]),
                    )
                )
        except (IndexError, TypeError, ValueError) as exc:
            raise self._malformed("/klines", exc) from exc
        return candles
