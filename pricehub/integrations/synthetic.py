from __future__ import annotations

import random
import threading
import time
import zlib

from pricehub.errors import FetchError
from pricehub.schemas.quote import SourceQuote

_BASE_PRICES = {
    "BTC": 43000.0,
    "ETH": 2400.0,
    "AIPUMP": 0.0015,
    "AAVE": 95.0,
    "UNI": 8.5,
    "LINK": 14.0,
}


def synthetic_quote(source: str, symbol: str, now_ms: int | None = None) -> SourceQuote:
    """Deterministic placeholder quote; same inputs always give the same numbers."""
    symbol = symbol.upper()
    rng = random.Random(zlib.crc32(f"{source}:{symbol}".encode("utf-8")))
    base = _BASE_PRICES.get(symbol)
    if base is None:
        base = round(rng.uniform(1.0, 100.0), 4)

    return SourceQuote(
        source=f"{source}-synthetic",
        symbol=symbol,
        price=base,
        volume=round(rng.uniform(0, 1_000_000), 2),
        change_pct=0.0,
        high_24h=base * 1.05,
        low_24h=base * 0.95,
        volume_24h=round(rng.uniform(0, 10_000_000), 2),
        open_price=base,
        price_change=0.0,
        bid_price=base * 0.999,
        ask_price=base * 1.001,
        status="UNKNOWN",
        trading_enabled=False,
        synthetic=True,
        ts=now_ms if now_ms is not None else int(time.time() * 1000),
    )


class FallbackQuoteSource:
    """Wraps a live source; after ``failure_threshold`` consecutive failures
    it answers with a synthetic quote instead of raising."""

    def __init__(self, primary, *, failure_threshold: int = 3) -> None:
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        self.primary = primary
        self.name = primary.name
        self.failure_threshold = failure_threshold
        self._lock = threading.Lock()
        self._consecutive_failures: dict[str, int] = {}
        self.synthetic_served = 0

    def consecutive_failures(self, symbol: str) -> int:
        with self._lock:
            return self._consecutive_failures.get(symbol.upper(), 0)

    def get_ticker(self, symbol: str) -> SourceQuote:
        key = symbol.upper()
        try:
            quote = self.primary.get_ticker(symbol)
        except FetchError as exc:
            with self._lock:
                failures = self._consecutive_failures.get(key, 0) + 1
                self._consecutive_failures[key] = failures
            if failures < self.failure_threshold:
                raise
            with self._lock:
                self.synthetic_served += 1
            print(
                f"[PRICE][synthetic_quote] source={self.name} symbol={key} "
                f"consecutive_failures={failures} cause={exc.kind}",
                flush=True,
            )
            return synthetic_quote(self.name, key)

        with self._lock:
            self._consecutive_failures.pop(key, None)
        return quote
