from __future__ import annotations

from pricehub.errors import FetchError, RecordNotFoundError, SchedulerActionError
from pricehub.schemas.history import PricePoint
from pricehub.schemas.quote import ConsensusSnapshot
from pricehub.schemas.scrape import ScheduleState
from pricehub.schemas.token import ExtremumRecord, Token, TokenCreate
from pricehub.services.timeutil import DAY_MS, HOUR_MS, now_ms

# period -> (kline interval, lookback)
HISTORY_PERIODS: dict[str, tuple[str, int]] = {
    "1h": ("1m", HOUR_MS),
    "24h": ("60m", 24 * HOUR_MS),
    "7d": ("1d", 7 * DAY_MS),
}


class MarketDataService:
    """Entry point used by the HTTP and WebSocket layers."""

    def __init__(
        self,
        *,
        token_store,
        price_cache,
        history_client,
        extremes,
        fanout,
        extremum_worker=None,
        clock_ms=now_ms,
    ) -> None:
        self.token_store = token_store
        self.price_cache = price_cache
        self.history_client = history_client
        self.extremes = extremes
        self.fanout = fanout
        self.extremum_worker = extremum_worker
        self.scheduler = None
        self._clock_ms = clock_ms

    def _require_token(self, symbol: str) -> Token:
        token = self.token_store.get_token(symbol.strip().upper())
        if token is None:
            raise RecordNotFoundError(f"token {symbol} not found")
        return token

    def is_tracked(self, symbol: str) -> bool:
        return self.token_store.get_token(symbol.strip().upper()) is not None

    def get_price(self, symbol: str) -> ConsensusSnapshot:
        token = self._require_token(symbol)
        return self.price_cache.get(token.symbol)

    def get_history(self, symbol: str, period: str = "24h") -> list[PricePoint]:
        if period not in HISTORY_PERIODS:
            raise ValueError(f"unsupported period {period!r}; expected one of {sorted(HISTORY_PERIODS)}")
        token = self._require_token(symbol)
        interval, lookback = HISTORY_PERIODS[period]
        end = self._clock_ms()
        try:
            candles = self.history_client.get_klines(token.symbol, end - lookback, end, interval)
        except FetchError as exc:
            print(f"[PRICE][history_error] symbol={token.symbol} period={period} error={exc}", flush=True)
            return []
        return [PricePoint(timestamp=c.open_time, price=c.close, volume=c.volume) for c in candles]

    def list_tokens(self) -> list[Token]:
        return self.token_store.get_all_tokens()

    def add_token(self, req: TokenCreate) -> Token:
        token = self.token_store.add_token(req)
        if self.extremum_worker is not None:
            self.extremum_worker.trigger_async(token.symbol)
        return token

    def delete_token(self, symbol: str) -> None:
        normalized = symbol.strip().upper()
        if not self.token_store.delete_token(normalized):
            raise RecordNotFoundError(f"token {symbol} not found")
        self.price_cache.invalidate(normalized)

    def compute_extremes(self, symbol: str) -> ExtremumRecord | None:
        return self.extremes.compute_extremes(symbol)

    def current_price(self, symbol: str) -> float:
        return self.price_cache.get(symbol).average_price

    def refresh_all_prices(self) -> dict[str, int]:
        """Collection action: warm the consensus price of every tracked token."""
        tokens = self.token_store.get_all_tokens()
        refreshed = 0
        failed = 0
        for token in tokens:
            try:
                self.price_cache.get(token.symbol)
                refreshed += 1
            except Exception as exc:
                failed += 1
                print(f"[SCRAPE][token_error] symbol={token.symbol} error={exc}", flush=True)

        if tokens and refreshed == 0:
            raise SchedulerActionError(f"price refresh failed for all {failed} tokens")
        return {"refreshed": refreshed, "failed": failed}

    def get_scrape_status(self) -> ScheduleState:
        return self.scheduler.status()

    def set_scrape_enabled(self, enabled: bool) -> None:
        self.scheduler.set_enabled(enabled)

    def set_scrape_interval(self, interval_ms: int) -> None:
        self.scheduler.set_interval(interval_ms)

    def start(self) -> None:
        self.scheduler.start()
        self.fanout.start()
        if self.extremum_worker is not None:
            self.extremum_worker.start()
        print("[APP][services_start]", flush=True)

    def stop(self) -> None:
        self.scheduler.stop()
        self.fanout.stop()
        if self.extremum_worker is not None:
            self.extremum_worker.stop()
        print("[APP][services_stop]", flush=True)

    def metrics(self) -> dict:
        return {
            "price_cache": self.price_cache.metrics(),
            "extremes": self.extremes.metrics(),
            "fanout": self.fanout.metrics(),
            "scrape": self.scheduler.status().model_dump(),
        }
