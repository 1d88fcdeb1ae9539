from __future__ import annotations

import math
import threading
import time
from typing import Callable

from pricehub.errors import FetchError, NoDataError, RecordNotFoundError
from pricehub.schemas.token import ExtremumRecord
from pricehub.services.timeutil import DAY_MS, YEAR_MS, now_ms


class HistoricalExtremumCalculator:
    """All-time high/low backfill from daily candles.

    The lookback window is walked oldest-first in fixed chunks, one kline
    request per chunk. A failed chunk is skipped; the record is written as
    long as any chunk returned candles.
    """

    def __init__(
        self,
        *,
        token_store,
        history_client,
        current_price: Callable[[str], float],
        lookback_ms: int = 2 * YEAR_MS,
        chunk_ms: int = 30 * DAY_MS,
        freshness_ms: int = 7 * DAY_MS,
        chunk_delay_sec: float = 0.5,
        token_delay_sec: float = 1.0,
        interval: str = "1d",
        sleep_fn: Callable[[float], None] = time.sleep,
        clock_ms: Callable[[], int] = now_ms,
    ) -> None:
        if chunk_ms <= 0 or lookback_ms <= 0:
            raise ValueError("lookback_ms and chunk_ms must be positive")

        self.token_store = token_store
        self.history_client = history_client
        self.current_price = current_price
        self.lookback_ms = lookback_ms
        self.chunk_ms = chunk_ms
        self.freshness_ms = freshness_ms
        self.chunk_delay_sec = chunk_delay_sec
        self.token_delay_sec = token_delay_sec
        self.interval = interval
        self._sleep = sleep_fn
        self._clock_ms = clock_ms

        self._locks_guard = threading.Lock()
        self._metrics_lock = threading.Lock()
        self._symbol_locks: dict[str, threading.Lock] = {}
        self._metrics = {
            "computed": 0,
            "skipped_fresh": 0,
            "baseline_fallbacks": 0,
            "chunk_failures": 0,
            "chunk_requests": 0,
        }

    def _inc(self, key: str) -> None:
        with self._metrics_lock:
            self._metrics[key] += 1

    def _symbol_lock(self, symbol: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._symbol_locks.get(symbol)
            if lock is None:
                lock = threading.Lock()
                self._symbol_locks[symbol] = lock
            return lock

    def _walk(self, symbol: str, now: int) -> tuple[float, float]:
        high = 0.0
        low = math.inf
        seen = 0

        start = now - self.lookback_ms
        while start < now:
            end = min(start + self.chunk_ms, now)
            self._inc("chunk_requests")
            try:
                candles = self.history_client.get_klines(symbol, start, end, self.interval)
            except FetchError as exc:
                self._inc("chunk_failures")
                print(
                    f"[ATH][chunk_error] symbol={symbol} start={start} end={end} error={exc}",
                    flush=True,
                )
                candles = []

            for candle in candles:
                seen += 1
                high = max(high, candle.high)
                low = min(low, candle.low)

            start = end
            self._sleep(self.chunk_delay_sec)

        if seen == 0:
            raise NoDataError(f"no candles for {symbol} in lookback window")
        return high, low

    def compute_extremes(self, symbol: str) -> ExtremumRecord | None:
        """Recompute and persist ATH/ATL; ``None`` when skipped or nothing to write."""
        symbol = symbol.upper()
        with self._symbol_lock(symbol):
            token = self.token_store.get_token(symbol)
            if token is None:
                raise RecordNotFoundError(f"token {symbol} not found")

            now = self._clock_ms()
            if token.ath_last_updated is not None and now - token.ath_last_updated < self.freshness_ms:
                self._inc("skipped_fresh")
                print(f"[ATH][skip_fresh] symbol={symbol} last_updated={token.ath_last_updated}", flush=True)
                return None

            print(f"[ATH][compute_start] symbol={symbol}", flush=True)
            try:
                high, low = self._walk(symbol, now)
            except NoDataError:
                price = self.current_price(symbol)
                if price <= 0:
                    print(f"[ATH][no_baseline] symbol={symbol} reason=no_history_and_no_price", flush=True)
                    return None
                self._inc("baseline_fallbacks")
                print(f"[ATH][baseline] symbol={symbol} price={price}", flush=True)
                high = low = price

            computed_at = self._clock_ms()
            if self.token_store.update_extremum(symbol, high, low, computed_at) is None:
                raise RecordNotFoundError(f"token {symbol} was removed during computation")

            self._inc("computed")
            print(f"[ATH][computed] symbol={symbol} ath={high} atl={low}", flush=True)
            return ExtremumRecord(
                symbol=symbol,
                all_time_high=high,
                all_time_low=low,
                last_computed_at=computed_at,
            )

    def refresh_all(self) -> dict[str, int]:
        refreshed = 0
        skipped = 0
        failed = 0
        for token in self.token_store.get_all_tokens():
            try:
                if self.compute_extremes(token.symbol) is None:
                    skipped += 1
                else:
                    refreshed += 1
            except Exception as exc:
                failed += 1
                print(f"[ATH][refresh_error] symbol={token.symbol} error={exc}", flush=True)
            self._sleep(self.token_delay_sec)

        print(f"[ATH][refresh_all] refreshed={refreshed} skipped={skipped} failed={failed}", flush=True)
        return {"refreshed": refreshed, "skipped": skipped, "failed": failed}

    def metrics(self) -> dict[str, int]:
        with self._metrics_lock:
            return dict(self._metrics)


class ExtremumRefreshWorker:
    def __init__(self, calculator: HistoricalExtremumCalculator, *, interval_sec: float = 86_400.0) -> None:
        self.calculator = calculator
        self.interval_sec = interval_sec
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self.runs = 0

    def trigger_async(self, symbol: str) -> threading.Thread:
        def _run() -> None:
            try:
                self.calculator.compute_extremes(symbol)
            except Exception as exc:
                print(f"[ATH][background_error] symbol={symbol} error={exc}", flush=True)

        thread = threading.Thread(target=_run, daemon=True, name=f"ath-{symbol}")
        thread.start()
        return thread

    def _loop(self) -> None:
        while not self._stop_event.wait(self.interval_sec):
            try:
                self.calculator.refresh_all()
                self.runs += 1
            except Exception as exc:  # pragma: no cover
                print(f"[ATH][refresh_loop_error] error={exc}", flush=True)

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, daemon=True, name="extremum-refresh-worker")
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=1.0)
