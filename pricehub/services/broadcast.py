from __future__ import annotations

import threading
from typing import Callable

from pricehub.schemas.quote import PriceUpdate

PushCallback = Callable[[PriceUpdate], None]


class BroadcastFanout:
    """Per-symbol subscriber groups fed from the price cache on a fixed tick."""

    def __init__(
        self,
        price_cache,
        *,
        interval_sec: float = 5.0,
        is_tracked: Callable[[str], bool] | None = None,
    ) -> None:
        self.price_cache = price_cache
        self.is_tracked = is_tracked
        self.interval_sec = interval_sec
        self._lock = threading.Lock()
        self._groups: dict[str, dict[str, PushCallback]] = {}
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._metrics = {
            "ticks": 0,
            "idle_ticks": 0,
            "pushes": 0,
            "symbol_errors": 0,
            "push_errors": 0,
            "untracked_skips": 0,
        }

    def subscribe(self, symbol: str, subscriber_id: str, callback: PushCallback) -> None:
        key = symbol.strip().upper()
        if not key:
            raise ValueError("symbol must not be empty")
        with self._lock:
            self._groups.setdefault(key, {})[subscriber_id] = callback

    def unsubscribe(self, symbol: str, subscriber_id: str) -> bool:
        key = symbol.strip().upper()
        with self._lock:
            group = self._groups.get(key)
            if not group or subscriber_id not in group:
                return False
            del group[subscriber_id]
            if not group:
                del self._groups[key]
            return True

    def unsubscribe_all(self, subscriber_id: str) -> int:
        removed = 0
        with self._lock:
            for key in list(self._groups):
                group = self._groups[key]
                if group.pop(subscriber_id, None) is not None:
                    removed += 1
                if not group:
                    del self._groups[key]
        return removed

    def subscriber_count(self, symbol: str | None = None) -> int:
        with self._lock:
            if symbol is not None:
                return len(self._groups.get(symbol.strip().upper(), {}))
            return sum(len(g) for g in self._groups.values())

    def tick(self) -> int:
        """Push one update per subscribed symbol; returns the number of deliveries."""
        with self._lock:
            self._metrics["ticks"] += 1
            groups = {symbol: list(group.items()) for symbol, group in self._groups.items() if group}
            if not groups:
                self._metrics["idle_ticks"] += 1
                return 0

        if self.is_tracked is not None:
            untracked = [symbol for symbol in groups if not self.is_tracked(symbol)]
            if untracked:
                with self._lock:
                    self._metrics["untracked_skips"] += len(untracked)
                print(f"[FANOUT][untracked_skip] symbols={','.join(untracked)}", flush=True)
            for symbol in untracked:
                del groups[symbol]

        delivered = 0
        for symbol, subscribers in groups.items():
            try:
                snapshot = self.price_cache.get(symbol)
            except Exception as exc:
                with self._lock:
                    self._metrics["symbol_errors"] += 1
                print(f"[FANOUT][symbol_error] symbol={symbol} error={exc}", flush=True)
                continue

            update = PriceUpdate(symbol=symbol, snapshot=snapshot)
            for subscriber_id, callback in subscribers:
                try:
                    callback(update)
                    delivered += 1
                except Exception as exc:
                    with self._lock:
                        self._metrics["push_errors"] += 1
                    print(
                        f"[FANOUT][push_error] symbol={symbol} subscriber={subscriber_id} error={exc}",
                        flush=True,
                    )

        with self._lock:
            self._metrics["pushes"] += delivered
        return delivered

    def _loop(self) -> None:
        while not self._stop_event.wait(self.interval_sec):
            try:
                self.tick()
            except Exception as exc:  # pragma: no cover
                print(f"[FANOUT][tick_error] error={exc}", flush=True)

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, daemon=True, name="broadcast-fanout")
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=1.0)

    def metrics(self) -> dict[str, int]:
        with self._lock:
            return {
                **self._metrics,
                "subscribed_symbols": len(self._groups),
                "subscribers": sum(len(g) for g in self._groups.values()),
            }
