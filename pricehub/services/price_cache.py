from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Callable

from pricehub.schemas.quote import ConsensusSnapshot


@dataclass(frozen=True)
class CacheEntry:
    snapshot: ConsensusSnapshot
    cached_at: float


@dataclass
class _InFlight:
    event: threading.Event = field(default_factory=threading.Event)
    snapshot: ConsensusSnapshot | None = None
    error: Exception | None = None
    takeover: bool = False


class PriceCache:
    """TTL cache of consensus snapshots with per-symbol miss coalescing.

    The first caller on a missing or expired symbol aggregates; callers that
    arrive meanwhile wait for that result instead of hitting the exchanges.
    The first waiter that gives up after ``wait_timeout_sec`` replaces the
    stale flight with its own aggregation; a takeover flight is never
    replaced, so at most two aggregations per symbol overlap.
    """

    def __init__(
        self,
        aggregator,
        *,
        ttl_sec: float = 30.0,
        wait_timeout_sec: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.aggregator = aggregator
        self.ttl_sec = ttl_sec
        self.wait_timeout_sec = wait_timeout_sec
        self._clock = clock
        self._lock = threading.Lock()
        self._rows: dict[str, CacheEntry] = {}
        self._in_flight: dict[str, _InFlight] = {}
        self._metrics = {"hits": 0, "misses": 0, "coalesced": 0, "wait_timeouts": 0, "takeovers": 0}

    def _is_fresh(self, entry: CacheEntry, now: float) -> bool:
        return now - entry.cached_at < self.ttl_sec

    def peek(self, symbol: str) -> ConsensusSnapshot | None:
        with self._lock:
            entry = self._rows.get(symbol.upper())
            if entry is None or not self._is_fresh(entry, self._clock()):
                return None
            return entry.snapshot

    def invalidate(self, symbol: str) -> None:
        with self._lock:
            self._rows.pop(symbol.upper(), None)

    def get(self, symbol: str) -> ConsensusSnapshot:
        key = symbol.upper()
        with self._lock:
            entry = self._rows.get(key)
            if entry is not None and self._is_fresh(entry, self._clock()):
                self._metrics["hits"] += 1
                return entry.snapshot

            flight = self._in_flight.get(key)
            leader = flight is None
            if leader:
                flight = _InFlight()
                self._in_flight[key] = flight
                self._metrics["misses"] += 1
            else:
                self._metrics["coalesced"] += 1

        while not leader:
            if flight.event.wait(self.wait_timeout_sec):
                if flight.error is not None:
                    raise flight.error
                return flight.snapshot
            with self._lock:
                self._metrics["wait_timeouts"] += 1
                current = self._in_flight.get(key)
                if current is flight and not flight.takeover:
                    flight = _InFlight(takeover=True)
                    self._in_flight[key] = flight
                    self._metrics["takeovers"] += 1
                    leader = True
                elif current is not None:
                    flight = current
                # current is None: the stale leader is finishing, keep waiting on it
            print(f"[PRICE][coalesce_timeout] symbol={key} takeover={int(leader)}", flush=True)

        try:
            flight.snapshot = self._store(key, self.aggregator.get_price(key))
            return flight.snapshot
        except Exception as exc:
            flight.error = exc
            raise
        finally:
            with self._lock:
                if self._in_flight.get(key) is flight:
                    del self._in_flight[key]
            flight.event.set()

    def _store(self, key: str, snapshot: ConsensusSnapshot) -> ConsensusSnapshot:
        with self._lock:
            self._rows[key] = CacheEntry(snapshot=snapshot, cached_at=self._clock())
        return snapshot

    def metrics(self) -> dict[str, int]:
        with self._lock:
            now = self._clock()
            fresh = sum(1 for e in self._rows.values() if self._is_fresh(e, now))
            return {
                **self._metrics,
                "cached_symbols": len(self._rows),
                "fresh_symbols": fresh,
                "in_flight": len(self._in_flight),
            }
