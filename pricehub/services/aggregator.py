from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Sequence

from pricehub.errors import FetchError, SourceUnavailable
from pricehub.schemas.quote import ConsensusSnapshot, SourceQuote
from pricehub.services.timeutil import now_ms


def derived_change_pct(quote: SourceQuote) -> float:
    if quote.open_price:
        return (quote.price - quote.open_price) / quote.open_price * 100.0
    return quote.change_pct


def build_snapshot(
    symbol: str,
    quotes: dict[str, SourceQuote | None],
    timestamp: int,
) -> ConsensusSnapshot:
    real = [q for q in quotes.values() if q is not None and not q.synthetic]
    average = sum(q.price for q in real) / len(real) if real else 0.0
    change = sum(derived_change_pct(q) for q in real) / len(real) if real else 0.0
    return ConsensusSnapshot(
        symbol=symbol,
        timestamp=timestamp,
        exchanges=dict(quotes),
        average_price=average,
        change_24h=change,
        degraded=len(real) < len(quotes),
    )


class ConsensusPriceAggregator:
    """Queries every configured source in parallel and averages what comes back."""

    def __init__(self, sources: Sequence, *, clock_ms: Callable[[], int] = now_ms) -> None:
        if not sources:
            raise ValueError("at least one price source is required")
        names = [s.name for s in sources]
        if len(set(names)) != len(names):
            raise ValueError(f"duplicate source names: {names}")
        self.sources = list(sources)
        self._clock_ms = clock_ms

    @property
    def source_names(self) -> list[str]:
        return [s.name for s in self.sources]

    def get_price(self, symbol: str) -> ConsensusSnapshot:
        symbol = symbol.upper()

        quotes: dict[str, SourceQuote | None] = {}
        with ThreadPoolExecutor(max_workers=len(self.sources), thread_name_prefix="price-source") as pool:
            futures = {s.name: pool.submit(s.get_ticker, symbol) for s in self.sources}
            for name, future in futures.items():
                try:
                    quotes[name] = future.result()
                except FetchError as exc:
                    print(f"[PRICE][source_absent] symbol={symbol} source={name} error={exc}", flush=True)
                    quotes[name] = None
                except Exception as exc:
                    raise SourceUnavailable(f"source {name} failed unexpectedly for {symbol}: {exc}") from exc

        snapshot = build_snapshot(symbol, quotes, self._clock_ms())
        present = sum(1 for q in quotes.values() if q is not None)
        print(
            f"[PRICE][aggregate] symbol={symbol} sources={len(quotes)} present={present} "
            f"average_price={snapshot.average_price} degraded={int(snapshot.degraded)}",
            flush=True,
        )
        return snapshot
