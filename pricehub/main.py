from __future__ import annotations

import threading
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI

from pricehub.api.routes import router
from pricehub.config.settings import Settings, get_settings
from pricehub.integrations.gateio_rest import GateioRestClient
from pricehub.integrations.mexc_rest import MexcRestClient
from pricehub.integrations.rate_limited import RateLimitedFetcher
from pricehub.integrations.synthetic import FallbackQuoteSource
from pricehub.services.aggregator import ConsensusPriceAggregator
from pricehub.services.broadcast import BroadcastFanout
from pricehub.services.extremum import ExtremumRefreshWorker, HistoricalExtremumCalculator
from pricehub.services.market_data import MarketDataService
from pricehub.services.price_cache import PriceCache
from pricehub.services.scheduler import CollectionScheduler
from pricehub.services.token_store import InMemoryTokenStore

_CLIENTS = {
    "mexc": MexcRestClient,
    "gateio": GateioRestClient,
}


def _fetcher(settings: Settings, client_cls, sleep_fn) -> RateLimitedFetcher:
    return RateLimitedFetcher(
        client_cls.BASE_URL,
        source=client_cls.name,
        delay_sec=settings.RATE_LIMIT_DELAY_MS / 1000.0,
        quote_timeout_sec=settings.QUOTE_TIMEOUT_SEC,
        history_timeout_sec=settings.HISTORY_TIMEOUT_SEC,
        max_concurrency=settings.MAX_CONCURRENT_REQUESTS,
        sleep_fn=sleep_fn,
    )


def build_market_data_service(
    settings: Settings,
    *,
    sources: list | None = None,
    history_client=None,
    token_store=None,
    sleep_fn=time.sleep,
    timer_factory=threading.Timer,
) -> MarketDataService:
    clients = {
        name: _CLIENTS[name](_fetcher(settings, _CLIENTS[name], sleep_fn))
        for name in settings.PRICE_SOURCES
    }
    if sources is None:
        sources = list(clients.values())
        if settings.SYNTHETIC_FALLBACK:
            sources = [FallbackQuoteSource(s) for s in sources]
    if history_client is None:
        history_client = clients.get("mexc") or MexcRestClient(_fetcher(settings, MexcRestClient, sleep_fn))

    token_store = token_store or InMemoryTokenStore(settings.TRACKED_SYMBOLS)
    aggregator = ConsensusPriceAggregator(sources)
    price_cache = PriceCache(aggregator, ttl_sec=settings.PRICE_CACHE_TTL_SEC)
    fanout = BroadcastFanout(
        price_cache,
        interval_sec=settings.BROADCAST_INTERVAL_SEC,
        is_tracked=lambda symbol: token_store.get_token(symbol) is not None,
    )

    service = MarketDataService(
        token_store=token_store,
        price_cache=price_cache,
        history_client=history_client,
        extremes=None,
        fanout=fanout,
    )
    service.extremes = HistoricalExtremumCalculator(
        token_store=token_store,
        history_client=history_client,
        current_price=service.current_price,
        chunk_delay_sec=2 * settings.RATE_LIMIT_DELAY_MS / 1000.0,
        sleep_fn=sleep_fn,
    )
    service.extremum_worker = ExtremumRefreshWorker(
        service.extremes,
        interval_sec=settings.EXTREMUM_REFRESH_INTERVAL_SEC,
    )
    service.scheduler = CollectionScheduler(
        service.refresh_all_prices,
        interval_ms=settings.SCRAPE_INTERVAL_MS,
        enabled=settings.SCRAPE_ENABLED,
        timer_factory=timer_factory,
    )
    return service


@asynccontextmanager
async def lifespan(app: FastAPI):
    service = app.state.market_data_service
    service.start()
    try:
        yield
    finally:
        service.stop()


app = FastAPI(title="pricehub", version="0.1.0", lifespan=lifespan)
app.include_router(router, prefix="/v1")

app.state.market_data_service = build_market_data_service(get_settings())
