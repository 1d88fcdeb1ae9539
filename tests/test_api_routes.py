import asyncio
import unittest

from fastapi.testclient import TestClient

from pricehub.api.routes import _stop_sender
from pricehub.config.settings import Settings
from pricehub.errors import FetchError
from pricehub.main import app, build_market_data_service
from pricehub.schemas.history import Candle
from pricehub.schemas.quote import SourceQuote
from pricehub.services.token_store import InMemoryTokenStore


class _StubSource:
    def __init__(self, name: str, price: float) -> None:
        self.name = name
        self.price = price
        self.error = None

    def get_ticker(self, symbol: str) -> SourceQuote:
        if self.error is not None:
            raise self.error
        return SourceQuote(source=self.name, symbol=symbol, price=self.price, change_pct=1.0, ts=1)


class _StubHistory:
    def __init__(self) -> None:
        self.error = None

    def get_klines(self, symbol, start_ms, end_ms, interval="1d"):
        if self.error is not None:
            raise self.error
        return [Candle(open_time=start_ms, open=90.0, high=250.0, low=80.0, close=120.0, volume=3.0)]


class _IdleTimer:
    def __init__(self, interval, function, args=()):
        self.daemon = False

    def start(self):
        pass

    def cancel(self):
        pass


class TestApiRoutes(unittest.TestCase):
    def setUp(self):
        self.sources = [_StubSource("mexc", 100.0), _StubSource("gateio", 200.0)]
        self.history = _StubHistory()
        self.service = build_market_data_service(
            Settings(),
            sources=self.sources,
            history_client=self.history,
            token_store=InMemoryTokenStore(["BTC", "ETH"]),
            sleep_fn=lambda _: None,
            timer_factory=_IdleTimer,
        )
        self._original_service = app.state.market_data_service
        app.state.market_data_service = self.service
        self.client = TestClient(app)

    def tearDown(self):
        app.state.market_data_service = self._original_service

    def test_health(self):
        resp = self.client.get("/v1/health")

        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["status"], "OK")

    def test_price_returns_consensus_snapshot(self):
        resp = self.client.get("/v1/tokens/btc/price")

        self.assertEqual(resp.status_code, 200)
        payload = resp.json()
        self.assertEqual(payload["symbol"], "BTC")
        self.assertEqual(payload["average_price"], 150.0)
        self.assertEqual(set(payload["exchanges"]), {"mexc", "gateio"})
        self.assertFalse(payload["degraded"])

    def test_price_with_one_source_down_keeps_slot(self):
        self.sources[1].error = FetchError("slow", source="gateio", endpoint="/spot/tickers", kind="TIMEOUT")

        payload = self.client.get("/v1/tokens/BTC/price").json()

        self.assertEqual(payload["average_price"], 100.0)
        self.assertIsNone(payload["exchanges"]["gateio"])
        self.assertTrue(payload["degraded"])

    def test_price_unknown_token_is_404(self):
        resp = self.client.get("/v1/tokens/DOGE/price")

        self.assertEqual(resp.status_code, 404)
        self.assertEqual(resp.json()["detail"], "TOKEN_NOT_FOUND")

    def test_price_source_defect_is_503(self):
        self.sources[0].error = KeyError("bug")

        resp = self.client.get("/v1/tokens/BTC/price")

        self.assertEqual(resp.status_code, 503)
        self.assertEqual(resp.json()["detail"], "SOURCE_UNAVAILABLE")

    def test_token_lifecycle(self):
        created = self.client.post("/v1/tokens", json={"symbol": " sol ", "name": "Solana"})
        self.assertEqual(created.status_code, 200)
        self.assertEqual(created.json()["symbol"], "SOL")

        duplicate = self.client.post("/v1/tokens", json={"symbol": "SOL"})
        self.assertEqual(duplicate.status_code, 409)

        symbols = [t["symbol"] for t in self.client.get("/v1/tokens").json()]
        self.assertEqual(symbols, ["BTC", "ETH", "SOL"])

        self.assertEqual(self.client.delete("/v1/tokens/sol").status_code, 200)
        self.assertEqual(self.client.delete("/v1/tokens/sol").status_code, 404)

    def test_blank_symbol_is_rejected(self):
        resp = self.client.post("/v1/tokens", json={"symbol": "  "})

        self.assertEqual(resp.status_code, 422)

    def test_history(self):
        resp = self.client.get("/v1/tokens/ETH/history", params={"period": "7d"})

        self.assertEqual(resp.status_code, 200)
        points = resp.json()
        self.assertEqual(len(points), 1)
        self.assertEqual(points[0]["price"], 120.0)

    def test_history_invalid_period_is_400(self):
        resp = self.client.get("/v1/tokens/ETH/history", params={"period": "1y"})

        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()["detail"], "INVALID_PERIOD")

    def test_history_fetch_failure_is_empty_list(self):
        self.history.error = FetchError("down", source="mexc", endpoint="/klines", kind="NETWORK_ERROR")

        resp = self.client.get("/v1/tokens/ETH/history")

        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json(), [])

    def test_compute_extremes_then_skip_while_fresh(self):
        first = self.client.post("/v1/tokens/ETH/extremes").json()
        second = self.client.post("/v1/tokens/ETH/extremes").json()

        self.assertTrue(first["computed"])
        self.assertEqual(first["all_time_high"], 250.0)
        self.assertEqual(first["all_time_low"], 80.0)
        self.assertFalse(second["computed"])
        self.assertEqual(self.client.post("/v1/tokens/NOPE/extremes").status_code, 404)

    def test_scraping_controls(self):
        status = self.client.get("/v1/scraping/status").json()
        self.assertTrue(status["enabled"])
        self.assertEqual(status["interval_ms"], 300_000)

        self.assertEqual(self.client.post("/v1/scraping/toggle", json={"enabled": False}).status_code, 200)
        self.assertFalse(self.client.get("/v1/scraping/status").json()["enabled"])

        self.assertEqual(self.client.post("/v1/scraping/schedule", json={"interval": 60_000}).status_code, 200)
        self.assertEqual(self.client.get("/v1/scraping/status").json()["interval_ms"], 60_000)

        bad = self.client.post("/v1/scraping/schedule", json={"interval": 0})
        self.assertEqual(bad.status_code, 400)
        self.assertEqual(bad.json()["detail"], "INVALID_INTERVAL")

    def test_metrics(self):
        self.client.get("/v1/tokens/BTC/price")
        self.client.get("/v1/tokens/BTC/price")

        payload = self.client.get("/v1/metrics/price").json()

        self.assertEqual(payload["price_cache"]["misses"], 1)
        self.assertEqual(payload["price_cache"]["hits"], 1)
        self.assertIn("scrape", payload)

    def test_ws_subscribe_receives_price_update(self):
        with self.client.websocket_connect("/v1/ws/prices") as ws:
            ws.send_json({"action": "subscribe", "symbol": "btc"})
            self.assertEqual(ws.receive_json(), {"type": "subscribed", "symbol": "BTC"})

            self.assertEqual(self.service.fanout.tick(), 1)
            update = ws.receive_json()

            self.assertEqual(update["type"], "price_update")
            self.assertEqual(update["symbol"], "BTC")
            self.assertEqual(update["snapshot"]["average_price"], 150.0)

            ws.send_json({"action": "unsubscribe", "symbol": "BTC"})
            self.assertEqual(ws.receive_json(), {"type": "unsubscribed", "symbol": "BTC"})

        self.assertEqual(self.service.fanout.subscriber_count(), 0)

    def test_ws_subscribe_to_unknown_token_is_rejected(self):
        with self.client.websocket_connect("/v1/ws/prices") as ws:
            ws.send_json({"action": "subscribe", "symbol": "notatoken"})
            reply = ws.receive_json()

            self.assertEqual(reply["type"], "error")
            self.assertIn("NOTATOKEN", reply["message"])
            self.assertEqual(self.service.fanout.subscriber_count(), 0)

    def test_fanout_skips_untracked_and_deleted_symbols(self):
        calls = []

        class _RecordingSource(_StubSource):
            def get_ticker(self, symbol):
                calls.append(symbol)
                return super().get_ticker(symbol)

        service = build_market_data_service(
            Settings(TRACKED_SYMBOLS=["BTC"]),
            sources=[_RecordingSource("mexc", 100.0)],
            history_client=self.history,
            sleep_fn=lambda _: None,
            timer_factory=_IdleTimer,
        )
        pushed = []
        service.fanout.subscribe("NOTATOKEN", "x", pushed.append)
        service.fanout.subscribe("BTC", "y", pushed.append)

        self.assertEqual(service.fanout.tick(), 1)
        self.assertEqual(calls, ["BTC"])

        service.delete_token("BTC")
        self.assertEqual(service.fanout.tick(), 0)
        self.assertEqual(calls, ["BTC"])
        self.assertEqual(service.price_cache.metrics()["cached_symbols"], 0)

    def test_ws_sender_failure_is_collected(self):
        async def failing_pump():
            raise ConnectionError("socket gone")

        async def run():
            sender = asyncio.create_task(failing_pump())
            await asyncio.sleep(0)
            return await _stop_sender(sender, "ws_test")

        error = asyncio.run(run())

        self.assertIsInstance(error, ConnectionError)

    def test_ws_sender_cancel_returns_none(self):
        async def idle_pump():
            await asyncio.Event().wait()

        async def run():
            sender = asyncio.create_task(idle_pump())
            await asyncio.sleep(0)
            return await _stop_sender(sender, "ws_test")

        self.assertIsNone(asyncio.run(run()))

    def test_ws_rejects_bad_messages(self):
        with self.client.websocket_connect("/v1/ws/prices") as ws:
            ws.send_text("not json")
            self.assertEqual(ws.receive_json()["message"], "Invalid JSON message")

            ws.send_json({"action": "subscribe", "symbol": ""})
            self.assertEqual(ws.receive_json()["message"], "Invalid token symbol")

            ws.send_json({"action": "explode", "symbol": "BTC"})
            self.assertEqual(ws.receive_json()["type"], "error")


if __name__ == "__main__":
    unittest.main()
