import unittest

from pricehub.schemas.quote import ConsensusSnapshot
from pricehub.services.broadcast import BroadcastFanout


class StubCache:
    def __init__(self, failing: set[str] | None = None) -> None:
        self.failing = failing or set()
        self.reads: list[str] = []

    def get(self, symbol: str) -> ConsensusSnapshot:
        self.reads.append(symbol)
        if symbol in self.failing:
            raise RuntimeError(f"{symbol} unavailable")
        return ConsensusSnapshot(
            symbol=symbol,
            timestamp=1,
            exchanges={},
            average_price=10.0,
            change_24h=0.0,
        )


class TestBroadcastFanout(unittest.TestCase):
    def test_idle_tick_reads_nothing(self):
        cache = StubCache()
        fanout = BroadcastFanout(cache)

        self.assertEqual(fanout.tick(), 0)
        self.assertEqual(cache.reads, [])
        self.assertEqual(fanout.metrics()["idle_ticks"], 1)

    def test_single_subscriber_gets_one_update_per_tick(self):
        cache = StubCache()
        fanout = BroadcastFanout(cache)
        received = []
        fanout.subscribe("btc", "client-1", received.append)

        delivered = fanout.tick()

        self.assertEqual(delivered, 1)
        self.assertEqual(cache.reads, ["BTC"])
        self.assertEqual(len(received), 1)
        self.assertEqual(received[0].symbol, "BTC")
        self.assertEqual(received[0].snapshot.average_price, 10.0)

    def test_one_cache_read_per_symbol_regardless_of_subscribers(self):
        cache = StubCache()
        fanout = BroadcastFanout(cache)
        received = []
        for i in range(3):
            fanout.subscribe("ETH", f"client-{i}", received.append)

        self.assertEqual(fanout.tick(), 3)
        self.assertEqual(cache.reads, ["ETH"])

    def test_failing_symbol_does_not_block_others(self):
        cache = StubCache(failing={"BTC"})
        fanout = BroadcastFanout(cache)
        btc, eth = [], []
        fanout.subscribe("BTC", "a", btc.append)
        fanout.subscribe("ETH", "b", eth.append)

        self.assertEqual(fanout.tick(), 1)
        self.assertEqual(btc, [])
        self.assertEqual(len(eth), 1)
        self.assertEqual(fanout.metrics()["symbol_errors"], 1)

    def test_failing_subscriber_does_not_block_peers(self):
        fanout = BroadcastFanout(StubCache())
        received = []

        def broken(update):
            raise ConnectionError("socket closed")

        fanout.subscribe("BTC", "broken", broken)
        fanout.subscribe("BTC", "ok", received.append)

        self.assertEqual(fanout.tick(), 1)
        self.assertEqual(len(received), 1)
        self.assertEqual(fanout.metrics()["push_errors"], 1)

    def test_unsubscribe_drops_empty_groups(self):
        cache = StubCache()
        fanout = BroadcastFanout(cache)
        fanout.subscribe("BTC", "a", lambda update: None)

        self.assertTrue(fanout.unsubscribe("btc", "a"))
        self.assertFalse(fanout.unsubscribe("btc", "a"))
        self.assertEqual(fanout.tick(), 0)
        self.assertEqual(cache.reads, [])

    def test_unsubscribe_all_removes_subscriber_everywhere(self):
        fanout = BroadcastFanout(StubCache())
        fanout.subscribe("BTC", "a", lambda update: None)
        fanout.subscribe("ETH", "a", lambda update: None)
        fanout.subscribe("ETH", "b", lambda update: None)

        self.assertEqual(fanout.unsubscribe_all("a"), 2)
        self.assertEqual(fanout.subscriber_count(), 1)
        self.assertEqual(fanout.subscriber_count("BTC"), 0)
        self.assertEqual(fanout.metrics()["subscribed_symbols"], 1)

    def test_untracked_symbols_are_never_read(self):
        cache = StubCache()
        tracked = {"BTC"}
        fanout = BroadcastFanout(cache, is_tracked=lambda symbol: symbol in tracked)
        btc, junk = [], []
        fanout.subscribe("BTC", "a", btc.append)
        fanout.subscribe("NOTATOKEN", "b", junk.append)

        self.assertEqual(fanout.tick(), 1)
        self.assertEqual(cache.reads, ["BTC"])
        self.assertEqual(junk, [])
        self.assertEqual(fanout.metrics()["untracked_skips"], 1)

        tracked.clear()
        self.assertEqual(fanout.tick(), 0)
        self.assertEqual(cache.reads, ["BTC"])

    def test_subscribe_rejects_blank_symbol(self):
        with self.assertRaises(ValueError):
            BroadcastFanout(StubCache()).subscribe("  ", "a", lambda update: None)

    def test_start_stop(self):
        fanout = BroadcastFanout(StubCache(), interval_sec=60)

        fanout.start()
        fanout.stop()

        self.assertFalse(fanout._thread.is_alive())


if __name__ == "__main__":
    unittest.main()
