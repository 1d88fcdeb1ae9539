import unittest
from unittest.mock import Mock

from fastapi.testclient import TestClient

from pricehub.main import app


class AppLifecycleTest(unittest.TestCase):
    def test_background_services_start_on_startup_and_stop_on_shutdown(self):
        original = app.state.market_data_service
        service = Mock()
        app.state.market_data_service = service

        try:
            with TestClient(app):
                service.start.assert_called_once_with()
                service.stop.assert_not_called()

            service.stop.assert_called_once_with()
        finally:
            app.state.market_data_service = original

    def test_default_service_wires_every_component(self):
        service = app.state.market_data_service

        self.assertIsNotNone(service.scheduler)
        self.assertIsNotNone(service.extremum_worker)
        self.assertIs(service.extremes.token_store, service.token_store)
        self.assertIs(service.fanout.price_cache, service.price_cache)
        self.assertEqual(
            [s.name for s in service.price_cache.aggregator.sources],
            ["mexc", "gateio"],
        )


if __name__ == '__main__':
    unittest.main()
