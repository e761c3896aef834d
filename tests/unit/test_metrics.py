"""
Unit tests for Prometheus metrics
"""

import aiohttp
import aiohttp.test_utils
import pytest
from aiohttp import web
from prometheus_client import CollectorRegistry, generate_latest

from conftest import CONVERTER, USDT, XVS, make_balance_result
from converter_keeper.events import (
    AccrueInterestEvent,
    EventChannel,
    ExecuteTradeContext,
    ExecuteTradeEvent,
    KeeperEvent,
    PotentialConversionsContext,
    PotentialConversionsEvent,
)
from converter_keeper.metrics import KeeperMetrics


@pytest.fixture
def test_registry():
    """Create a test-specific registry"""
    return CollectorRegistry()


@pytest.fixture
def metrics(test_registry):
    """Create KeeperMetrics instance with test registry"""
    return KeeperMetrics(test_registry)


def sample_value(registry, name, labels=None):
    return registry.get_sample_value(name, labels or {})


class TestKeeperMetrics:
    """Test KeeperMetrics functionality"""

    def test_initialization(self, metrics):
        assert metrics.registry is not None
        assert hasattr(metrics, "events_total")
        assert hasattr(metrics, "potential_conversions")
        assert hasattr(metrics, "min_income")

    def test_event_outcomes(self, metrics, test_registry):
        metrics(AccrueInterestEvent(error=()))
        metrics(AccrueInterestEvent(error=("vUSDT: paused",)))
        metrics(AccrueInterestEvent(error=()))

        labels = {"kind": "AccrueInterest", "outcome": "ok"}
        assert sample_value(test_registry, "converter_keeper_events_total", labels) == 2.0
        labels["outcome"] = "error"
        assert sample_value(test_registry, "converter_keeper_events_total", labels) == 1.0
        assert sample_value(test_registry, "converter_keeper_last_event_timestamp") > 0

    def test_potential_conversions_gauge(self, metrics, test_registry):
        conversions = (make_balance_result(), make_balance_result(asset_out=XVS))
        metrics(PotentialConversionsEvent(
            context=PotentialConversionsContext(conversions=conversions)
        ))
        assert sample_value(test_registry, "converter_keeper_potential_conversions") == 2.0

        # a failed discovery keeps the last known count
        metrics(PotentialConversionsEvent(error="subgraph down"))
        assert sample_value(test_registry, "converter_keeper_potential_conversions") == 2.0

    def test_min_income_gauge(self, metrics, test_registry):
        metrics(ExecuteTradeEvent(
            context=ExecuteTradeContext(
                converter=CONVERTER,
                token_to_receive_from_converter=USDT,
                token_to_send_to_converter=XVS,
                amount=1000,
                min_income=-25,
            )
        ))
        labels = {"converter": CONVERTER, "token": USDT}
        assert sample_value(test_registry, "converter_keeper_min_income", labels) == -25.0

    def test_unknown_event_is_rejected(self, metrics):
        with pytest.raises(TypeError):
            metrics.record_event(KeeperEvent())

    def test_subscribed_to_channel(self, metrics, test_registry):
        channel = EventChannel()
        channel.subscribe(metrics)
        channel.publish(AccrueInterestEvent(error=()))

        labels = {"kind": "AccrueInterest", "outcome": "ok"}
        assert sample_value(test_registry, "converter_keeper_events_total", labels) == 1.0
        assert "converter_keeper_events_total" in generate_latest(test_registry).decode()

    @pytest.mark.asyncio
    async def test_metrics_server(self, metrics):
        """Test metrics HTTP server"""
        success = await metrics.start_server(port=0)

        if success:
            assert metrics._app is not None
            assert metrics._runner is not None
            await metrics.stop_server()


@pytest.mark.asyncio
async def test_metrics_server_endpoints():
    """Test metrics server HTTP endpoints"""
    test_registry = CollectorRegistry()
    metrics = KeeperMetrics(test_registry)
    metrics(AccrueInterestEvent(error=()))

    app = web.Application()
    app.router.add_get("/metrics", metrics._metrics_handler)
    app.router.add_get("/health", metrics._health_handler)

    async with aiohttp.test_utils.TestClient(aiohttp.test_utils.TestServer(app)) as client:
        resp = await client.get("/metrics")
        assert resp.status == 200
        text = await resp.text()
        assert "converter_keeper_events_total" in text

        resp = await client.get("/health")
        assert resp.status == 200
        json_data = await resp.json()
        assert json_data["status"] == "healthy"
