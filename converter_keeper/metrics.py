"""
Prometheus metrics for the converter keeper.

KeeperMetrics subscribes to the event channel and exposes event outcomes,
discovered conversions and negotiated income on an aiohttp server.
"""

import logging
import threading
import time
from typing import Optional

from aiohttp import web
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    generate_latest,
)

from .events import (
    EventKind,
    ExecuteTradeEvent,
    KeeperEvent,
    PotentialConversionsEvent,
)

logger = logging.getLogger(__name__)


class KeeperMetrics:
    """
    Event-driven keeper metrics.

    Instances are callable so they can be passed straight to
    ``EventChannel.subscribe``.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or REGISTRY
        self._initialize_metrics()

        self._app = None
        self._runner = None
        self._site = None

        self._lock = threading.RLock()

    def _initialize_metrics(self):
        self.events_total = Counter(
            "converter_keeper_events_total",
            "Keeper events by kind and outcome",
            ["kind", "outcome"],
            registry=self.registry,
        )

        self.potential_conversions = Gauge(
            "converter_keeper_potential_conversions",
            "Conversions with a positive converter balance in the last discovery",
            registry=self.registry,
        )

        self.min_income = Gauge(
            "converter_keeper_min_income",
            "Last negotiated min income per converter (smallest token unit)",
            ["converter", "token"],
            registry=self.registry,
        )

        self.last_event_timestamp = Gauge(
            "converter_keeper_last_event_timestamp",
            "Unix timestamp of the last keeper event",
            registry=self.registry,
        )

    def __call__(self, event: KeeperEvent):
        self.record_event(event)

    def record_event(self, event: KeeperEvent):
        kind = getattr(event, "kind", None)
        if not isinstance(kind, EventKind):
            raise TypeError(f"Unknown event: {event!r}")

        with self._lock:
            outcome = "error" if event.failed else "ok"
            self.events_total.labels(kind=event.kind.value, outcome=outcome).inc()
            self.last_event_timestamp.set(time.time())

            if isinstance(event, PotentialConversionsEvent) and not event.failed:
                self.potential_conversions.set(len(event.context.conversions))
            elif isinstance(event, ExecuteTradeEvent) and event.context is not None:
                self.min_income.labels(
                    converter=event.context.converter,
                    token=event.context.token_to_receive_from_converter,
                ).set(event.context.min_income)

    # === SERVER MANAGEMENT ===

    async def start_server(
        self, port: int = 8000, host: str = "127.0.0.1", path: str = "/metrics"
    ):
        """Start Prometheus metrics HTTP server"""
        try:
            self._app = web.Application()
            self._app.router.add_get(path, self._metrics_handler)
            self._app.router.add_get("/health", self._health_handler)

            self._runner = web.AppRunner(self._app)
            await self._runner.setup()

            self._site = web.TCPSite(self._runner, host, port)
            await self._site.start()

            logger.info(f"📊 Prometheus metrics server started on http://{host}:{port}{path}")
            return True

        except Exception as e:
            logger.error(f"Failed to start metrics server: {e}")
            return False

    async def stop_server(self):
        """Stop the metrics server"""
        try:
            if self._site:
                await self._site.stop()
            if self._runner:
                await self._runner.cleanup()
            logger.info("📊 Metrics server stopped")
        except Exception as e:
            logger.error(f"Error stopping metrics server: {e}")

    async def _metrics_handler(self, request):
        try:
            metrics_output = generate_latest(self.registry)
            # aiohttp rejects a charset inside content_type
            content_type = CONTENT_TYPE_LATEST.split(";")[0]
            return web.Response(text=metrics_output.decode("utf-8"), content_type=content_type)
        except Exception as e:
            logger.error(f"Error generating metrics: {e}")
            return web.Response(text="Error generating metrics", status=500)

    async def _health_handler(self, request):
        return web.Response(
            text='{"status": "healthy", "service": "converter_keeper_metrics"}',
            content_type="application/json",
        )
