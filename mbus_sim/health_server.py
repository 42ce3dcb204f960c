"""
Health Check HTTP Server
Provides simulator health status and session metrics for monitoring.
"""

import time
from typing import Any, Dict, Optional
from aiohttp import web

from mbus_sim.logger import get_logger
from mbus_sim.server import SessionStats

logger = get_logger(__name__)


class HealthServer:
    """HTTP server for health checks and metrics."""

    def __init__(self, stats: SessionStats, port: int = 8080, enable_metrics: bool = True):
        """
        Initialize health server.

        Args:
            stats: Session counters of the M-Bus server
            port: HTTP port to listen on
            enable_metrics: Enable Prometheus metrics endpoint
        """
        self.stats = stats
        self.port = port
        self.enable_metrics = enable_metrics
        self.app = web.Application()
        self.runner: Optional[web.AppRunner] = None

        self.status: Dict[str, Any] = {
            "healthy": True,
            "components": {}
        }

        self.app.router.add_get('/health', self._health_handler)
        self.app.router.add_get('/status', self._status_handler)

        if enable_metrics:
            self.app.router.add_get('/metrics', self._metrics_handler)

        logger.info("health_server_init", port=port)

    async def start(self) -> None:
        """Start HTTP server."""
        self.runner = web.AppRunner(self.app)
        await self.runner.setup()

        site = web.TCPSite(self.runner, '0.0.0.0', self.port)
        await site.start()

        logger.info("health_server_started", port=self.port)

    async def stop(self) -> None:
        """Stop HTTP server."""
        if self.runner:
            await self.runner.cleanup()

        logger.info("health_server_stopped")

    def update_component_status(self, component: str, healthy: bool, **kwargs) -> None:
        """
        Update health status of a component.

        Args:
            component: Component name (e.g., "mbus_server")
            healthy: Whether component is healthy
            **kwargs: Additional status information
        """
        self.status["components"][component] = {
            "healthy": healthy,
            "last_check": time.time(),
            **kwargs
        }

        self.status["healthy"] = all(
            c.get("healthy", False)
            for c in self.status["components"].values()
        )

    async def _health_handler(self, request: web.Request) -> web.Response:
        """Handle /health endpoint (simple liveness check)."""
        if self.status["healthy"]:
            return web.Response(text="OK", status=200)
        return web.Response(text="UNHEALTHY", status=503)

    async def _status_handler(self, request: web.Request) -> web.Response:
        """Handle /status endpoint (detailed status)."""
        response = {
            "status": "healthy" if self.status["healthy"] else "unhealthy",
            "uptime_seconds": int(time.time() - self.stats.started),
            "timestamp": time.time(),
            "components": self.status["components"],
            "sessions": self.stats.as_dict()
        }

        return web.json_response(response)

    async def _metrics_handler(self, request: web.Request) -> web.Response:
        """Handle /metrics endpoint (Prometheus format)."""
        stats = self.stats
        metrics = []

        metrics.append("# HELP mbus_sim_uptime_seconds Simulator uptime in seconds")
        metrics.append("# TYPE mbus_sim_uptime_seconds gauge")
        metrics.append(f"mbus_sim_uptime_seconds {int(time.time() - self.stats.started)}")

        metrics.append("# HELP mbus_sim_connections_active Open client connections")
        metrics.append("# TYPE mbus_sim_connections_active gauge")
        metrics.append(f"mbus_sim_connections_active {stats.connections_active}")

        metrics.append("# HELP mbus_sim_connections_total Accepted client connections")
        metrics.append("# TYPE mbus_sim_connections_total counter")
        metrics.append(f"mbus_sim_connections_total {stats.connections_total}")

        metrics.append("# HELP mbus_sim_requests_total Inbound frames by classification")
        metrics.append("# TYPE mbus_sim_requests_total counter")
        for kind, count in stats.requests.items():
            metrics.append(f'mbus_sim_requests_total{{kind="{kind}"}} {count}')

        metrics.append("# HELP mbus_sim_telegrams_sent_total Telegram transmissions started")
        metrics.append("# TYPE mbus_sim_telegrams_sent_total counter")
        metrics.append(f"mbus_sim_telegrams_sent_total {stats.telegrams_sent}")

        metrics.append("# HELP mbus_sim_transmissions_aborted_total Transmissions cut by fault injection")
        metrics.append("# TYPE mbus_sim_transmissions_aborted_total counter")
        metrics.append(f"mbus_sim_transmissions_aborted_total {stats.transmissions_aborted}")

        metrics.append("# HELP mbus_sim_healthy Overall simulator health")
        metrics.append("# TYPE mbus_sim_healthy gauge")
        metrics.append(f"mbus_sim_healthy {1 if self.status['healthy'] else 0}")

        return web.Response(text="\n".join(metrics) + "\n", content_type="text/plain")
