"""HTTP endpoint exposing Prometheus metrics for long-running processes."""

from __future__ import annotations

import structlog
from aiohttp import web

from tenantdomains.observability.metrics import generate_metrics, get_content_type

logger = structlog.get_logger()


async def _handle_metrics(request: web.Request) -> web.Response:
    return web.Response(body=generate_metrics(), headers={"Content-Type": get_content_type()})


async def _handle_health(request: web.Request) -> web.Response:
    return web.json_response({"status": "ok"})


def create_metrics_app() -> web.Application:
    app = web.Application()
    app.router.add_get("/metrics", _handle_metrics)
    app.router.add_get("/health", _handle_health)
    return app


async def start_metrics_server(host: str = "127.0.0.1", port: int = 9100) -> web.AppRunner:
    """Serve /metrics and /health until the returned runner is cleaned up."""
    runner = web.AppRunner(create_metrics_app())
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()
    logger.info("Metrics server started", host=host, port=port)
    return runner
