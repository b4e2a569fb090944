"""
Health check server for the sync runner.

Provides HTTP endpoints for health checks and monitoring.
"""

import asyncio

from aiohttp import web
from loguru import logger
from sqlalchemy.exc import SQLAlchemyError

from nftsync.services.nft_sync.engine import SyncEngine
from nftsync.services.nft_sync.types import SyncStatus
from nftsync.utils.exceptions import NFTSyncError

# Engine reference for health checks
_engine: SyncEngine | None = None


def set_engine(engine: SyncEngine | None) -> None:
    """
    Set the sync engine instance for health checks.

    Args:
        engine: SyncEngine to monitor
    """
    global _engine
    _engine = engine
    logger.info("Sync engine registered for health checks")


async def health_handler(request: web.Request) -> web.Response:
    """
    Health check endpoint.

    Returns:
        JSON response with sync status
    """
    if _engine is None:
        return web.json_response(
            {
                "status": "unhealthy",
                "error": "Sync engine not initialized",
            },
            status=503,
        )

    try:
        report = await _engine.get_status()
    except (NFTSyncError, SQLAlchemyError) as e:
        logger.error(f"Health check failed: {e}")
        return web.json_response(
            {
                "status": "unhealthy",
                "error": str(e),
            },
            status=503,
        )

    healthy = report.status != SyncStatus.ERROR
    return web.json_response(
        {"status": "healthy" if healthy else "unhealthy", **report.as_dict()},
        status=200 if healthy else 503,
    )


async def readiness_handler(request: web.Request) -> web.Response:
    """
    Readiness check endpoint.

    Ready once the engine holds the lease and has loaded its checkpoint.
    """
    state = _engine.state if _engine is not None else None
    if state is None:
        return web.json_response({"status": "not_ready", "ready": False}, status=503)

    return web.json_response(
        {
            "status": "ready",
            "ready": True,
            "phase": str(_engine.phase),
            "current_block": state.current_block,
            "lag": state.lag,
        }
    )


async def liveness_handler(request: web.Request) -> web.Response:
    """Liveness check endpoint."""
    return web.json_response({"status": "alive", "alive": True})


def create_health_app() -> web.Application:
    """Build the health check application."""
    app = web.Application()
    app.router.add_get("/health", health_handler)
    app.router.add_get("/readiness", readiness_handler)
    app.router.add_get("/liveness", liveness_handler)
    return app


async def start_health_server(
    host: str = "0.0.0.0",
    port: int = 8081,
) -> tuple[web.AppRunner, web.TCPSite]:
    """
    Start health check server.

    Args:
        host: Host to bind to
        port: Port to bind to (HEALTH_CHECK_PORT in settings)

    Returns:
        Tuple of (AppRunner, TCPSite) for cleanup
    """
    runner = web.AppRunner(create_health_app())
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()

    logger.info(
        f"[Health] Serving /health, /readiness, /liveness on http://{host}:{port}"
    )
    return runner, site


async def stop_health_server(runner: web.AppRunner, timeout: int = 5) -> None:
    """Stop health check server, giving up after timeout seconds."""
    try:
        await asyncio.wait_for(runner.cleanup(), timeout=timeout)
        logger.info("[Health] Server stopped")
    except TimeoutError:
        logger.warning(f"[Health] Server cleanup timed out after {timeout}s")
