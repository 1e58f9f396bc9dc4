"""FastAPI application factory (create_app)."""

from __future__ import annotations

import time
from collections.abc import Awaitable, Callable

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.responses import Response

from debridarr.infrastructure.config import AppConfig
from debridarr.infrastructure.graceful_shutdown import GracefulShutdown
from debridarr.interfaces.app_state import AppState
from debridarr.interfaces.composition import lifespan

log = structlog.get_logger(__name__)


def create_app(config: AppConfig) -> FastAPI:
    """Create FastAPI app: configuration only, no resource initialization.

    Resources (HTTP client, cache, clients, use cases) are created in lifespan().
    """
    app = FastAPI(
        title="Debridarr",
        description="Stremio addon resolving Jackett torrents through debrid services",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.state = AppState()
    app.state.config = config
    app.state.graceful_shutdown = GracefulShutdown()

    from debridarr.interfaces.api.stats.router import router as stats_router
    from debridarr.interfaces.api.stremio.router import router as stremio_router

    app.include_router(stats_router)
    app.include_router(stremio_router)

    @app.get("/healthz")
    async def healthz() -> dict[str, str]:
        """Liveness check: 200 as long as the process is running."""
        return {"status": "ok"}

    @app.get("/readyz")
    async def readyz() -> Response:
        """Readiness check: 200 after startup, 503 before and while stopping."""
        gs: GracefulShutdown = app.state.graceful_shutdown
        if gs.is_ready:
            return JSONResponse({"status": "ready"}, status_code=200)
        return JSONResponse({"status": "not_ready"}, status_code=503)

    @app.middleware("http")
    async def log_requests(
        request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        gs: GracefulShutdown = app.state.graceful_shutdown
        gs.request_started()
        start = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            gs.request_finished()
            # The route template keeps the encoded user config (and its
            # debrid key) out of the logs.
            route = request.scope.get("route")
            log.info(
                "http_request",
                method=request.method,
                route=getattr(route, "path", "<unmatched>"),
                status_code=status_code,
                duration_ms=round((time.perf_counter() - start) * 1000.0, 2),
                client_host=(request.client.host if request.client else None),
            )

    return app
