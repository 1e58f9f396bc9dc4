"""Runtime metrics endpoint."""

from __future__ import annotations

from typing import Any, cast

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from debridarr.interfaces.app_state import AppState

router = APIRouter(prefix="/stats", tags=["stats"])


@router.get("/metrics")
async def metrics(request: Request) -> JSONResponse:
    """Return in-memory runtime metrics.

    Includes per-indexer search stats, slow indexers, download cache hits,
    pending prefetches and graceful-shutdown status.
    """
    state = cast(AppState, request.app.state)

    data: dict[str, Any] = {}

    m = getattr(state, "metrics", None)
    if m is not None:
        data.update(m.snapshot())

    prefetcher = getattr(state, "prefetcher", None)
    if prefetcher is not None:
        data["prefetch_pending"] = prefetcher.pending

    gs = getattr(state, "graceful_shutdown", None)
    if gs is not None:
        data["shutdown"] = {
            "is_ready": gs.is_ready,
            "active_requests": gs.active_requests,
        }

    return JSONResponse(content=data)
