"""Stremio addon API endpoints (manifest, stream, download)."""

from __future__ import annotations

from typing import Any, cast

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, RedirectResponse, Response

from debridarr.domain.entities.stream import (
    DebridError,
    DebridNotReadyError,
    InvalidUserConfigError,
    MetadataNotFoundError,
    NoDownloadError,
    NoResultsError,
    StreamDescriptor,
    UnsupportedTypeError,
)
from debridarr.infrastructure.config import UserConfig, decode_user_config
from debridarr.interfaces.app_state import AppState

log = structlog.get_logger(__name__)

router = APIRouter(tags=["stremio"])

_ADDON_ID = "community.debridarr"
_ADDON_VERSION = "0.1.0"

_CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "*",
}


def _build_manifest(*, configured: bool) -> dict[str, Any]:
    """Build the Stremio addon manifest."""
    return {
        "id": _ADDON_ID,
        "version": _ADDON_VERSION,
        "name": "Debridarr",
        "description": "Torrent streams from Jackett indexers, played through debrid",
        "types": ["movie", "series"],
        "catalogs": [],
        "resources": ["stream"],
        "idPrefixes": ["tt"],
        "behaviorHints": {
            "configurable": True,
            "configurationRequired": not configured,
        },
    }


def _format_stream(stream: StreamDescriptor) -> dict[str, Any]:
    out: dict[str, Any] = {"name": stream.name, "title": stream.title, "url": stream.url}
    if stream.behavior_hints:
        out["behaviorHints"] = stream.behavior_hints
    return out


def _decode(state: AppState, config: str) -> UserConfig:
    return decode_user_config(config, state.config.user_defaults)


def _error(status_code: int, error: str, detail: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": error, "detail": detail},
        headers=_CORS_HEADERS,
    )


@router.get("/manifest.json")
async def manifest() -> JSONResponse:
    """Serve the unconfigured addon manifest."""
    return JSONResponse(content=_build_manifest(configured=False), headers=_CORS_HEADERS)


@router.get("/{config}/manifest.json")
async def configured_manifest(request: Request, config: str) -> JSONResponse:
    """Serve the manifest for an encoded user configuration."""
    state = cast(AppState, request.app.state)
    try:
        _decode(state, config)
    except InvalidUserConfigError as e:
        return _error(400, "invalid_config", str(e))
    return JSONResponse(content=_build_manifest(configured=True), headers=_CORS_HEADERS)


@router.get("/{config}/stream/{content_type}/{stream_id}.json")
async def stremio_stream(
    request: Request,
    config: str,
    content_type: str,
    stream_id: str,
) -> JSONResponse:
    """Resolve ranked torrent streams for a movie or episode."""
    state = cast(AppState, request.app.state)
    try:
        user_config = _decode(state, config)
    except InvalidUserConfigError as e:
        return _error(400, "invalid_config", str(e))

    log.info("stremio_stream_request", content_type=content_type, stremio_id=stream_id)

    streams: list[StreamDescriptor] = []
    try:
        streams = await state.stremio_stream_uc.execute(
            user_config,
            content_type,  # type: ignore[arg-type]
            stream_id,
            public_url=state.config.public_url,
            encoded_config=config,
        )
    except NoResultsError as e:
        log.warning("stremio_no_results", stremio_id=stream_id, reason=str(e))
    except (UnsupportedTypeError, MetadataNotFoundError) as e:
        log.warning("stremio_unknown_title", stremio_id=stream_id, reason=str(e))
    except DebridError:
        log.warning("stremio_debrid_error", stremio_id=stream_id, exc_info=True)
    except Exception:
        log.error("stremio_stream_failed", stremio_id=stream_id, exc_info=True)

    return JSONResponse(
        content={"streams": [_format_stream(s) for s in streams]},
        headers=_CORS_HEADERS,
    )


@router.get("/{config}/download/{content_type}/{stream_id}/{torrent_id}")
async def stremio_download(
    request: Request,
    config: str,
    content_type: str,
    stream_id: str,
    torrent_id: str,
) -> Response:
    """Redirect to the debrid download URL of the chosen torrent file."""
    state = cast(AppState, request.app.state)
    try:
        user_config = _decode(state, config)
    except InvalidUserConfigError as e:
        return _error(400, "invalid_config", str(e))

    log.info(
        "stremio_download_request",
        content_type=content_type,
        stremio_id=stream_id,
        torrent_id=torrent_id,
    )

    try:
        url = await state.download_uc.execute(
            user_config, content_type, stream_id, torrent_id
        )
    except UnsupportedTypeError as e:
        return _error(400, "unsupported_type", str(e))
    except NoDownloadError as e:
        log.warning("stremio_no_download", stremio_id=stream_id, reason=str(e))
        return _error(404, "no_download", str(e))
    except DebridNotReadyError as e:
        log.info("stremio_download_not_ready", stremio_id=stream_id)
        return _error(503, "not_ready", str(e))
    except DebridError as e:
        log.warning("stremio_debrid_error", stremio_id=stream_id, exc_info=True)
        return _error(502, "debrid_error", str(e))

    return RedirectResponse(url=url, status_code=302, headers=_CORS_HEADERS)
