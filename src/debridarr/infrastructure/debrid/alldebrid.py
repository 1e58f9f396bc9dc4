"""AllDebrid provider (API v4).

Every response is wrapped as ``{"status": "success", "data": {...}}`` or
``{"status": "error", "error": {"code": ..., "message": ...}}``.
Magnet ``statusCode`` 4 means ready; 0-3 are queued/downloading/uploading.
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from debridarr.domain.entities.stream import (
    CachedFile,
    DebridError,
    DebridNotReadyError,
    DownloadProgress,
)

from .common import json_or_error, user_hash_for

log = structlog.get_logger(__name__)

_API_BASE = "https://api.alldebrid.com/v4"
_AGENT = "debridarr"

_STATUS_READY = 4
_STATUS_IN_PROGRESS = frozenset({0, 1, 2, 3})


class AllDebrid:
    """Implements ``DebridPort`` for an AllDebrid account."""

    def __init__(
        self,
        *,
        api_key: str,
        http_client: httpx.AsyncClient,
        base_url: str = _API_BASE,
    ) -> None:
        self._api_key = api_key
        self._http = http_client
        self._base_url = base_url.rstrip("/")

    @property
    def short_name(self) -> str:
        return "AD"

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        params = {"agent": _AGENT, "apikey": self._api_key, **kwargs.pop("params", {})}
        try:
            resp = await self._http.request(
                method, f"{self._base_url}{path}", params=params, **kwargs
            )
        except httpx.HTTPError as e:
            raise DebridError(f"AllDebrid: {method} {path} failed: {e}") from e

        body = json_or_error(resp, "AllDebrid")
        if body.get("status") != "success":
            error = body.get("error") or {}
            raise DebridError(
                f"AllDebrid: {path} error {error.get('code', resp.status_code)}: "
                f"{error.get('message', '')}"
            )
        return body.get("data") or {}

    async def _magnets(self) -> list[dict[str, Any]]:
        data = await self._request("GET", "/magnet/status")
        magnets = data.get("magnets") or []
        # A single magnet comes back as an object rather than a list.
        return [magnets] if isinstance(magnets, dict) else list(magnets)

    async def _files_for(self, magnet_id: int | str) -> list[CachedFile]:
        data = await self._request("GET", "/magnet/status", params={"id": magnet_id})
        magnet = data.get("magnets") or {}
        if isinstance(magnet, list):
            magnet = magnet[0] if magnet else {}

        status_code = magnet.get("statusCode")
        if status_code in _STATUS_IN_PROGRESS:
            raise DebridNotReadyError(
                f"AllDebrid: magnet {magnet_id} is {magnet.get('status', 'pending')}"
            )
        if status_code != _STATUS_READY:
            raise DebridError(
                f"AllDebrid: magnet {magnet_id} failed ({magnet.get('status', '?')})"
            )

        return [
            CachedFile(
                name=str(link.get("filename", "")),
                size=int(link.get("size", 0)),
                link=str(link.get("link", "")),
            )
            for link in magnet.get("links") or []
        ]

    # ------------------------------------------------------------------
    # DebridPort
    # ------------------------------------------------------------------

    async def get_cached_hashes(self, info_hashes: list[str]) -> set[str]:
        wanted = {h.lower() for h in info_hashes}
        if not wanted:
            return set()
        return {
            str(m["hash"]).lower()
            for m in await self._magnets()
            if m.get("statusCode") == _STATUS_READY
            and str(m.get("hash", "")).lower() in wanted
        }

    async def get_progress(
        self, info_hashes: list[str]
    ) -> dict[str, DownloadProgress]:
        wanted = {h.lower() for h in info_hashes}
        progress: dict[str, DownloadProgress] = {}
        for m in await self._magnets():
            info_hash = str(m.get("hash", "")).lower()
            if info_hash not in wanted or m.get("statusCode") not in _STATUS_IN_PROGRESS:
                continue
            size = int(m.get("size") or 0)
            downloaded = int(m.get("downloaded") or 0)
            progress[info_hash] = DownloadProgress(
                percent=round(downloaded * 100 / size, 1) if size else 0.0,
                speed=int(m.get("downloadSpeed") or 0),
            )
        return progress

    async def get_files_from_magnet(self, magnet_url: str) -> list[CachedFile]:
        data = await self._request(
            "GET", "/magnet/upload", params={"magnets[]": magnet_url}
        )
        uploaded = (data.get("magnets") or [{}])[0]
        if "error" in uploaded:
            raise DebridError(f"AllDebrid: upload rejected: {uploaded['error']}")
        log.debug("alldebrid_magnet_added", magnet_id=uploaded.get("id"))
        return await self._files_for(uploaded["id"])

    async def get_files_from_buffer(self, torrent: bytes) -> list[CachedFile]:
        data = await self._request(
            "POST",
            "/magnet/upload/file",
            files={"files[0]": ("upload.torrent", torrent, "application/x-bittorrent")},
        )
        uploaded = (data.get("files") or [{}])[0]
        if "error" in uploaded:
            raise DebridError(f"AllDebrid: upload rejected: {uploaded['error']}")
        log.debug("alldebrid_torrent_added", magnet_id=uploaded.get("id"))
        return await self._files_for(uploaded["id"])

    async def get_download(self, file: CachedFile) -> str | None:
        if not file.link:
            return None
        data = await self._request("GET", "/link/unlock", params={"link": file.link})
        return data.get("link") or None

    async def get_user_hash(self) -> str:
        return user_hash_for(self._api_key)
