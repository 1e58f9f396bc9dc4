"""Real-Debrid provider (REST API 1.0).

Torrents already on the account are reused instead of being added again.

Endpoints used:
    GET  /torrents                   account torrents (status, progress, speed)
    POST /torrents/addMagnet         ingest by magnet
    PUT  /torrents/addTorrent        ingest by raw .torrent bytes
    GET  /torrents/info/{id}         file list + links
    POST /torrents/selectFiles/{id}  start the transfer (all files)
    POST /unrestrict/link            direct download URL for a hoster link
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
from debridarr.infrastructure.torrent_info.client import (
    TorrentInfoError,
    info_hash_from_magnet,
    parse_torrent,
)

from .common import json_or_error, user_hash_for

log = structlog.get_logger(__name__)

_API_BASE = "https://api.real-debrid.com/rest/1.0"
_LIST_LIMIT = 1000

_STATUS_DOWNLOADED = "downloaded"
_STATUS_WAITING_SELECTION = "waiting_files_selection"
_STATUS_FAILED = frozenset({"magnet_error", "error", "virus", "dead"})


class RealDebrid:
    """Implements ``DebridPort`` for a Real-Debrid account."""

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
        return "RD"

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            resp = await self._http.request(
                method,
                f"{self._base_url}{path}",
                headers={"Authorization": f"Bearer {self._api_key}"},
                **kwargs,
            )
        except httpx.HTTPError as e:
            raise DebridError(f"RealDebrid: {method} {path} failed: {e}") from e

        if resp.status_code == 204:
            return None
        if resp.status_code >= 400:
            detail = ""
            try:
                body = resp.json()
                detail = f"{body.get('error', '')} ({body.get('error_code', '?')})"
            except ValueError:
                pass
            raise DebridError(
                f"RealDebrid: {method} {path} returned HTTP {resp.status_code} {detail}"
            )
        return json_or_error(resp, "RealDebrid")

    async def _list_torrents(self) -> list[dict[str, Any]]:
        data = await self._request("GET", "/torrents", params={"limit": _LIST_LIMIT})
        return data or []

    async def _existing_torrent_id(self, info_hash: str | None) -> str | None:
        """Id of a usable torrent with *info_hash* already on the account."""
        if not info_hash:
            return None
        for t in await self._list_torrents():
            if (
                str(t.get("hash", "")).lower() == info_hash
                and t.get("status") not in _STATUS_FAILED
            ):
                return str(t["id"])
        return None

    async def _files_for(self, torrent_id: str) -> list[CachedFile]:
        info = await self._request("GET", f"/torrents/info/{torrent_id}")
        status = info.get("status", "")

        if status == _STATUS_WAITING_SELECTION:
            await self._request(
                "POST", f"/torrents/selectFiles/{torrent_id}", data={"files": "all"}
            )
            info = await self._request("GET", f"/torrents/info/{torrent_id}")
            status = info.get("status", "")

        if status in _STATUS_FAILED:
            raise DebridError(f"RealDebrid: torrent {torrent_id} failed ({status})")
        if status != _STATUS_DOWNLOADED:
            raise DebridNotReadyError(
                f"RealDebrid: torrent {torrent_id} is {status} ({info.get('progress', 0)}%)"
            )

        # ``links`` lines up with the selected files, in listing order.
        links: list[str] = info.get("links") or []
        selected = [f for f in info.get("files") or [] if f.get("selected") == 1]
        return [
            CachedFile(
                name=str(f.get("path", "")).lstrip("/"),
                size=int(f.get("bytes", 0)),
                link=links[i] if i < len(links) else "",
            )
            for i, f in enumerate(selected)
        ]

    # ------------------------------------------------------------------
    # DebridPort
    # ------------------------------------------------------------------

    async def get_cached_hashes(self, info_hashes: list[str]) -> set[str]:
        wanted = {h.lower() for h in info_hashes}
        if not wanted:
            return set()
        return {
            t["hash"].lower()
            for t in await self._list_torrents()
            if t.get("status") == _STATUS_DOWNLOADED
            and str(t.get("hash", "")).lower() in wanted
        }

    async def get_progress(
        self, info_hashes: list[str]
    ) -> dict[str, DownloadProgress]:
        wanted = {h.lower() for h in info_hashes}
        progress: dict[str, DownloadProgress] = {}
        for t in await self._list_torrents():
            info_hash = str(t.get("hash", "")).lower()
            if info_hash not in wanted or t.get("status") == _STATUS_DOWNLOADED:
                continue
            progress[info_hash] = DownloadProgress(
                percent=float(t.get("progress", 0)),
                speed=int(t.get("speed") or 0),
            )
        return progress

    async def get_files_from_magnet(self, magnet_url: str) -> list[CachedFile]:
        try:
            info_hash: str | None = info_hash_from_magnet(magnet_url)
        except TorrentInfoError:
            info_hash = None
        torrent_id = await self._existing_torrent_id(info_hash)
        if torrent_id is None:
            added = await self._request(
                "POST", "/torrents/addMagnet", data={"magnet": magnet_url}
            )
            torrent_id = added["id"]
            log.debug("realdebrid_magnet_added", torrent_id=torrent_id)
        return await self._files_for(torrent_id)

    async def get_files_from_buffer(self, torrent: bytes) -> list[CachedFile]:
        try:
            info_hash: str | None = parse_torrent(torrent)[0]
        except TorrentInfoError:
            info_hash = None
        torrent_id = await self._existing_torrent_id(info_hash)
        if torrent_id is None:
            added = await self._request("PUT", "/torrents/addTorrent", content=torrent)
            torrent_id = added["id"]
            log.debug("realdebrid_torrent_added", torrent_id=torrent_id)
        return await self._files_for(torrent_id)

    async def get_download(self, file: CachedFile) -> str | None:
        if not file.link:
            return None
        data = await self._request("POST", "/unrestrict/link", data={"link": file.link})
        return (data or {}).get("download") or None

    async def get_user_hash(self) -> str:
        return user_hash_for(self._api_key)
