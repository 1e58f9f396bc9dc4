"""Download resolution: chosen candidate -> debrid file -> direct URL."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import Any, Protocol

import structlog

from debridarr.domain.entities.stream import (
    CachedFile,
    ContentType,
    NoDownloadError,
    UnsupportedTypeError,
)
from debridarr.domain.ports.cache import CachePort
from debridarr.domain.ports.debrid import DebridPort
from debridarr.domain.ports.torrent_info import TorrentInfoPort

from .next_episode import NextEpisodePrefetcher
from .stremio_stream import parse_stremio_id
from .torrent_search import UserPreferences

log = structlog.get_logger(__name__)

_DebridFactory = Callable[[UserPreferences], DebridPort]


class _SingleFlight(Protocol):
    def lock(self, key: str) -> Any: ...


class _DownloadMetrics(Protocol):
    def record_download(self, *, cache_hit: bool) -> None: ...


def select_file(
    files: Sequence[CachedFile],
    content_type: ContentType,
    season: int = 0,
    episode: int = 0,
) -> CachedFile | None:
    """Pick the file to play from a torrent listing.

    Movies take the largest file. Series take the largest file whose name
    contains ``SxxEyy``, then ``<season>yy``, then ``yy``, then the largest
    file overall. Matching ignores case.
    """
    ordered = sorted(files, key=lambda f: f.size, reverse=True)
    if not ordered:
        return None
    if content_type == "movie":
        return ordered[0]

    markers = (
        f"S{season:02d}E{episode:02d}",
        f"{season}{episode:02d}",
        f"{episode:02d}",
    )
    for marker in markers:
        for f in ordered:
            if marker in f.name.upper():
                return f
    return ordered[0]


class DownloadUseCase:
    """Resolve a stream locator to a playable URL, cached per account.

    The lock key and the cache key are the same composite key, so
    concurrent requests for one file hit the debrid API once and later
    ones are served from the cache.
    """

    def __init__(
        self,
        *,
        torrent_info: TorrentInfoPort,
        cache: CachePort,
        single_flight: _SingleFlight,
        prefetcher: NextEpisodePrefetcher,
        debrid_factory: _DebridFactory,
        ttl_seconds: int = 3600,
        metrics: _DownloadMetrics | None = None,
    ) -> None:
        self._torrent_info = torrent_info
        self._cache = cache
        self._single_flight = single_flight
        self._prefetcher = prefetcher
        self._debrid_factory = debrid_factory
        self._ttl = ttl_seconds
        self._metrics = metrics

    async def execute(
        self,
        prefs: UserPreferences,
        content_type: str,
        stremio_id: str,
        torrent_id: str,
    ) -> str:
        """Return the direct download URL.

        Raises:
            UnsupportedTypeError: *content_type* is neither movie nor series.
            NoDownloadError: Unknown torrent id, empty listing or no URL.
            DebridNotReadyError: The provider is still downloading.
        """
        if content_type not in ("movie", "series"):
            raise UnsupportedTypeError(f"Unsupported type {content_type}")

        request = parse_stremio_id(stremio_id)
        debrid = self._debrid_factory(prefs)
        info = await self._torrent_info.get_by_id(torrent_id)
        key = f"download:{await debrid.get_user_hash()}:{stremio_id}:{torrent_id}"

        async with self._single_flight.lock(key):
            if content_type == "series" and prefs.force_cache_next_episode:
                self._prefetcher.schedule_for_request(prefs, request, debrid, force=True)

            cached = await self._cache.get(key)
            if cached:
                log.debug("download_cache_hit", stremio_id=stremio_id, torrent_id=torrent_id)
                self._record(cache_hit=True)
                return cached

            log.info("download_get_files", stremio_id=stremio_id, torrent_id=torrent_id)
            if info.magnet_url:
                files = await debrid.get_files_from_magnet(info.magnet_url)
            else:
                torrent = await self._torrent_info.fetch_torrent_file(info)
                files = await debrid.get_files_from_buffer(torrent)
            log.info("download_files_found", stremio_id=stremio_id, count=len(files))

            chosen = select_file(files, content_type, request.season, request.episode)
            url = await debrid.get_download(chosen) if chosen is not None else None
            if not url:
                raise NoDownloadError(
                    f"No download for type {content_type} and id {torrent_id}"
                )

            await self._cache.set(key, url, ttl=self._ttl)
            self._record(cache_hit=False)
            log.info(
                "download_resolved",
                stremio_id=stremio_id,
                torrent_id=torrent_id,
                file=chosen.name if chosen else None,
            )
            return url

    def _record(self, *, cache_hit: bool) -> None:
        if self._metrics is not None:
            self._metrics.record_download(cache_hit=cache_hit)
