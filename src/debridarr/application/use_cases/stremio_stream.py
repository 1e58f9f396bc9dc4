"""Stremio stream resolution use case.

Stremio id -> metadata -> torrent search -> StreamDescriptor list.
"""

from __future__ import annotations

from collections.abc import Callable

import structlog

from debridarr.domain.entities.stream import (
    Candidate,
    ContentType,
    StreamDescriptor,
    StreamRequest,
    TitleInfo,
    UnsupportedTypeError,
)
from debridarr.domain.ports.debrid import DebridPort
from debridarr.domain.ports.metadata import MetadataPort

from .next_episode import NextEpisodePrefetcher
from .torrent_search import TorrentSearchUseCase, UserPreferences

log = structlog.get_logger(__name__)

_DebridFactory = Callable[[UserPreferences], DebridPort]
_SizeFormatter = Callable[[int], str]


def _to_int(raw: str | None) -> int:
    try:
        return int(raw) if raw else 0
    except ValueError:
        return 0


def parse_stremio_id(raw: str) -> StreamRequest:
    """Split ``tt123`` / ``tt123:2:5`` into id, season and episode.

    Missing or non-numeric parts become 0.
    """
    parts = raw.split(":")
    return StreamRequest(
        title_id=parts[0],
        season=_to_int(parts[1] if len(parts) > 1 else None),
        episode=_to_int(parts[2] if len(parts) > 2 else None),
    )


def format_stream_title(candidate: Candidate, format_size: _SizeFormatter) -> str:
    title = (
        f"{candidate.name}\n"
        f"{format_size(candidate.size)} - {candidate.seeders} seeders"
    )
    if candidate.progress is not None and not candidate.is_cached:
        title += (
            f" - {candidate.progress.percent:g}%"
            f" - {format_size(candidate.progress.speed)}/s"
        )
    return title


class StremioStreamUseCase:
    """Resolve a Stremio stream request into ranked torrent streams.

    Flow:
        1. Parse the Stremio id and fetch metadata.
        2. Run the torrent search pipeline against the user's debrid account.
        3. Schedule a next-episode prefetch for series (never awaited).
        4. Format candidates as stream descriptors pointing at the
           download endpoint.
    """

    def __init__(
        self,
        *,
        metadata: MetadataPort,
        search: TorrentSearchUseCase,
        prefetcher: NextEpisodePrefetcher,
        debrid_factory: _DebridFactory,
        format_size: _SizeFormatter,
        addon_name: str = "debridarr",
    ) -> None:
        self._metadata = metadata
        self._search = search
        self._prefetcher = prefetcher
        self._debrid_factory = debrid_factory
        self._format_size = format_size
        self._addon_name = addon_name

    async def get_title_info(
        self, content_type: str, request: StreamRequest
    ) -> TitleInfo:
        if content_type == "movie":
            return await self._metadata.get_movie(request.title_id)
        if content_type == "series":
            return await self._metadata.get_episode(
                request.title_id, request.season, request.episode
            )
        raise UnsupportedTypeError(f"Unsupported type {content_type}")

    async def execute(
        self,
        prefs: UserPreferences,
        content_type: ContentType,
        stremio_id: str,
        *,
        public_url: str,
        encoded_config: str,
    ) -> list[StreamDescriptor]:
        request = parse_stremio_id(stremio_id)
        debrid = self._debrid_factory(prefs)

        title = await self.get_title_info(content_type, request)
        candidates = await self._search.get_torrents(prefs, title, debrid)

        if content_type == "series":
            self._prefetcher.schedule(prefs, title, debrid, force=False)

        base = f"{public_url.rstrip('/')}/{encoded_config}/download/{content_type}/{stremio_id}"
        streams = [
            StreamDescriptor(
                name=f"[{debrid.short_name}{'+' if c.is_cached else ''}] {self._addon_name}",
                title=format_stream_title(c, self._format_size),
                url=f"{base}/{c.id}",
            )
            for c in candidates
        ]
        log.info(
            "stremio_streams_ready",
            stremio_id=stremio_id,
            count=len(streams),
            cached=sum(1 for c in candidates if c.is_cached),
        )
        return streams
