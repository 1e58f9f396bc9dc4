"""Best-effort warm-up of the episode after the one being watched."""

from __future__ import annotations

import asyncio
from collections.abc import Coroutine
from typing import Any

import structlog

from debridarr.domain.entities.stream import (
    DebridNotReadyError,
    StreamRequest,
    TitleInfo,
)
from debridarr.domain.ports.debrid import DebridPort
from debridarr.domain.ports.metadata import MetadataPort
from debridarr.domain.ports.torrent_info import TorrentInfoPort

from .torrent_search import TorrentSearchUseCase, UserPreferences

log = structlog.get_logger(__name__)


class NextEpisodePrefetcher:
    """Runs the search pipeline for the next episode in detached tasks.

    With ``force`` set and no cached candidate found, the top candidate is
    handed to the debrid account so it starts downloading ahead of demand.
    Failures never reach the caller.
    """

    def __init__(
        self,
        *,
        metadata: MetadataPort,
        search: TorrentSearchUseCase,
        torrent_info: TorrentInfoPort,
    ) -> None:
        self._metadata = metadata
        self._search = search
        self._torrent_info = torrent_info
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def schedule(
        self,
        prefs: UserPreferences,
        title: TitleInfo,
        debrid: DebridPort,
        *,
        force: bool = False,
    ) -> asyncio.Task[None]:
        """Prefetch the episode following *title* in the background."""
        return self._spawn(
            self.prepare(prefs, title, debrid, force=force),
            name=f"prefetch:{title.stremio_id}",
        )

    def schedule_for_request(
        self,
        prefs: UserPreferences,
        request: StreamRequest,
        debrid: DebridPort,
        *,
        force: bool = False,
    ) -> asyncio.Task[None]:
        """Like ``schedule`` but looks up the current episode first."""

        async def _run() -> None:
            try:
                title = await self._metadata.get_episode(
                    request.title_id, request.season, request.episode
                )
            except Exception:
                log.warning(
                    "next_episode_metadata_failed",
                    stremio_id=request.stremio_id,
                    exc_info=True,
                )
                return
            await self.prepare(prefs, title, debrid, force=force)

        return self._spawn(_run(), name=f"prefetch:{request.stremio_id}")

    async def prepare(
        self,
        prefs: UserPreferences,
        title: TitleInfo,
        debrid: DebridPort,
        *,
        force: bool = False,
    ) -> None:
        try:
            next_ref = title.next_episode()
            if next_ref is None:
                return

            next_title = await self._metadata.get_episode(
                title.id, next_ref.season, next_ref.episode
            )
            candidates = await self._search.get_torrents(prefs, next_title, debrid)

            if not force or not candidates or any(c.is_cached for c in candidates):
                return

            best = candidates[0]
            if best.infos is None:
                return
            log.info(
                "next_episode_force_cache",
                stremio_id=title.stremio_id,
                next_episode=next_title.stremio_id,
                candidate_id=best.id,
            )
            if best.infos.magnet_url:
                await debrid.get_files_from_magnet(best.infos.magnet_url)
            else:
                torrent = await self._torrent_info.fetch_torrent_file(best.infos)
                await debrid.get_files_from_buffer(torrent)
        except DebridNotReadyError:
            # Ingestion started; the provider is still downloading.
            pass
        except Exception:
            log.warning(
                "next_episode_prefetch_failed",
                stremio_id=title.stremio_id,
                exc_info=True,
            )

    def _spawn(
        self, coro: Coroutine[Any, Any, None], *, name: str
    ) -> asyncio.Task[None]:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def aclose(self) -> None:
        """Cancel outstanding prefetches (shutdown)."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        log.debug("next_episode_prefetcher_closed", cancelled=len(tasks))
