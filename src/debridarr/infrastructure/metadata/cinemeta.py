"""Cinemeta metadata client: async httpx implementation with caching."""

from __future__ import annotations

import re
from typing import Any

import httpx
import structlog

from debridarr.domain.entities.stream import (
    ContentType,
    EpisodeRef,
    MetadataNotFoundError,
    TitleInfo,
)
from debridarr.domain.ports.cache import CachePort

log = structlog.get_logger(__name__)

_TTL_META = 86_400  # 24 hours
_YEAR_RE = re.compile(r"\d{4}")


def _parse_year(meta: dict[str, Any]) -> int | None:
    raw = str(meta.get("year") or meta.get("releaseInfo") or "")
    m = _YEAR_RE.search(raw)
    return int(m.group(0)) if m else None


def _parse_episodes(meta: dict[str, Any]) -> tuple[EpisodeRef, ...]:
    """Ordered regular episodes; season 0 (specials) is skipped."""
    refs: set[EpisodeRef] = set()
    for video in meta.get("videos") or []:
        season = video.get("season")
        episode = video.get("episode", video.get("number"))
        if not isinstance(season, int) or not isinstance(episode, int):
            continue
        if season == 0:
            continue
        refs.add(EpisodeRef(season=season, episode=episode))
    return tuple(sorted(refs, key=lambda r: (r.season, r.episode)))


class HttpxCinemetaClient:
    """Implements ``MetadataPort`` against the Cinemeta addon API."""

    def __init__(
        self,
        *,
        base_url: str,
        http_client: httpx.AsyncClient,
        cache: CachePort,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._http = http_client
        self._cache = cache

    async def _get_meta(self, content_type: ContentType, title_id: str) -> dict[str, Any]:
        cache_key = f"cinemeta:{content_type}:{title_id}"
        cached = await self._cache.get(cache_key)
        if cached is not None:
            return cached

        resp = await self._http.get(
            f"{self._base_url}/meta/{content_type}/{title_id}.json"
        )
        if resp.status_code == 404:
            raise MetadataNotFoundError(f"Unknown {content_type} id {title_id}")
        resp.raise_for_status()

        meta = (resp.json() or {}).get("meta") or {}
        if not meta.get("name"):
            raise MetadataNotFoundError(f"Unknown {content_type} id {title_id}")

        await self._cache.set(cache_key, meta, ttl=_TTL_META)
        log.debug("cinemeta_fetched", content_type=content_type, title_id=title_id)
        return meta

    async def get_movie(self, title_id: str) -> TitleInfo:
        meta = await self._get_meta("movie", title_id)
        return TitleInfo(
            id=title_id,
            type="movie",
            name=meta["name"],
            year=_parse_year(meta),
        )

    async def get_episode(self, title_id: str, season: int, episode: int) -> TitleInfo:
        meta = await self._get_meta("series", title_id)
        return TitleInfo(
            id=title_id,
            type="series",
            name=meta["name"],
            year=_parse_year(meta),
            season=season,
            episode=episode,
            episodes=_parse_episodes(meta),
        )
