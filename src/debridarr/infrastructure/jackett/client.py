"""Jackett Torznab client: indexer catalog + movie/episode/season search."""

from __future__ import annotations

import asyncio
import hashlib
import re
import xml.etree.ElementTree as ET
from typing import Any

import httpx
import structlog
from guessit import guessit

from debridarr.domain.entities.stream import (
    Candidate,
    Indexer,
    Quality,
    StreamError,
    TitleInfo,
)
from debridarr.domain.ports.cache import CachePort

log = structlog.get_logger(__name__)

_TORZNAB_NS = "http://torznab.com/schemas/2015/feed"
_CAT_MOVIES = "2000"
_CAT_TV = "5000"
_INDEXERS_CACHE_KEY = "jackett:indexers"

_SCREEN_SIZE_TO_QUALITY: dict[str, Quality] = {
    "2160p": Quality.UHD_4K,
    "4320p": Quality.UHD_4K,
    "1080p": Quality.HD_1080P,
    "1080i": Quality.HD_1080P,
    "720p": Quality.HD_720P,
    "576p": Quality.SD_480P,
    "480p": Quality.SD_480P,
    "360p": Quality.SD_360P,
}

_QUALITY_RE = re.compile(r"(?i)\b(2160p|4k|uhd|1080[pi]|720p|480p|360p)\b")


class JackettError(StreamError):
    """Jackett returned an error document or an unparseable response."""


def detect_quality(name: str) -> Quality:
    """Derive the resolution from a release name.

    guessit handles most scene names; a plain regex catches the rest.
    """
    screen_size = guessit(name).get("screen_size")
    if isinstance(screen_size, str) and screen_size in _SCREEN_SIZE_TO_QUALITY:
        return _SCREEN_SIZE_TO_QUALITY[screen_size]
    m = _QUALITY_RE.search(name)
    if m is None:
        return Quality.UNKNOWN
    token = m.group(1).lower()
    if token in ("4k", "uhd", "2160p"):
        return Quality.UHD_4K
    return _SCREEN_SIZE_TO_QUALITY.get(token, Quality.UNKNOWN)


def candidate_id(indexer_id: str, guid: str) -> str:
    """Stable, URL-safe candidate id."""
    return hashlib.sha1(f"{indexer_id}:{guid}".encode()).hexdigest()[:24]


def _torznab_attrs(item: ET.Element) -> dict[str, str]:
    attrs: dict[str, str] = {}
    for attr in item.iter(f"{{{_TORZNAB_NS}}}attr"):
        name = attr.get("name")
        value = attr.get("value")
        if name and value is not None:
            attrs[name] = value
    return attrs


def _to_int(raw: str | None) -> int:
    if not raw:
        return 0
    try:
        return int(float(raw))
    except ValueError:
        return 0


def _raise_on_error_document(root: ET.Element) -> None:
    if root.tag == "error":
        raise JackettError(
            f"Jackett error {root.get('code', '?')}: {root.get('description', '')}"
        )


def parse_indexers(xml_text: str) -> list[Indexer]:
    """Parse a ``t=indexers`` response into catalog entries."""
    root = ET.fromstring(xml_text)
    _raise_on_error_document(root)
    indexers: list[Indexer] = []
    for node in root.iter("indexer"):
        if node.get("configured", "true") != "true":
            continue
        searching = node.find("caps/searching")

        def available(tag: str, _searching: ET.Element | None = searching) -> bool:
            if _searching is None:
                return False
            found = _searching.find(tag)
            return found is not None and found.get("available") == "yes"

        indexers.append(
            Indexer(
                id=node.get("id", ""),
                title=node.findtext("title", default=node.get("id", "")),
                movie_available=available("movie-search"),
                series_available=available("tv-search"),
            )
        )
    return indexers


def parse_items(xml_text: str, indexer_id: str) -> list[Candidate]:
    """Parse a Torznab RSS result page into candidates."""
    root = ET.fromstring(xml_text)
    _raise_on_error_document(root)
    candidates: list[Candidate] = []
    for item in root.iter("item"):
        name = (item.findtext("title") or "").strip()
        link = (item.findtext("link") or "").strip()
        guid = (item.findtext("guid") or link).strip()
        if not name or not (link or guid):
            continue
        attrs = _torznab_attrs(item)
        magnet = attrs.get("magneturl") or (link if link.startswith("magnet:") else None)
        candidates.append(
            Candidate(
                id=candidate_id(indexer_id, guid),
                indexer_id=indexer_id,
                name=name,
                link=link or guid,
                seeders=_to_int(attrs.get("seeders")),
                size=_to_int(item.findtext("size") or attrs.get("size")),
                quality=detect_quality(name),
                info_hash=(attrs.get("infohash") or "").lower() or None,
                magnet_url=magnet,
            )
        )
    return candidates


class HttpxJackettClient:
    """Async Jackett client using httpx + CachePort.

    Implements ``IndexerPort``. Search failures raise; the search use case
    isolates them per indexer.
    """

    def __init__(
        self,
        *,
        base_url: str,
        api_key: str,
        http_client: httpx.AsyncClient,
        cache: CachePort,
        timeout_seconds: float = 20.0,
        indexers_ttl_seconds: int = 3600,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._http = http_client
        self._cache = cache
        self._timeout = timeout_seconds
        self._indexers_ttl = indexers_ttl_seconds

    def _url(self, indexer_id: str) -> str:
        return f"{self._base_url}/api/v2.0/indexers/{indexer_id}/results/torznab/api"

    async def _get(self, indexer_id: str, **params: Any) -> str:
        resp = await self._http.get(
            self._url(indexer_id),
            params={"apikey": self._api_key, **params},
            timeout=self._timeout,
        )
        resp.raise_for_status()
        return resp.text

    async def list_indexers(self) -> list[Indexer]:
        cached = await self._cache.get(_INDEXERS_CACHE_KEY)
        if cached is not None:
            return [Indexer(**entry) for entry in cached]

        text = await self._get("all", t="indexers", configured="true")
        indexers = parse_indexers(text)
        await self._cache.set(
            _INDEXERS_CACHE_KEY,
            [
                {
                    "id": i.id,
                    "title": i.title,
                    "movie_available": i.movie_available,
                    "series_available": i.series_available,
                }
                for i in indexers
            ],
            ttl=self._indexers_ttl,
        )
        log.info("jackett_indexers_loaded", count=len(indexers))
        return indexers

    async def _search(self, indexer: Indexer, **params: Any) -> list[Candidate]:
        text = await self._get(indexer.id, **params)
        # guessit is CPU-bound; keep it off the event loop.
        return await asyncio.to_thread(parse_items, text, indexer.id)

    async def search_movie(self, indexer: Indexer, title: TitleInfo) -> list[Candidate]:
        query = f"{title.name} {title.year}" if title.year else title.name
        return await self._search(indexer, t="movie", q=query, cat=_CAT_MOVIES)

    async def search_episode(
        self, indexer: Indexer, title: TitleInfo
    ) -> list[Candidate]:
        return await self._search(
            indexer,
            t="tvsearch",
            q=title.name,
            season=title.season,
            ep=title.episode,
            cat=_CAT_TV,
        )

    async def search_season(
        self, indexer: Indexer, title: TitleInfo
    ) -> list[Candidate]:
        candidates = await self._search(
            indexer, t="tvsearch", q=title.name, season=title.season, cat=_CAT_TV
        )
        for c in candidates:
            c.is_season_pack = True
        return candidates
