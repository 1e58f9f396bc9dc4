"""Torrent search pipeline.

Indexer fan-out -> filter/rank -> bounded info resolution -> dedup by
info hash -> debrid cache status + progress.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import re
import time
from collections.abc import Awaitable, Callable, Iterable, Sequence
from dataclasses import replace
from typing import Any, NamedTuple, Protocol

import structlog

from debridarr.domain.entities.stream import (
    Candidate,
    ContentType,
    Indexer,
    NoResultsError,
    Quality,
    TitleInfo,
)
from debridarr.domain.ports.debrid import DebridPort
from debridarr.domain.ports.indexer import IndexerPort
from debridarr.domain.ports.torrent_info import TorrentInfoPort

log = structlog.get_logger(__name__)

# ---------------------------------------------------------------------------
# Protocols: what this use case needs from its collaborators.
# ---------------------------------------------------------------------------


class _SortKey(Protocol):
    def as_pair(self) -> tuple[str, bool]: ...


class UserPreferences(Protocol):
    """Per-request preferences consumed by the search pipeline."""

    qualities: frozenset[Quality]
    exclude_keywords: frozenset[str]
    max_torrents: int
    priotize_pack_torrents: int
    sort_cached: Sequence[_SortKey]
    sort_uncached: Sequence[_SortKey]
    force_cache_next_episode: bool

    def to_public_dict(self) -> dict[str, Any]: ...


class _SearchConfig(Protocol):
    info_concurrency: int
    info_timeout_seconds: float
    slow_indexer_seconds: float


class _SingleFlight(Protocol):
    def do(self, key: str, fn: Callable[[], Awaitable[Any]]) -> Awaitable[Any]: ...

    def lock(self, key: str) -> Any: ...


class _SearchObserver(Protocol):
    """Receives per-indexer search timings and slow-resolution signals."""

    def record_indexer_search(
        self,
        indexer_id: str,
        duration_ns: int,
        result_count: int,
        *,
        success: bool,
    ) -> None: ...

    def record_info_failure(self, indexer_id: str) -> None: ...

    def record_slow_indexer(self, indexer_id: str, duration_s: float) -> None: ...


_SortFn = Callable[[Iterable[Candidate], Sequence[tuple[str, bool]]], list[Candidate]]
_SearchFn = Callable[[Indexer, TitleInfo], Awaitable[list[Candidate]]]


class _SearchHits(NamedTuple):
    """Preference-free indexer results for one title."""

    items: list[Candidate]
    season_packs: list[Candidate]


# Primary rank before resolution.
_SEARCH_SORT: tuple[tuple[str, bool], ...] = (("seeders", True),)

# Extra candidates resolved beyond max_torrents to absorb resolution failures.
_RESOLVE_HEADROOM = 2

_APIKEY_RE = re.compile(r"apikey=[a-z0-9\-]+", re.IGNORECASE)
_WORD_SPLIT_RE = re.compile(r"[\W_]+")


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


def parse_words(text: str) -> list[str]:
    """Split a release name into alphanumeric words.

    >>> parse_words("Movie.Name.CAM.1080p")
    ['Movie', 'Name', 'CAM', '1080p']
    """
    return [w for w in _WORD_SPLIT_RE.split(text) if w]


def matches_user_filters(candidate: Candidate, prefs: UserPreferences) -> bool:
    """Quality must be allowed and no name word may be an excluded keyword."""
    if candidate.quality not in prefs.qualities:
        return False
    if not prefs.exclude_keywords:
        return True
    words = parse_words(candidate.name.lower())
    return not any(w in prefs.exclude_keywords for w in words)


def is_matching_pack(candidate: Candidate, season: int) -> bool:
    """True if the name carries the ``S<season:02>`` word."""
    return f"S{season:02d}" in parse_words(candidate.name.upper())


def prioritize_packs(
    candidates: list[Candidate], packs: Sequence[Candidate], count: int
) -> list[Candidate]:
    """Force the best *count* packs into the tail of *candidates*.

    Only applies when *candidates* holds no pack yet. The displaced entries
    are the lowest ranked ones; the list length is unchanged unless it was
    shorter than the number of packs inserted.
    """
    if count <= 0 or not packs or any(c.is_season_pack for c in candidates):
        return candidates
    best = list(packs[: min(len(packs), count)])
    result = list(candidates)
    result[-len(best):] = best
    return result


def deduplicate_by_hash(candidates: Iterable[Candidate]) -> list[Candidate]:
    """Keep the first candidate per resolved info hash, dropping unresolved ones."""
    seen: set[str] = set()
    unique: list[Candidate] = []
    for c in candidates:
        info_hash = c.resolved_hash
        if info_hash is None or info_hash in seen:
            continue
        seen.add(info_hash)
        unique.append(c)
    return unique


def redact_link(link: str) -> str:
    """Mask Jackett API keys embedded in result links."""
    return _APIKEY_RE.sub("apikey=****", link)


def preferences_digest(prefs: UserPreferences) -> str:
    """Stable short digest of the preferences that shape a result list."""
    payload = json.dumps(prefs.to_public_dict(), sort_keys=True)
    return hashlib.sha1(payload.encode()).hexdigest()[:16]


# ---------------------------------------------------------------------------
# Use case
# ---------------------------------------------------------------------------


class TorrentSearchUseCase:
    """Builds the ranked, resolved and cache-annotated candidate list.

    The indexer fan-out does not depend on preferences, so every concurrent
    call for a title joins one fan-out. Calls with identical preferences
    (debrid key included) share the whole run; the others take turns on the
    per-title lock and resolve against the warm torrent-info cache.
    """

    def __init__(
        self,
        *,
        indexers: IndexerPort,
        torrent_info: TorrentInfoPort,
        single_flight: _SingleFlight,
        config: _SearchConfig,
        sort_fn: _SortFn,
        observer: _SearchObserver | None = None,
    ) -> None:
        self._indexers = indexers
        self._torrent_info = torrent_info
        self._single_flight = single_flight
        self._sort = sort_fn
        self._observer = observer
        self._info_concurrency = config.info_concurrency
        self._info_timeout = config.info_timeout_seconds
        self._slow_threshold = config.slow_indexer_seconds

    async def get_torrents(
        self,
        prefs: UserPreferences,
        title: TitleInfo,
        debrid: DebridPort | None,
    ) -> list[Candidate]:
        """Return up to ``max_torrents`` candidates, cached ones first.

        Raises:
            NoResultsError: No candidate could be resolved.
        """
        key = f"search:{title.stremio_id}"

        async def _fan_out_once() -> _SearchHits:
            return await self._search(title)

        async def _exclusive() -> list[Candidate]:
            hits = await self._single_flight.do(
                f"fanout:{title.stremio_id}", _fan_out_once
            )
            async with self._single_flight.lock(key):
                return await self._get_torrents(prefs, title, debrid, hits)

        return await self._single_flight.do(
            f"{key}:{preferences_digest(prefs)}", _exclusive
        )

    # ------------------------------------------------------------------
    # Pipeline stages
    # ------------------------------------------------------------------

    async def _search(self, title: TitleInfo) -> _SearchHits:
        """Raw hits of every indexer; season packs are kept apart."""
        stremio_id = title.stremio_id
        log.info("torrent_search_started", stremio_id=stremio_id, type=title.type)
        t0 = time.perf_counter()

        indexers = await self._available_indexers(title.type)
        log.info(
            "torrent_search_indexers",
            stremio_id=stremio_id,
            count=len(indexers),
            indexers=[i.title for i in indexers],
        )

        if title.type == "movie":
            found = await self._fan_out(indexers, self._indexers.search_movie, title)
            packs: list[Candidate] = []
        else:
            found, packs = await asyncio.gather(
                self._fan_out(indexers, self._indexers.search_episode, title),
                self._fan_out(indexers, self._indexers.search_season, title),
            )
        log.info(
            "torrent_search_found",
            stremio_id=stremio_id,
            count=len(found) + len(packs),
            packs=len(packs),
            duration_s=round(time.perf_counter() - t0, 2),
        )
        return _SearchHits(found, packs)

    async def _get_torrents(
        self,
        prefs: UserPreferences,
        title: TitleInfo,
        debrid: DebridPort | None,
        hits: _SearchHits,
    ) -> list[Candidate]:
        stremio_id = title.stremio_id

        # Candidates are annotated in place; each caller works on its own copies.
        found = [replace(c) for c in hits.items]

        def _filter_rank(items: Iterable[Candidate]) -> list[Candidate]:
            kept = [c for c in items if matches_user_filters(c, prefs)]
            ranked = self._sort(kept, _SEARCH_SORT)
            return ranked[: prefs.max_torrents + _RESOLVE_HEADROOM]

        if title.type == "movie":
            candidates = _filter_rank(found)
        else:
            packs = [
                c
                for c in (replace(p) for p in hits.season_packs)
                if matches_user_filters(c, prefs) and is_matching_pack(c, title.season)
            ]
            candidates = _filter_rank([*found, *packs])
            candidates = prioritize_packs(
                candidates,
                self._sort(packs, _SEARCH_SORT),
                prefs.priotize_pack_torrents,
            )

        log.info("torrent_search_filtered", stremio_id=stremio_id, count=len(candidates))

        t1 = time.perf_counter()
        resolved = await self._resolve_infos(stremio_id, candidates)
        candidates = deduplicate_by_hash(resolved)[: prefs.max_torrents]
        log.info(
            "torrent_infos_resolved",
            stremio_id=stremio_id,
            count=len(candidates),
            duration_s=round(time.perf_counter() - t1, 2),
        )

        if not candidates:
            raise NoResultsError(
                f"No torrent infos for type {title.type} and id {stremio_id}"
            )

        if debrid is not None:
            candidates = await self._apply_cache_status(
                stremio_id, candidates, prefs, debrid
            )
        return candidates

    async def _available_indexers(self, content_type: ContentType) -> list[Indexer]:
        return [i for i in await self._indexers.list_indexers() if i.supports(content_type)]

    async def _fan_out(
        self,
        indexers: list[Indexer],
        search_fn: _SearchFn,
        title: TitleInfo,
    ) -> list[Candidate]:
        """Query every indexer concurrently; failures count as empty."""
        results = await asyncio.gather(
            *(self._search_one(i, search_fn, title) for i in indexers)
        )
        merged: list[Candidate] = []
        for partial in results:
            merged.extend(partial)
        return merged

    async def _search_one(
        self,
        indexer: Indexer,
        search_fn: _SearchFn,
        title: TitleInfo,
    ) -> list[Candidate]:
        t0 = time.perf_counter_ns()
        success = False
        results: list[Candidate] = []
        try:
            results = await search_fn(indexer, title)
            success = True
        except Exception as e:
            # httpx messages carry the request URL, apikey included.
            log.warning(
                "indexer_search_error",
                indexer=indexer.id,
                stremio_id=title.stremio_id,
                error_type=type(e).__name__,
                error=redact_link(str(e)),
            )
            results = []
        finally:
            if self._observer is not None:
                self._observer.record_indexer_search(
                    indexer.id,
                    time.perf_counter_ns() - t0,
                    len(results),
                    success=success,
                )
        return results

    async def _resolve_infos(
        self, stremio_id: str, candidates: list[Candidate]
    ) -> list[Candidate]:
        """Resolve infos with bounded concurrency; failed candidates are dropped."""
        semaphore = asyncio.Semaphore(self._info_concurrency)

        async def _resolve_one(candidate: Candidate) -> Candidate | None:
            async with semaphore:
                t0 = time.perf_counter()
                try:
                    candidate.infos = await asyncio.wait_for(
                        self._torrent_info.resolve(candidate),
                        timeout=self._info_timeout,
                    )
                    return candidate
                except Exception as e:
                    log.warning(
                        "torrent_info_failed",
                        stremio_id=stremio_id,
                        candidate_id=candidate.id,
                        indexer=candidate.indexer_id,
                        link=redact_link(candidate.link),
                        error_type=type(e).__name__,
                        error=redact_link(str(e)),
                    )
                    if self._observer is not None:
                        self._observer.record_info_failure(candidate.indexer_id)
                    return None
                finally:
                    duration = time.perf_counter() - t0
                    if duration > self._slow_threshold:
                        log.warning(
                            "slow_indexer_detected",
                            stremio_id=stremio_id,
                            indexer=candidate.indexer_id,
                            duration_s=round(duration, 2),
                        )
                        if self._observer is not None:
                            self._observer.record_slow_indexer(
                                candidate.indexer_id, duration
                            )

        # gather keeps input order, so rank order survives concurrency.
        results = await asyncio.gather(*(_resolve_one(c) for c in candidates))
        return [c for c in results if c is not None and c.infos is not None]

    async def _apply_cache_status(
        self,
        stremio_id: str,
        candidates: list[Candidate],
        prefs: UserPreferences,
        debrid: DebridPort,
    ) -> list[Candidate]:
        hashes = [c.infos.info_hash for c in candidates if c.infos is not None]
        cached_hashes = {h.lower() for h in await debrid.get_cached_hashes(hashes)}

        cached: list[Candidate] = []
        uncached: list[Candidate] = []
        for c in candidates:
            c.is_cached = (c.resolved_hash or "").lower() in cached_hashes
            (cached if c.is_cached else uncached).append(c)

        log.info(
            "torrent_search_cached",
            stremio_id=stremio_id,
            cached=len(cached),
            debrid=debrid.short_name,
        )

        ordered = [
            *self._sort(cached, [k.as_pair() for k in prefs.sort_cached]),
            *self._sort(uncached, [k.as_pair() for k in prefs.sort_uncached]),
        ]

        try:
            progress = await debrid.get_progress(hashes)
        except Exception:
            log.debug("debrid_progress_unavailable", stremio_id=stremio_id, exc_info=True)
            progress = {}
        for c in ordered:
            c.progress = progress.get((c.resolved_hash or "").lower())
        return ordered
