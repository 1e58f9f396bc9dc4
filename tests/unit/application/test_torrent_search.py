"""Tests for TorrentSearchUseCase and its pure helpers."""

from __future__ import annotations

import asyncio
import hashlib
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from debridarr.application.use_cases.torrent_search import (
    TorrentSearchUseCase,
    deduplicate_by_hash,
    is_matching_pack,
    matches_user_filters,
    parse_words,
    prioritize_packs,
    redact_link,
)
from debridarr.domain.entities.stream import (
    Candidate,
    DownloadProgress,
    Indexer,
    NoResultsError,
    Quality,
    ResolvedInfo,
    TitleInfo,
)
from debridarr.infrastructure.config import UserConfig
from debridarr.infrastructure.single_flight import SingleFlight
from debridarr.infrastructure.stremio.torrent_sorter import sort_candidates

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _hash(key: str) -> str:
    return hashlib.sha1(key.encode()).hexdigest()


def _make_candidate(
    cid: str,
    *,
    name: str | None = None,
    seeders: int = 10,
    size: int = 1_000,
    quality: Quality = Quality.HD_1080P,
    indexer_id: str = "a",
    is_season_pack: bool = False,
) -> Candidate:
    return Candidate(
        id=cid,
        indexer_id=indexer_id,
        name=name or f"Movie.Name.2020.{quality.label}.{cid}",
        link=f"http://jackett/dl/{cid}?apikey=abc123",
        seeders=seeders,
        size=size,
        quality=quality,
        is_season_pack=is_season_pack,
    )


class _FakeTorrentInfo:
    """Resolves candidates to deterministic hashes; tracks concurrency."""

    def __init__(
        self,
        *,
        hashes: dict[str, str] | None = None,
        fail: set[str] | None = None,
        delays: dict[str, float] | None = None,
        default_delay: float = 0.0,
    ) -> None:
        self.hashes = hashes or {}
        self.fail = fail or set()
        self.delays = delays or {}
        self.default_delay = default_delay
        self.resolved: list[str] = []
        self.active = 0
        self.max_active = 0

    async def resolve(self, candidate: Candidate) -> ResolvedInfo:
        self.resolved.append(candidate.id)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            delay = self.delays.get(candidate.id, self.default_delay)
            if delay:
                await asyncio.sleep(delay)
            if candidate.id in self.fail:
                raise RuntimeError(f"cannot resolve {candidate.id}")
            return ResolvedInfo(
                info_hash=self.hashes.get(candidate.id, _hash(candidate.id)),
                magnet_url=f"magnet:?xt=urn:btih:{_hash(candidate.id)}",
            )
        finally:
            self.active -= 1

    async def fetch_torrent_file(self, info: ResolvedInfo) -> bytes:
        return b""

    async def get_by_id(self, candidate_id: str) -> ResolvedInfo:
        raise NotImplementedError


def _make_indexers(
    *,
    movie: dict[str, list[Candidate] | Exception] | None = None,
    episode: dict[str, list[Candidate] | Exception] | None = None,
    season: dict[str, list[Candidate] | Exception] | None = None,
    catalog: list[Indexer] | None = None,
) -> AsyncMock:
    """IndexerPort mock answering per indexer id."""
    mock = AsyncMock()
    mock.list_indexers.return_value = catalog or [Indexer("a", "A"), Indexer("b", "B")]

    def _answer(table: dict[str, list[Candidate] | Exception] | None):
        async def _search(indexer: Indexer, title: TitleInfo) -> list[Candidate]:
            result = (table or {}).get(indexer.id, [])
            if isinstance(result, Exception):
                raise result
            return list(result)

        return _search

    mock.search_movie.side_effect = _answer(movie)
    mock.search_episode.side_effect = _answer(episode)
    mock.search_season.side_effect = _answer(season)
    return mock


def _make_use_case(
    indexers: AsyncMock,
    torrent_info: _FakeTorrentInfo,
    *,
    info_concurrency: int = 5,
    info_timeout_seconds: float = 33.0,
    slow_indexer_seconds: float = 10.0,
    observer: MagicMock | None = None,
    single_flight: SingleFlight | None = None,
) -> TorrentSearchUseCase:
    return TorrentSearchUseCase(
        indexers=indexers,
        torrent_info=torrent_info,
        single_flight=single_flight or SingleFlight(),
        config=SimpleNamespace(
            info_concurrency=info_concurrency,
            info_timeout_seconds=info_timeout_seconds,
            slow_indexer_seconds=slow_indexer_seconds,
        ),
        sort_fn=sort_candidates,
        observer=observer,
    )


def _prefs(**overrides: object) -> UserConfig:
    return UserConfig.model_validate({"debridApiKey": "k", **overrides})


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


class TestParseWords:
    def test_splits_on_punctuation(self) -> None:
        assert parse_words("Movie.Name.CAM.1080p") == ["Movie", "Name", "CAM", "1080p"]

    def test_collapses_separators(self) -> None:
        assert parse_words("  a -- b__c [d] ") == ["a", "b", "c", "d"]

    def test_empty(self) -> None:
        assert parse_words("") == []


class TestMatchesUserFilters:
    def test_quality_not_allowed(self) -> None:
        c = _make_candidate("x", quality=Quality.HD_720P)
        assert not matches_user_filters(c, _prefs(qualities=[1080]))

    def test_quality_allowed(self) -> None:
        c = _make_candidate("x", quality=Quality.HD_1080P)
        assert matches_user_filters(c, _prefs(qualities=[1080]))

    def test_excluded_keyword_any_case(self) -> None:
        c = _make_candidate("x", name="Movie.Name.CAM.1080p")
        assert not matches_user_filters(c, _prefs(excludeKeywords=["cam"]))
        assert not matches_user_filters(c, _prefs(excludeKeywords=["CAM"]))

    def test_keyword_must_be_whole_word(self) -> None:
        c = _make_candidate("x", name="Movie.Camera.Story.1080p")
        assert matches_user_filters(c, _prefs(excludeKeywords=["cam"]))


class TestIsMatchingPack:
    def test_zero_padded_marker(self) -> None:
        assert is_matching_pack(_make_candidate("p", name="Show.S02.1080p.WEB"), 2)

    def test_lowercase_marker(self) -> None:
        assert is_matching_pack(_make_candidate("p", name="show s02 complete"), 2)

    def test_other_season(self) -> None:
        assert not is_matching_pack(_make_candidate("p", name="Show.S03.1080p"), 2)

    def test_unpadded_marker_rejected(self) -> None:
        assert not is_matching_pack(_make_candidate("p", name="Show.S2.1080p"), 2)

    def test_marker_must_be_its_own_word(self) -> None:
        assert not is_matching_pack(_make_candidate("p", name="Show.S02E01.1080p"), 2)


class TestPrioritizePacks:
    def test_replaces_tail_when_no_pack_present(self) -> None:
        ranked = [_make_candidate(f"e{i}") for i in range(4)]
        packs = [
            _make_candidate("p1", is_season_pack=True),
            _make_candidate("p2", is_season_pack=True),
        ]

        result = prioritize_packs(ranked, packs, 1)

        assert [c.id for c in result] == ["e0", "e1", "e2", "p1"]
        assert sum(c.is_season_pack for c in result) == 1

    def test_count_capped_by_available_packs(self) -> None:
        ranked = [_make_candidate(f"e{i}") for i in range(4)]
        packs = [_make_candidate("p1", is_season_pack=True)]

        result = prioritize_packs(ranked, packs, 3)

        assert [c.id for c in result] == ["e0", "e1", "e2", "p1"]

    def test_noop_when_pack_already_ranked(self) -> None:
        pack = _make_candidate("p1", is_season_pack=True)
        ranked = [_make_candidate("e0"), pack]
        other = _make_candidate("p2", is_season_pack=True)

        assert prioritize_packs(ranked, [other], 1) == ranked

    def test_noop_when_disabled_or_no_packs(self) -> None:
        ranked = [_make_candidate("e0")]
        packs = [_make_candidate("p1", is_season_pack=True)]
        assert prioritize_packs(ranked, packs, 0) == ranked
        assert prioritize_packs(ranked, [], 2) == ranked

    def test_short_list_is_filled(self) -> None:
        packs = [
            _make_candidate("p1", is_season_pack=True),
            _make_candidate("p2", is_season_pack=True),
        ]
        result = prioritize_packs([_make_candidate("e0")], packs, 2)
        assert [c.id for c in result] == ["p1", "p2"]


class TestDeduplicateByHash:
    def test_keeps_first_occurrence(self) -> None:
        first = _make_candidate("a", seeders=50)
        second = _make_candidate("b", seeders=10)
        first.infos = ResolvedInfo(info_hash="h1")
        second.infos = ResolvedInfo(info_hash="h1")

        assert deduplicate_by_hash([first, second]) == [first]

    def test_drops_unresolved(self) -> None:
        resolved = _make_candidate("a")
        resolved.infos = ResolvedInfo(info_hash="h1")
        unresolved = _make_candidate("b")

        assert deduplicate_by_hash([unresolved, resolved]) == [resolved]


class TestRedactLink:
    def test_masks_api_key(self) -> None:
        link = "http://jackett:9117/dl/x/?jackett_apikey=1&apikey=abc-123def&path=y"
        assert "abc-123def" not in redact_link(link)
        assert "apikey=****" in redact_link(link)

    def test_without_key_unchanged(self) -> None:
        assert redact_link("magnet:?xt=urn:btih:abc") == "magnet:?xt=urn:btih:abc"


# ---------------------------------------------------------------------------
# Movie pipeline
# ---------------------------------------------------------------------------


class TestMovieSearch:
    @pytest.mark.asyncio()
    async def test_result_bounded_and_unique(self, movie_title: TitleInfo) -> None:
        candidates = [_make_candidate(f"c{i}", seeders=100 - i) for i in range(12)]
        # Pairs of candidates share content.
        hashes = {f"c{i}": _hash(f"content{i // 2}") for i in range(12)}
        uc = _make_use_case(
            _make_indexers(movie={"a": candidates}), _FakeTorrentInfo(hashes=hashes)
        )

        result = await uc.get_torrents(_prefs(maxTorrents=3), movie_title, None)

        assert 0 < len(result) <= 3
        assert len({c.resolved_hash for c in result}) == len(result)

    @pytest.mark.asyncio()
    async def test_dedup_keeps_higher_ranked(self, movie_title: TitleInfo) -> None:
        low = _make_candidate("low", seeders=1)
        high = _make_candidate("high", seeders=99)
        info = _FakeTorrentInfo(hashes={"low": "same", "high": "same"})
        uc = _make_use_case(_make_indexers(movie={"a": [low], "b": [high]}), info)

        result = await uc.get_torrents(_prefs(), movie_title, None)

        assert [c.id for c in result] == ["high"]

    @pytest.mark.asyncio()
    async def test_only_allowed_qualities_reach_resolution(
        self, movie_title: TitleInfo
    ) -> None:
        candidates = [
            _make_candidate("q1080", quality=Quality.HD_1080P),
            _make_candidate("q720", quality=Quality.HD_720P),
            _make_candidate("q4k", quality=Quality.UHD_4K),
            _make_candidate("qunk", quality=Quality.UNKNOWN),
        ]
        info = _FakeTorrentInfo()
        uc = _make_use_case(_make_indexers(movie={"a": candidates}), info)

        result = await uc.get_torrents(_prefs(qualities=["1080p"]), movie_title, None)

        assert info.resolved == ["q1080"]
        assert all(c.quality == Quality.HD_1080P for c in result)

    @pytest.mark.asyncio()
    async def test_excluded_keyword_never_resolved(self, movie_title: TitleInfo) -> None:
        cam = _make_candidate("cam", name="Movie.Name.CAM.1080p", seeders=500)
        good = _make_candidate("good", name="Movie.Name.BluRay.1080p")
        info = _FakeTorrentInfo()
        uc = _make_use_case(_make_indexers(movie={"a": [cam, good]}), info)

        result = await uc.get_torrents(_prefs(excludeKeywords=["cam"]), movie_title, None)

        assert info.resolved == ["good"]
        assert [c.id for c in result] == ["good"]

    @pytest.mark.asyncio()
    async def test_equal_seeders_keep_input_order(self, movie_title: TitleInfo) -> None:
        candidates = [_make_candidate(f"c{i}", seeders=7) for i in range(6)]
        uc = _make_use_case(_make_indexers(movie={"a": candidates}), _FakeTorrentInfo())

        result = await uc.get_torrents(_prefs(maxTorrents=6), movie_title, None)

        assert [c.id for c in result] == [f"c{i}" for i in range(6)]

    @pytest.mark.asyncio()
    async def test_ranked_by_seeders(self, movie_title: TitleInfo) -> None:
        candidates = [
            _make_candidate("few", seeders=1),
            _make_candidate("many", seeders=100),
            _make_candidate("some", seeders=10),
        ]
        uc = _make_use_case(_make_indexers(movie={"a": candidates}), _FakeTorrentInfo())

        result = await uc.get_torrents(_prefs(), movie_title, None)

        assert [c.id for c in result] == ["many", "some", "few"]

    @pytest.mark.asyncio()
    async def test_resolution_limited_to_headroom(self, movie_title: TitleInfo) -> None:
        candidates = [_make_candidate(f"c{i}", seeders=100 - i) for i in range(20)]
        info = _FakeTorrentInfo()
        uc = _make_use_case(_make_indexers(movie={"a": candidates}), info)

        await uc.get_torrents(_prefs(maxTorrents=3), movie_title, None)

        assert info.resolved == ["c0", "c1", "c2", "c3", "c4"]

    @pytest.mark.asyncio()
    async def test_failed_indexer_is_isolated(self, movie_title: TitleInfo) -> None:
        observer = MagicMock()
        indexers = _make_indexers(
            movie={"a": [_make_candidate("ok")], "b": RuntimeError("indexer down")}
        )
        uc = _make_use_case(indexers, _FakeTorrentInfo(), observer=observer)

        result = await uc.get_torrents(_prefs(), movie_title, None)

        assert [c.id for c in result] == ["ok"]
        outcomes = {
            call.args[0]: call.kwargs["success"]
            for call in observer.record_indexer_search.call_args_list
        }
        assert outcomes == {"a": True, "b": False}

    @pytest.mark.asyncio()
    async def test_indexers_filtered_by_type(self, movie_title: TitleInfo) -> None:
        indexers = _make_indexers(
            movie={"a": [_make_candidate("x")], "tv": [_make_candidate("y")]},
            catalog=[Indexer("a", "A"), Indexer("tv", "TV", movie_available=False)],
        )
        uc = _make_use_case(indexers, _FakeTorrentInfo())

        result = await uc.get_torrents(_prefs(), movie_title, None)

        assert [c.id for c in result] == ["x"]
        assert [call.args[0].id for call in indexers.search_movie.await_args_list] == ["a"]

    @pytest.mark.asyncio()
    async def test_failed_resolution_dropped(self, movie_title: TitleInfo) -> None:
        candidates = [_make_candidate("bad", seeders=9), _make_candidate("good", seeders=1)]
        observer = MagicMock()
        uc = _make_use_case(
            _make_indexers(movie={"a": candidates}),
            _FakeTorrentInfo(fail={"bad"}),
            observer=observer,
        )

        result = await uc.get_torrents(_prefs(), movie_title, None)

        assert [c.id for c in result] == ["good"]
        observer.record_info_failure.assert_called_once_with("a")

    @pytest.mark.asyncio()
    async def test_timeout_drops_only_that_candidate(self, movie_title: TitleInfo) -> None:
        candidates = [_make_candidate("slow", seeders=9), _make_candidate("fast", seeders=1)]
        uc = _make_use_case(
            _make_indexers(movie={"a": candidates}),
            _FakeTorrentInfo(delays={"slow": 5.0}),
            info_timeout_seconds=0.05,
        )

        result = await uc.get_torrents(_prefs(), movie_title, None)

        assert [c.id for c in result] == ["fast"]

    @pytest.mark.asyncio()
    async def test_resolution_concurrency_bounded(self, movie_title: TitleInfo) -> None:
        candidates = [_make_candidate(f"c{i}") for i in range(8)]
        info = _FakeTorrentInfo(default_delay=0.01)
        uc = _make_use_case(
            _make_indexers(movie={"a": candidates}), info, info_concurrency=2
        )

        await uc.get_torrents(_prefs(maxTorrents=6), movie_title, None)

        assert info.max_active == 2

    @pytest.mark.asyncio()
    async def test_slow_resolution_reported(self, movie_title: TitleInfo) -> None:
        observer = MagicMock()
        uc = _make_use_case(
            _make_indexers(movie={"a": [_make_candidate("x", indexer_id="slowidx")]}),
            _FakeTorrentInfo(default_delay=0.05),
            slow_indexer_seconds=0.01,
            observer=observer,
        )

        await uc.get_torrents(_prefs(), movie_title, None)

        observer.record_slow_indexer.assert_called_once()
        assert observer.record_slow_indexer.call_args.args[0] == "slowidx"

    @pytest.mark.asyncio()
    async def test_no_results_raises(self, movie_title: TitleInfo) -> None:
        uc = _make_use_case(
            _make_indexers(movie={"a": [_make_candidate("x")]}),
            _FakeTorrentInfo(fail={"x"}),
        )

        with pytest.raises(NoResultsError):
            await uc.get_torrents(_prefs(), movie_title, None)

    @pytest.mark.asyncio()
    async def test_nothing_found_raises(self, movie_title: TitleInfo) -> None:
        uc = _make_use_case(_make_indexers(), _FakeTorrentInfo())

        with pytest.raises(NoResultsError):
            await uc.get_torrents(_prefs(), movie_title, None)


# ---------------------------------------------------------------------------
# Cache status enrichment
# ---------------------------------------------------------------------------


class TestCacheStatus:
    @pytest.mark.asyncio()
    async def test_cached_first_each_partition_sorted(
        self, movie_title: TitleInfo, debrid: AsyncMock
    ) -> None:
        candidates = [
            _make_candidate("u_low", seeders=90, quality=Quality.HD_720P),
            _make_candidate("c_720", seeders=80, quality=Quality.HD_720P, size=5_000),
            _make_candidate("u_high", seeders=95, quality=Quality.HD_720P),
            _make_candidate("c_1080_small", seeders=70, size=1_000),
            _make_candidate("c_1080_big", seeders=60, size=9_000),
        ]
        debrid.get_cached_hashes.return_value = {
            _hash("c_720"),
            _hash("c_1080_small"),
            _hash("c_1080_big").upper(),
        }
        uc = _make_use_case(_make_indexers(movie={"a": candidates}), _FakeTorrentInfo())

        result = await uc.get_torrents(
            _prefs(qualities=[720, 1080]), movie_title, debrid
        )

        assert [c.id for c in result] == [
            "c_1080_big",
            "c_1080_small",
            "c_720",
            "u_high",
            "u_low",
        ]
        assert [c.is_cached for c in result] == [True, True, True, False, False]

    @pytest.mark.asyncio()
    async def test_custom_sort_keys(self, movie_title: TitleInfo, debrid: AsyncMock) -> None:
        candidates = [
            _make_candidate("big", seeders=5, size=9_000),
            _make_candidate("small", seeders=50, size=1_000),
        ]
        uc = _make_use_case(_make_indexers(movie={"a": candidates}), _FakeTorrentInfo())

        result = await uc.get_torrents(
            _prefs(sortUncached=[["size", True]]), movie_title, debrid
        )

        assert [c.id for c in result] == ["big", "small"]

    @pytest.mark.asyncio()
    async def test_progress_attached(self, movie_title: TitleInfo, debrid: AsyncMock) -> None:
        debrid.get_progress.return_value = {
            _hash("x"): DownloadProgress(percent=42.0, speed=1024)
        }
        uc = _make_use_case(
            _make_indexers(movie={"a": [_make_candidate("x"), _make_candidate("y")]}),
            _FakeTorrentInfo(),
        )

        result = await uc.get_torrents(_prefs(), movie_title, debrid)

        progress = {c.id: c.progress for c in result}
        assert progress["x"] == DownloadProgress(percent=42.0, speed=1024)
        assert progress["y"] is None

    @pytest.mark.asyncio()
    async def test_progress_failure_swallowed(
        self, movie_title: TitleInfo, debrid: AsyncMock
    ) -> None:
        debrid.get_progress.side_effect = RuntimeError("debrid down")
        uc = _make_use_case(
            _make_indexers(movie={"a": [_make_candidate("x")]}), _FakeTorrentInfo()
        )

        result = await uc.get_torrents(_prefs(), movie_title, debrid)

        assert [c.id for c in result] == ["x"]
        assert result[0].progress is None

    @pytest.mark.asyncio()
    async def test_cache_query_batched(self, movie_title: TitleInfo, debrid: AsyncMock) -> None:
        candidates = [_make_candidate(f"c{i}") for i in range(3)]
        uc = _make_use_case(_make_indexers(movie={"a": candidates}), _FakeTorrentInfo())

        await uc.get_torrents(_prefs(), movie_title, debrid)

        debrid.get_cached_hashes.assert_awaited_once()
        assert sorted(debrid.get_cached_hashes.await_args.args[0]) == sorted(
            _hash(f"c{i}") for i in range(3)
        )


# ---------------------------------------------------------------------------
# Series pipeline
# ---------------------------------------------------------------------------


class TestSeriesSearch:
    @pytest.mark.asyncio()
    async def test_episode_and_pack_searches_merged(
        self, episode_title: TitleInfo
    ) -> None:
        indexers = _make_indexers(
            episode={"a": [_make_candidate("ep", name="Show.S02E05.1080p", seeders=50)]},
            season={
                "b": [
                    _make_candidate(
                        "pack", name="Show.S02.1080p", seeders=20, is_season_pack=True
                    )
                ]
            },
        )
        uc = _make_use_case(indexers, _FakeTorrentInfo())

        result = await uc.get_torrents(_prefs(), episode_title, None)

        assert [c.id for c in result] == ["ep", "pack"]
        indexers.search_movie.assert_not_awaited()

    @pytest.mark.asyncio()
    async def test_pack_without_season_marker_excluded(
        self, episode_title: TitleInfo
    ) -> None:
        info = _FakeTorrentInfo()
        indexers = _make_indexers(
            episode={"a": [_make_candidate("ep", name="Show.S02E05.1080p")]},
            season={
                "a": [
                    _make_candidate(
                        "wrong", name="Show.S03.1080p", seeders=999, is_season_pack=True
                    ),
                    _make_candidate(
                        "nomarker", name="Show.Complete.1080p", seeders=999,
                        is_season_pack=True,
                    ),
                    _make_candidate(
                        "right", name="Show.S02.1080p", seeders=1, is_season_pack=True
                    ),
                ]
            },
        )
        uc = _make_use_case(indexers, info)

        result = await uc.get_torrents(_prefs(), episode_title, None)

        assert {c.id for c in result} == {"ep", "right"}
        assert "wrong" not in info.resolved
        assert "nomarker" not in info.resolved

    @pytest.mark.asyncio()
    async def test_pack_forced_into_tail(self, episode_title: TitleInfo) -> None:
        # max_torrents=2 -> 4 candidates resolved; episodes outrank the packs.
        episodes = [
            _make_candidate(f"e{i}", name=f"Show.S02E05.1080p.{i}", seeders=100 - i)
            for i in range(6)
        ]
        packs = [
            _make_candidate("p_low", name="Show.S02.1080p.A", seeders=3, is_season_pack=True),
            _make_candidate("p_best", name="Show.S02.1080p.B", seeders=5, is_season_pack=True),
        ]
        # Two episode resolutions fail so the forced pack reaches the result.
        info = _FakeTorrentInfo(fail={"e0", "e1"})
        uc = _make_use_case(_make_indexers(episode={"a": episodes}, season={"b": packs}), info)

        result = await uc.get_torrents(
            _prefs(maxTorrents=2, priotizePackTorrents=1), episode_title, None
        )

        assert sorted(info.resolved) == sorted(["e0", "e1", "e2", "p_best"])
        assert [c.id for c in result] == ["e2", "p_best"]
        assert sum(c.is_season_pack for c in result) == 1

    @pytest.mark.asyncio()
    async def test_pack_priority_disabled(self, episode_title: TitleInfo) -> None:
        episodes = [
            _make_candidate(f"e{i}", name=f"Show.S02E05.{i}", seeders=100 - i)
            for i in range(6)
        ]
        packs = [_make_candidate("p", name="Show.S02.x", seeders=1, is_season_pack=True)]
        info = _FakeTorrentInfo()
        uc = _make_use_case(_make_indexers(episode={"a": episodes}, season={"a": packs}), info)

        await uc.get_torrents(
            _prefs(maxTorrents=2, priotizePackTorrents=0), episode_title, None
        )

        assert "p" not in info.resolved


# ---------------------------------------------------------------------------
# Failure logging
# ---------------------------------------------------------------------------


def _warnings(log: MagicMock, event: str) -> list[dict[str, object]]:
    return [c.kwargs for c in log.warning.call_args_list if c.args[0] == event]


class TestFailureLogging:
    _URL = (
        "http://jackett/api/v2.0/indexers/b/results/torznab/api"
        "?apikey=secretkey123&t=movie"
    )

    @pytest.mark.asyncio()
    async def test_indexer_error_logged_without_key(self, movie_title: TitleInfo) -> None:
        error = httpx.ConnectError(
            f"connection refused for url '{self._URL}'",
            request=httpx.Request("GET", self._URL),
        )
        indexers = _make_indexers(movie={"a": [_make_candidate("ok")], "b": error})
        uc = _make_use_case(indexers, _FakeTorrentInfo())

        with patch("debridarr.application.use_cases.torrent_search.log") as log:
            await uc.get_torrents(_prefs(), movie_title, None)

        [entry] = _warnings(log, "indexer_search_error")
        assert entry["error_type"] == "ConnectError"
        assert "secretkey123" not in str(entry)
        assert "exc_info" not in entry

    @pytest.mark.asyncio()
    async def test_info_failure_logged_without_key(self, movie_title: TitleInfo) -> None:
        candidate = _make_candidate("bad")
        url = "http://jackett/dl/bad?apikey=secretkey123"
        torrent_info = AsyncMock()
        torrent_info.resolve.side_effect = httpx.HTTPStatusError(
            f"Server error '500 Internal Server Error' for url '{url}'",
            request=httpx.Request("GET", url),
            response=httpx.Response(500),
        )
        uc = _make_use_case(_make_indexers(movie={"a": [candidate]}), torrent_info)

        with (
            patch("debridarr.application.use_cases.torrent_search.log") as log,
            pytest.raises(NoResultsError),
        ):
            await uc.get_torrents(_prefs(), movie_title, None)

        [entry] = _warnings(log, "torrent_info_failed")
        assert entry["error_type"] == "HTTPStatusError"
        assert "apikey=****" in str(entry["error"])
        assert "secretkey123" not in str(entry)
        assert "exc_info" not in entry


# ---------------------------------------------------------------------------
# Request coalescing
# ---------------------------------------------------------------------------


class TestSingleFlight:
    @pytest.mark.asyncio()
    async def test_concurrent_identical_requests_share_one_fan_out(
        self, movie_title: TitleInfo
    ) -> None:
        gate = asyncio.Event()
        indexers = _make_indexers(catalog=[Indexer("a", "A")])

        async def _search(indexer: Indexer, title: TitleInfo) -> list[Candidate]:
            await gate.wait()
            return [_make_candidate("x")]

        indexers.search_movie.side_effect = _search
        uc = _make_use_case(indexers, _FakeTorrentInfo())
        prefs = _prefs()

        first = asyncio.create_task(uc.get_torrents(prefs, movie_title, None))
        second = asyncio.create_task(uc.get_torrents(prefs, movie_title, None))
        await asyncio.sleep(0.01)
        gate.set()
        r1, r2 = await asyncio.gather(first, second)

        assert indexers.search_movie.await_count == 1
        assert r1 is r2

    @pytest.mark.asyncio()
    async def test_different_preferences_share_one_fan_out(
        self, movie_title: TitleInfo
    ) -> None:
        indexers = _make_indexers(catalog=[Indexer("a", "A")])

        async def _search(indexer: Indexer, title: TitleInfo) -> list[Candidate]:
            await asyncio.sleep(0.01)
            return [
                _make_candidate("x", quality=Quality.HD_1080P),
                _make_candidate("y", quality=Quality.HD_720P),
            ]

        indexers.search_movie.side_effect = _search
        uc = _make_use_case(indexers, _FakeTorrentInfo())

        r1, r2 = await asyncio.gather(
            uc.get_torrents(_prefs(qualities=[1080]), movie_title, None),
            uc.get_torrents(_prefs(qualities=[720]), movie_title, None),
        )

        assert indexers.search_movie.await_count == 1
        assert [c.id for c in r1] == ["x"]
        assert [c.id for c in r2] == ["y"]

    @pytest.mark.asyncio()
    async def test_other_debrid_key_gets_own_cache_status(
        self, movie_title: TitleInfo
    ) -> None:
        indexers = _make_indexers(catalog=[Indexer("a", "A")])

        async def _search(indexer: Indexer, title: TitleInfo) -> list[Candidate]:
            await asyncio.sleep(0.01)
            return [_make_candidate("x")]

        indexers.search_movie.side_effect = _search
        cached_debrid = AsyncMock()
        cached_debrid.get_cached_hashes.return_value = {_hash("x")}
        cached_debrid.get_progress.return_value = {}
        empty_debrid = AsyncMock()
        empty_debrid.get_cached_hashes.return_value = set()
        empty_debrid.get_progress.return_value = {}
        uc = _make_use_case(indexers, _FakeTorrentInfo())

        r1, r2 = await asyncio.gather(
            uc.get_torrents(_prefs(debridApiKey="key-one"), movie_title, cached_debrid),
            uc.get_torrents(_prefs(debridApiKey="key-two"), movie_title, empty_debrid),
        )

        assert indexers.search_movie.await_count == 1
        assert r1[0] is not r2[0]
        assert r1[0].is_cached is True
        assert r2[0].is_cached is False

    @pytest.mark.asyncio()
    async def test_marker_released_after_failure(self, movie_title: TitleInfo) -> None:
        single_flight = SingleFlight()
        uc = _make_use_case(
            _make_indexers(), _FakeTorrentInfo(), single_flight=single_flight
        )

        with pytest.raises(NoResultsError):
            await uc.get_torrents(_prefs(), movie_title, None)

        assert not single_flight.in_flight(f"search:{movie_title.stremio_id}")
        assert not single_flight.in_flight(f"fanout:{movie_title.stremio_id}")
