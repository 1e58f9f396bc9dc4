"""Shared test fixtures for the debridarr test suite."""

from __future__ import annotations

from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from debridarr.domain.entities.stream import EpisodeRef, TitleInfo
from debridarr.infrastructure.config import UserConfig

# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class MemoryCache:
    """In-memory ``CachePort`` that records TTLs."""

    def __init__(self) -> None:
        self.data: dict[str, Any] = {}
        self.ttls: dict[str, int | None] = {}

    async def get(self, key: str) -> Any:
        return self.data.get(key)

    async def set(self, key: str, value: Any, *, ttl: int | None = None) -> None:
        self.data[key] = value
        self.ttls[key] = ttl

    async def delete(self, key: str) -> bool:
        self.ttls.pop(key, None)
        return self.data.pop(key, None) is not None

    async def exists(self, key: str) -> bool:
        return key in self.data

    async def clear(self) -> None:
        self.data.clear()
        self.ttls.clear()

    async def aclose(self) -> None:
        pass

    async def __aenter__(self) -> MemoryCache:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        pass


# ---------------------------------------------------------------------------
# Domain fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def movie_title() -> TitleInfo:
    return TitleInfo(id="tt0133093", type="movie", name="The Matrix", year=1999)


@pytest.fixture()
def episode_title() -> TitleInfo:
    return TitleInfo(
        id="tt0903747",
        type="series",
        name="Breaking Bad",
        year=2008,
        season=2,
        episode=5,
        episodes=(
            EpisodeRef(2, 4),
            EpisodeRef(2, 5),
            EpisodeRef(2, 6),
        ),
    )


@pytest.fixture()
def user_config() -> UserConfig:
    return UserConfig(debridApiKey="secret-key")


# ---------------------------------------------------------------------------
# Port fakes
# ---------------------------------------------------------------------------


@pytest.fixture()
def memory_cache() -> MemoryCache:
    return MemoryCache()


@pytest.fixture()
def debrid() -> AsyncMock:
    """DebridPort mock: nothing cached, no progress."""
    mock = AsyncMock()
    mock.short_name = "RD"
    mock.get_cached_hashes.return_value = set()
    mock.get_progress.return_value = {}
    mock.get_user_hash.return_value = "userhash"
    return mock


@pytest.fixture()
def search_config() -> MagicMock:
    cfg = MagicMock()
    cfg.info_concurrency = 5
    cfg.info_timeout_seconds = 33.0
    cfg.slow_indexer_seconds = 10.0
    return cfg
