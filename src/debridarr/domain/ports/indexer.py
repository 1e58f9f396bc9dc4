"""Port for the torrent indexer catalog and search backend."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from debridarr.domain.entities.stream import Candidate, Indexer, TitleInfo


@runtime_checkable
class IndexerPort(Protocol):
    """Async interface to a Torznab-style indexer aggregator.

    Every search call may fail on its own; callers treat a failure as an
    empty result for that indexer.
    """

    async def list_indexers(self) -> list[Indexer]: ...

    async def search_movie(
        self, indexer: Indexer, title: TitleInfo
    ) -> list[Candidate]: ...

    async def search_episode(
        self, indexer: Indexer, title: TitleInfo
    ) -> list[Candidate]: ...

    async def search_season(
        self, indexer: Indexer, title: TitleInfo
    ) -> list[Candidate]: ...
