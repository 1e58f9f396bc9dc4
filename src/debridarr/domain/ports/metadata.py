"""Port for title metadata lookups."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from debridarr.domain.entities.stream import TitleInfo


@runtime_checkable
class MetadataPort(Protocol):
    """Resolves Stremio title ids to canonical metadata.

    Both methods raise ``MetadataNotFoundError`` for unknown ids.
    """

    async def get_movie(self, title_id: str) -> TitleInfo: ...

    async def get_episode(
        self, title_id: str, season: int, episode: int
    ) -> TitleInfo: ...
