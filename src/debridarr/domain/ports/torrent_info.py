"""Port for resolving candidates to their canonical torrent identity."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from debridarr.domain.entities.stream import Candidate, ResolvedInfo


@runtime_checkable
class TorrentInfoPort(Protocol):
    async def resolve(self, candidate: Candidate) -> ResolvedInfo:
        """Resolve info hash + magnet/torrent source. Raises on failure."""
        ...

    async def fetch_torrent_file(self, info: ResolvedInfo) -> bytes:
        """Download the raw ``.torrent`` bytes for *info*."""
        ...

    async def get_by_id(self, candidate_id: str) -> ResolvedInfo:
        """Return previously resolved info. Raises NoDownloadError if unknown."""
        ...
