"""Port for debrid storage providers (Real-Debrid, AllDebrid, ...)."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from debridarr.domain.entities.stream import CachedFile, DownloadProgress


@runtime_checkable
class DebridPort(Protocol):
    """Remote torrent cache exposing per-file download handles.

    ``get_files_from_*`` raise ``DebridNotReadyError`` while the provider
    is still downloading the torrent.
    """

    @property
    def short_name(self) -> str:
        """Short label shown in stream names (e.g. ``RD``)."""
        ...

    async def get_cached_hashes(self, info_hashes: list[str]) -> set[str]:
        """Return the subset of *info_hashes* already stored on the account."""
        ...

    async def get_progress(
        self, info_hashes: list[str]
    ) -> dict[str, DownloadProgress]: ...

    async def get_files_from_magnet(self, magnet_url: str) -> list[CachedFile]: ...

    async def get_files_from_buffer(self, torrent: bytes) -> list[CachedFile]: ...

    async def get_download(self, file: CachedFile) -> str | None:
        """Resolve a direct download URL for *file*."""
        ...

    async def get_user_hash(self) -> str:
        """Stable per-account identifier for cache-key composition."""
        ...
