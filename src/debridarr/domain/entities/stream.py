"""Domain entities for torrent stream resolution.

Pure value objects and errors, no framework dependencies, no I/O.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Literal

ContentType = Literal["movie", "series"]


class Quality(IntEnum):
    """Vertical resolution of a release (0 = not detected)."""

    UNKNOWN = 0
    SD_360P = 360
    SD_480P = 480
    HD_720P = 720
    HD_1080P = 1080
    UHD_4K = 2160

    @classmethod
    def parse(cls, value: int | str | Quality) -> Quality:
        """Parse ``1080``, ``"1080p"``, ``"4k"`` or ``"HD_1080P"``."""
        if isinstance(value, cls):
            return value
        if isinstance(value, int):
            return cls(value)
        text = value.strip().upper()
        if text in cls.__members__:
            return cls[text]
        if text in ("4K", "UHD"):
            return cls.UHD_4K
        if text in ("", "UNKNOWN", "OTHER"):
            return cls.UNKNOWN
        return cls(int(text.removesuffix("P")))

    @property
    def label(self) -> str:
        if self is Quality.UNKNOWN:
            return "Unknown"
        if self is Quality.UHD_4K:
            return "4K"
        return f"{self.value}p"


@dataclass(frozen=True)
class StreamRequest:
    """Parsed composite Stremio id.

    ``tt1234567`` (movie) or ``tt1234567:2:5`` (series, season 2, episode 5).
    Season and episode are 0 when absent.
    """

    title_id: str
    season: int = 0
    episode: int = 0

    @property
    def stremio_id(self) -> str:
        if not self.season and not self.episode:
            return self.title_id
        return f"{self.title_id}:{self.season}:{self.episode}"


@dataclass(frozen=True)
class EpisodeRef:
    season: int
    episode: int


@dataclass(frozen=True)
class TitleInfo:
    """Canonical metadata for a movie or one episode of a series."""

    id: str
    type: ContentType
    name: str
    year: int | None = None
    season: int = 0
    episode: int = 0
    episodes: tuple[EpisodeRef, ...] = ()

    @property
    def stremio_id(self) -> str:
        if self.type == "movie":
            return self.id
        return f"{self.id}:{self.season}:{self.episode}"

    def next_episode(self) -> EpisodeRef | None:
        """Return the entry following the current episode, if any.

        When the current episode is not listed the first entry is returned,
        mirroring a lookup index of -1 + 1.
        """
        current = EpisodeRef(self.season, self.episode)
        try:
            index = self.episodes.index(current) + 1
        except ValueError:
            index = 0
        if index < len(self.episodes):
            return self.episodes[index]
        return None


@dataclass(frozen=True)
class Indexer:
    """Search backend catalog entry."""

    id: str
    title: str
    movie_available: bool = True
    series_available: bool = True

    def supports(self, content_type: ContentType) -> bool:
        if content_type == "movie":
            return self.movie_available
        return self.series_available


@dataclass(frozen=True)
class CachedFile:
    """One file of a torrent as listed by the debrid backend."""

    name: str
    size: int
    link: str = ""  # provider-specific handle used to unlock the file


@dataclass(frozen=True)
class ResolvedInfo:
    """Canonical content identity of a candidate."""

    info_hash: str
    name: str = ""
    size: int = 0
    magnet_url: str | None = None
    link: str = ""  # torrent file URL (used when there is no magnet)
    files: tuple[CachedFile, ...] = ()
    private: bool = False


@dataclass(frozen=True)
class DownloadProgress:
    percent: float
    speed: int  # bytes per second


@dataclass
class Candidate:
    """A raw search hit, annotated in place as it moves through the pipeline."""

    id: str
    indexer_id: str
    name: str
    link: str
    seeders: int = 0
    size: int = 0
    quality: Quality = Quality.UNKNOWN
    is_season_pack: bool = False
    infos: ResolvedInfo | None = None
    is_cached: bool = False
    progress: DownloadProgress | None = None
    # Torznab may already carry the identity (saves a round-trip).
    info_hash: str | None = None
    magnet_url: str | None = None

    @property
    def resolved_hash(self) -> str | None:
        return self.infos.info_hash if self.infos is not None else None


@dataclass(frozen=True)
class StreamDescriptor:
    """Stremio stream object handed to the serving layer."""

    name: str
    title: str
    url: str
    behavior_hints: dict[str, object] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class StreamError(Exception):
    """Base error for stream resolution."""


class UnsupportedTypeError(StreamError):
    pass


class InvalidUserConfigError(StreamError):
    pass


class MetadataNotFoundError(StreamError):
    """Metadata lookup failed for an unknown id."""


class NoResultsError(StreamError):
    """No candidate survived info resolution."""


class NoDownloadError(StreamError):
    """No download handle could be obtained for the chosen candidate."""


class DebridError(StreamError):
    """Debrid API or network failure."""


class DebridNotReadyError(DebridError):
    """The torrent exists on the debrid account but is not downloaded yet."""
