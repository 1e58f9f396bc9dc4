"""Pydantic configuration models with validation."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal, Optional

from pydantic import (
    AliasChoices,
    AliasPath,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

from debridarr.domain.entities.stream import Quality

Environment = Literal["dev", "test", "prod"]
LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR"]
LogFormat = Literal["json", "console"]
DebridId = Literal["realdebrid", "alldebrid"]

# Fields a user may sort candidates by.
SortField = Literal["quality", "size", "seeders"]


def _normalize_path(value: Any) -> Path:
    """
    Normalize a path-like value without causing filesystem side-effects.

    This function MUST NOT create directories or files.
    """
    if isinstance(value, Path):
        return value.expanduser()
    if isinstance(value, str):
        return Path(value).expanduser()
    raise TypeError(f"Expected path-like value, got: {type(value)!r}")


class SortKey(BaseModel):
    """One ``(field, descending)`` pair of a multi-key sort."""

    model_config = ConfigDict(frozen=True)

    field: SortField
    descending: bool = True

    @model_validator(mode="before")
    @classmethod
    def _from_pair(cls, data: Any) -> Any:
        # Accept the compact ["seeders", true] form used in encoded configs.
        if isinstance(data, (list, tuple)):
            if not 1 <= len(data) <= 2:
                raise ValueError("sort key must be [field] or [field, descending]")
            return {"field": data[0], "descending": data[1] if len(data) > 1 else False}
        return data

    def as_pair(self) -> tuple[str, bool]:
        return (self.field, self.descending)


class UserConfig(BaseModel):
    """Per-request user preferences, decoded from the addon URL.

    Merged over defaults and frozen once validated. Aliases are camelCase
    so encoded configs stay compatible with what Stremio clients store.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    qualities: frozenset[Quality] = Field(
        default=frozenset({Quality.UNKNOWN, Quality.HD_720P, Quality.HD_1080P}),
        description="Allowed qualities (0 = undetected).",
    )
    exclude_keywords: frozenset[str] = Field(
        default=frozenset(),
        alias="excludeKeywords",
        description="Release-name words that exclude a candidate (case-insensitive).",
    )
    max_torrents: int = Field(
        default=8,
        alias="maxTorrents",
        description="Max candidates returned after resolution and dedup.",
    )
    priotize_pack_torrents: int = Field(
        default=2,
        alias="priotizePackTorrents",
        description="Season packs forced into the list when none ranked in.",
    )
    sort_cached: tuple[SortKey, ...] = Field(
        default=(
            SortKey(field="quality", descending=True),
            SortKey(field="size", descending=True),
        ),
        alias="sortCached",
    )
    sort_uncached: tuple[SortKey, ...] = Field(
        default=(SortKey(field="seeders", descending=True),),
        alias="sortUncached",
    )
    force_cache_next_episode: bool = Field(
        default=False,
        alias="forceCacheNextEpisode",
        description="Ingest the next episode on the debrid account ahead of time.",
    )
    debrid_id: DebridId = Field(default="realdebrid", alias="debridId")
    debrid_api_key: str = Field(default="", alias="debridApiKey", repr=False)

    @field_validator("qualities", mode="before")
    @classmethod
    def _parse_qualities(cls, v: Any) -> Any:
        if isinstance(v, (list, tuple, set, frozenset)):
            return frozenset(Quality.parse(q) for q in v)
        return v

    @field_validator("exclude_keywords", mode="before")
    @classmethod
    def _lower_keywords(cls, v: Any) -> Any:
        if isinstance(v, str):
            v = v.split(",")
        if isinstance(v, (list, tuple, set, frozenset)):
            return frozenset(str(w).strip().lower() for w in v if str(w).strip())
        return v

    @field_validator("max_torrents")
    @classmethod
    def _validate_max_torrents(cls, v: int) -> int:
        if v < 1:
            raise ValueError("maxTorrents must be >= 1")
        return v

    @field_validator("priotize_pack_torrents")
    @classmethod
    def _validate_pack_count(cls, v: int) -> int:
        if v < 0:
            raise ValueError("priotizePackTorrents must be >= 0")
        return v

    def to_public_dict(self) -> dict[str, Any]:
        """Dump with camelCase aliases in a JSON-friendly shape."""
        return {
            "qualities": sorted(q.value for q in self.qualities),
            "excludeKeywords": sorted(self.exclude_keywords),
            "maxTorrents": self.max_torrents,
            "priotizePackTorrents": self.priotize_pack_torrents,
            "sortCached": [list(k.as_pair()) for k in self.sort_cached],
            "sortUncached": [list(k.as_pair()) for k in self.sort_uncached],
            "forceCacheNextEpisode": self.force_cache_next_episode,
            "debridId": self.debrid_id,
            "debridApiKey": self.debrid_api_key,
        }


class CacheConfig(BaseSettings):
    """Cache configuration (backend-agnostic)."""

    backend: Literal["diskcache", "redis"] = Field(
        default="diskcache",
        description="Cache backend: 'diskcache' (SQLite) or 'redis'",
    )
    directory: Path = Field(
        default=Path("./.cache/debridarr"),
        alias="dir",
        description="Diskcache SQLite DB path",
    )
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis connection URL (only when backend=redis)",
    )
    ttl_seconds: int = Field(
        default=3600,
        description="Default TTL for cache entries (seconds)",
    )
    max_concurrent: int = Field(
        default=10,
        description="Max parallel cache ops (semaphore limit)",
    )

    model_config = SettingsConfigDict(
        env_prefix="CACHE_",
        case_sensitive=False,
        populate_by_name=True,
    )

    @field_validator("directory", mode="before")
    @classmethod
    def _validate_dir(cls, v: Any) -> Path:
        return _normalize_path(v)

    @field_validator("ttl_seconds")
    @classmethod
    def _validate_ttl(cls, v: int) -> int:
        if v < 0:
            raise ValueError("ttl_seconds must be >= 0")
        return v


class JackettConfig(BaseModel):
    """Connection to the Jackett (Torznab) server."""

    url: str = Field(default="http://localhost:9117")
    api_key: str = Field(default="", repr=False)
    timeout_seconds: float = Field(
        default=20.0,
        description="Per-request timeout for indexer searches.",
    )
    indexers_ttl_seconds: int = Field(
        default=3600,
        description="How long the configured-indexer catalog is cached.",
    )

    @field_validator("timeout_seconds")
    @classmethod
    def _validate_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("jackett.timeout_seconds must be > 0")
        return v


class SearchConfig(BaseModel):
    """Resolution pipeline tuning."""

    info_concurrency: int = Field(
        default=5,
        description="Max simultaneous torrent-info resolutions.",
    )
    info_timeout_seconds: float = Field(
        default=33.0,
        description="Per-candidate torrent-info timeout.",
    )
    slow_indexer_seconds: float = Field(
        default=10.0,
        description="Resolutions slower than this are reported as slow indexers.",
    )
    download_ttl_seconds: int = Field(
        default=3600,
        description="TTL of resolved download handles.",
    )
    torrent_info_ttl_seconds: int = Field(
        default=7 * 86_400,
        description="TTL of resolved torrent infos (needed by later downloads).",
    )

    @field_validator("info_concurrency")
    @classmethod
    def _validate_concurrency(cls, v: int) -> int:
        if v < 1:
            raise ValueError("search.info_concurrency must be >= 1")
        return v

    @field_validator("info_timeout_seconds", "slow_indexer_seconds")
    @classmethod
    def _validate_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("search timeouts must be > 0")
        return v


class AppConfig(BaseModel):
    """
    Canonical application configuration (validated, final).

    Note:
    - YAML is expected to be sectioned (http/jackett/logging/cache/search).
    - Environment variables are handled by EnvOverrides(BaseSettings) to allow
      strict precedence control (defaults < YAML < ENV < CLI) in load.py.
    """

    app_name: str = Field(default="debridarr", description="Application name.")
    environment: Environment = Field(
        default="dev",
        description="Runtime environment (affects defaults like log format).",
    )
    public_url: str = Field(
        default="http://localhost:4000",
        description="Externally reachable base URL used in stream locators.",
    )

    # HTTP (YAML section: http.*)
    http_timeout_seconds: float = Field(
        default=30.0,
        validation_alias=AliasChoices(
            "http_timeout_seconds",
            AliasPath("http", "timeout_seconds"),
        ),
        description="Default HTTP timeout in seconds.",
    )
    http_user_agent: str = Field(
        default="debridarr/0.1.0",
        validation_alias=AliasChoices(
            "http_user_agent",
            AliasPath("http", "user_agent"),
        ),
        description="User-Agent for outgoing HTTP requests.",
    )
    http_retry_max_attempts: int = Field(
        default=2,
        validation_alias=AliasChoices(
            "http_retry_max_attempts",
            AliasPath("http", "retry_max_attempts"),
        ),
        description="Retries on HTTP 429/503 (0 disables).",
    )
    http_retry_backoff_base: float = Field(
        default=0.5,
        validation_alias=AliasChoices(
            "http_retry_backoff_base",
            AliasPath("http", "retry_backoff_base"),
        ),
        description="Base delay of the exponential retry backoff (seconds).",
    )
    http_retry_max_backoff: float = Field(
        default=10.0,
        validation_alias=AliasChoices(
            "http_retry_max_backoff",
            AliasPath("http", "retry_max_backoff"),
        ),
        description="Upper bound for a single retry delay (seconds).",
    )

    # Logging (YAML section: logging.*)
    log_level: LogLevel = Field(
        default="INFO",
        validation_alias=AliasChoices(
            "log_level",
            AliasPath("logging", "level"),
        ),
        description="Log level.",
    )
    log_format: Optional[LogFormat] = Field(
        default=None,
        validation_alias=AliasChoices(
            "log_format",
            AliasPath("logging", "format"),
        ),
        description=(
            "Log renderer format (console/json). If unset, derived from environment."
        ),
    )

    cinemeta_url: str = Field(
        default="https://v3-cinemeta.strem.io",
        validation_alias=AliasChoices(
            "cinemeta_url",
            AliasPath("cinemeta", "url"),
        ),
        description="Cinemeta addon base URL for title metadata.",
    )

    jackett: JackettConfig = Field(default_factory=JackettConfig)
    search: SearchConfig = Field(default_factory=SearchConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    user_defaults: UserConfig = Field(default_factory=UserConfig)

    @field_validator("http_timeout_seconds")
    @classmethod
    def _validate_http_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("http_timeout_seconds must be > 0")
        return v

    @field_validator("http_retry_max_attempts")
    @classmethod
    def _validate_retries(cls, v: int) -> int:
        if v < 0:
            raise ValueError("http_retry_max_attempts must be >= 0")
        return v

    @field_validator("public_url")
    @classmethod
    def _strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @model_validator(mode="after")
    def _derive_defaults(self) -> "AppConfig":
        # Default log format: console in dev/test, json in prod.
        if self.log_format is None:
            self.log_format = "json" if self.environment == "prod" else "console"
        return self

    def to_sectioned_dict(self) -> dict[str, Any]:
        """
        Dump configuration in the sectioned shape used by config.yaml/docs.
        """
        return {
            "app_name": self.app_name,
            "environment": self.environment,
            "public_url": self.public_url,
            "http": {
                "timeout_seconds": self.http_timeout_seconds,
                "user_agent": self.http_user_agent,
                "retry_max_attempts": self.http_retry_max_attempts,
                "retry_backoff_base": self.http_retry_backoff_base,
                "retry_max_backoff": self.http_retry_max_backoff,
            },
            "logging": {"level": self.log_level, "format": self.log_format},
            "cinemeta": {"url": self.cinemeta_url},
            "jackett": self.jackett.model_dump(exclude={"api_key"}),
            "search": self.search.model_dump(),
            "cache": {
                "backend": self.cache.backend,
                "dir": str(self.cache.directory),
                "ttl_seconds": self.cache.ttl_seconds,
            },
        }


class EnvOverrides(BaseSettings):
    """
    Environment-variable overrides (all optional).

    load.py creates EnvOverrides() to read DEBRIDARR_* variables, converts
    them to a dict of set values, merges into YAML/defaults, then validates
    AppConfig.

    Supported env var examples (flat, explicit):
    - DEBRIDARR_PUBLIC_URL
    - DEBRIDARR_JACKETT_URL / DEBRIDARR_JACKETT_API_KEY
    - DEBRIDARR_LOG_LEVEL
    """

    model_config = SettingsConfigDict(
        env_prefix="DEBRIDARR_",
        extra="ignore",
        case_sensitive=False,
    )

    app_name: Optional[str] = None
    environment: Optional[Environment] = None
    public_url: Optional[str] = None

    http_timeout_seconds: Optional[float] = None
    http_user_agent: Optional[str] = None
    http_retry_max_attempts: Optional[int] = None

    log_level: Optional[LogLevel] = None
    log_format: Optional[LogFormat] = None

    cinemeta_url: Optional[str] = None
    jackett_url: Optional[str] = None
    jackett_api_key: Optional[str] = None

    cache_backend: Optional[Literal["diskcache", "redis"]] = None
    cache_dir: Optional[Path] = None
    cache_redis_url: Optional[str] = None

    @field_validator("cache_dir", mode="before")
    @classmethod
    def _validate_paths(cls, v: Any) -> Any:
        if v is None:
            return None
        return _normalize_path(v)

    def to_update_dict(self) -> dict[str, Any]:
        """
        Return only values that were actually provided (non-None), for merging.
        """
        return self.model_dump(exclude_none=True)
