"""Hardcoded default configuration values."""

from __future__ import annotations

from typing import Any

DEFAULT_CONFIG: dict[str, Any] = {
    "app_name": "debridarr",
    "environment": "dev",
    "public_url": "http://localhost:4000",
    "http": {
        "timeout_seconds": 30.0,
        "user_agent": "debridarr/0.1.0",
        "retry_max_attempts": 2,
        "retry_backoff_base": 0.5,
        "retry_max_backoff": 10.0,
    },
    "logging": {
        "level": "INFO",
        "format": None,  # Derived from environment in schema.py
    },
    "cinemeta": {
        "url": "https://v3-cinemeta.strem.io",
    },
    "jackett": {
        "url": "http://localhost:9117",
        "api_key": "",
        "timeout_seconds": 20.0,
    },
    "cache": {
        "dir": "./.cache/debridarr",
        "backend": "diskcache",
        "ttl_seconds": 3600,
    },
    "search": {
        "info_concurrency": 5,
        "info_timeout_seconds": 33.0,
        "slow_indexer_seconds": 10.0,
        "download_ttl_seconds": 3600,
    },
}
