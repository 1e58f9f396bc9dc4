"""Helpers shared by the debrid providers."""

from __future__ import annotations

import hashlib
from typing import Any

import httpx

from debridarr.domain.entities.stream import DebridError


def user_hash_for(api_key: str) -> str:
    """Stable account identifier that never exposes the key itself."""
    return hashlib.md5(api_key.encode()).hexdigest()


def json_or_error(resp: httpx.Response, provider: str) -> Any:
    """Decode a JSON body or raise ``DebridError`` naming *provider*."""
    try:
        return resp.json()
    except ValueError as e:
        raise DebridError(
            f"{provider}: invalid JSON response (HTTP {resp.status_code})"
        ) from e
