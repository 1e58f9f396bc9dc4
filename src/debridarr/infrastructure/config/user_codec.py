"""Addon-URL encoding of per-user preferences (base64url JSON)."""

from __future__ import annotations

import base64
import binascii
import json
from typing import Any

from pydantic import ValidationError

from debridarr.domain.entities.stream import InvalidUserConfigError

from .schema import UserConfig


def encode_user_config(config: UserConfig) -> str:
    """Encode *config* as an unpadded base64url JSON path segment."""
    raw = json.dumps(config.to_public_dict(), separators=(",", ":"), sort_keys=True)
    return base64.urlsafe_b64encode(raw.encode()).decode().rstrip("=")


def decode_user_config(encoded: str, defaults: UserConfig | None = None) -> UserConfig:
    """Decode a path segment and merge it over *defaults*.

    Both base64 alphabets are accepted, with or without padding.

    Raises:
        InvalidUserConfigError: Undecodable or invalid preferences.
    """
    base = (defaults or UserConfig()).to_public_dict()
    text = encoded.strip().replace("+", "-").replace("/", "_")
    text += "=" * (-len(text) % 4)
    try:
        data: Any = json.loads(base64.urlsafe_b64decode(text.encode()))
    except (binascii.Error, ValueError) as e:
        raise InvalidUserConfigError("User config is not valid base64 JSON") from e
    if not isinstance(data, dict):
        raise InvalidUserConfigError("User config must be a JSON object")
    try:
        return UserConfig.model_validate({**base, **data})
    except ValidationError as e:
        raise InvalidUserConfigError(f"Invalid user config: {e}") from e
