from __future__ import annotations

from .load import load_config
from .schema import AppConfig, EnvOverrides, SortKey, UserConfig
from .user_codec import decode_user_config, encode_user_config

__all__ = [
    "AppConfig",
    "EnvOverrides",
    "SortKey",
    "UserConfig",
    "decode_user_config",
    "encode_user_config",
    "load_config",
]
