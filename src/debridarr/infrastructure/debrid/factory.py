"""Debrid provider factory."""

from __future__ import annotations

import httpx

from debridarr.domain.ports.debrid import DebridPort
from debridarr.infrastructure.config.schema import UserConfig

from .alldebrid import AllDebrid
from .realdebrid import RealDebrid


def create_debrid(user_config: UserConfig, http_client: httpx.AsyncClient) -> DebridPort:
    """Build the provider selected by ``user_config.debrid_id``.

    Raises:
        ValueError: Unknown provider id.
    """
    if user_config.debrid_id == "realdebrid":
        return RealDebrid(api_key=user_config.debrid_api_key, http_client=http_client)
    if user_config.debrid_id == "alldebrid":
        return AllDebrid(api_key=user_config.debrid_api_key, http_client=http_client)
    raise ValueError(f"Unknown debrid provider: {user_config.debrid_id}")
