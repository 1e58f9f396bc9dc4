"""Tests for config models and the addon-URL user config codec."""

from __future__ import annotations

import base64
import json

import pytest
from pydantic import ValidationError

from debridarr.domain.entities.stream import InvalidUserConfigError, Quality
from debridarr.infrastructure.config import (
    AppConfig,
    SortKey,
    UserConfig,
    decode_user_config,
    encode_user_config,
)


def _encode_raw(payload: object, *, alphabet: str = "url", pad: bool = False) -> str:
    raw = json.dumps(payload).encode()
    if alphabet == "url":
        text = base64.urlsafe_b64encode(raw).decode()
    else:
        text = base64.b64encode(raw).decode()
    return text if pad else text.rstrip("=")


# ---------------------------------------------------------------------------
# UserConfig
# ---------------------------------------------------------------------------


class TestUserConfig:
    def test_defaults(self) -> None:
        cfg = UserConfig()
        assert cfg.qualities == {Quality.UNKNOWN, Quality.HD_720P, Quality.HD_1080P}
        assert cfg.max_torrents == 8
        assert cfg.priotize_pack_torrents == 2
        assert [k.as_pair() for k in cfg.sort_cached] == [
            ("quality", True),
            ("size", True),
        ]
        assert [k.as_pair() for k in cfg.sort_uncached] == [("seeders", True)]
        assert cfg.debrid_id == "realdebrid"

    def test_qualities_accept_labels_and_numbers(self) -> None:
        cfg = UserConfig(qualities=["1080p", 720, "4k", "0"])
        assert cfg.qualities == {
            Quality.HD_1080P,
            Quality.HD_720P,
            Quality.UHD_4K,
            Quality.UNKNOWN,
        }

    def test_keywords_lowercased(self) -> None:
        cfg = UserConfig(excludeKeywords=["CAM", " TeleSync ", ""])
        assert cfg.exclude_keywords == {"cam", "telesync"}

    def test_keywords_from_comma_string(self) -> None:
        cfg = UserConfig(excludeKeywords="cam,ts")
        assert cfg.exclude_keywords == {"cam", "ts"}

    def test_sort_key_pair_forms(self) -> None:
        cfg = UserConfig(sortCached=[["size", True], ["seeders"]])
        assert [k.as_pair() for k in cfg.sort_cached] == [
            ("size", True),
            ("seeders", False),
        ]

    @pytest.mark.parametrize(
        "payload",
        [
            {"maxTorrents": 0},
            {"priotizePackTorrents": -1},
            {"debridId": "premiumize"},
            {"sortCached": [["name", True]]},
            {"qualities": [999]},
        ],
    )
    def test_invalid_values_rejected(self, payload: dict) -> None:
        with pytest.raises(ValidationError):
            UserConfig.model_validate(payload)

    def test_frozen(self) -> None:
        cfg = UserConfig()
        with pytest.raises(ValidationError):
            cfg.max_torrents = 3  # type: ignore[misc]

    def test_api_key_not_in_repr(self) -> None:
        assert "s3cret" not in repr(UserConfig(debridApiKey="s3cret"))

    def test_sort_key_model(self) -> None:
        assert SortKey.model_validate(["quality", True]).as_pair() == ("quality", True)


# ---------------------------------------------------------------------------
# Codec
# ---------------------------------------------------------------------------


class TestUserConfigCodec:
    def test_round_trip(self) -> None:
        cfg = UserConfig(
            qualities=[1080, 2160],
            excludeKeywords=["cam"],
            maxTorrents=4,
            debridId="alldebrid",
            debridApiKey="key/with+chars",
        )

        encoded = encode_user_config(cfg)

        assert "=" not in encoded
        assert "/" not in encoded and "+" not in encoded
        assert decode_user_config(encoded) == cfg

    def test_partial_config_merged_over_defaults(self) -> None:
        defaults = UserConfig(maxTorrents=12, excludeKeywords=["ts"])
        encoded = _encode_raw({"debridApiKey": "abc"})

        cfg = decode_user_config(encoded, defaults)

        assert cfg.debrid_api_key == "abc"
        assert cfg.max_torrents == 12
        assert cfg.exclude_keywords == {"ts"}

    def test_standard_alphabet_with_padding(self) -> None:
        encoded = _encode_raw({"maxTorrents": 3}, alphabet="std", pad=True)
        assert decode_user_config(encoded).max_torrents == 3

    @pytest.mark.parametrize("encoded", ["!!!notbase64", _encode_raw("text")[:3]])
    def test_garbage(self, encoded: str) -> None:
        with pytest.raises(InvalidUserConfigError):
            decode_user_config(encoded)

    def test_not_an_object(self) -> None:
        with pytest.raises(InvalidUserConfigError, match="JSON object"):
            decode_user_config(_encode_raw([1, 2, 3]))

    def test_invalid_values(self) -> None:
        with pytest.raises(InvalidUserConfigError):
            decode_user_config(_encode_raw({"maxTorrents": -5}))


# ---------------------------------------------------------------------------
# AppConfig
# ---------------------------------------------------------------------------


class TestAppConfig:
    def test_sectioned_aliases(self) -> None:
        cfg = AppConfig.model_validate(
            {
                "http": {"timeout_seconds": 12.0, "retry_max_attempts": 0},
                "logging": {"level": "DEBUG"},
                "cinemeta": {"url": "http://meta"},
            }
        )
        assert cfg.http_timeout_seconds == 12.0
        assert cfg.http_retry_max_attempts == 0
        assert cfg.log_level == "DEBUG"
        assert cfg.cinemeta_url == "http://meta"

    def test_log_format_derived_from_environment(self) -> None:
        assert AppConfig(environment="prod").log_format == "json"
        assert AppConfig(environment="dev").log_format == "console"

    def test_public_url_trailing_slash_stripped(self) -> None:
        assert AppConfig(public_url="http://addon:4000/").public_url == "http://addon:4000"

    @pytest.mark.parametrize(
        "payload",
        [
            {"http": {"timeout_seconds": 0}},
            {"http": {"retry_max_attempts": -1}},
            {"search": {"info_concurrency": 0}},
            {"search": {"info_timeout_seconds": 0}},
            {"jackett": {"timeout_seconds": -1}},
        ],
    )
    def test_invalid_values_rejected(self, payload: dict) -> None:
        with pytest.raises(ValidationError):
            AppConfig.model_validate(payload)

    def test_search_defaults(self) -> None:
        search = AppConfig().search
        assert search.info_concurrency == 5
        assert search.info_timeout_seconds == 33.0
        assert search.slow_indexer_seconds == 10.0
        assert search.download_ttl_seconds == 3600

    def test_sectioned_dump_hides_secrets(self) -> None:
        cfg = AppConfig.model_validate({"jackett": {"api_key": "jk"}})
        dumped = cfg.to_sectioned_dict()
        assert "api_key" not in dumped["jackett"]
        assert dumped["http"]["retry_max_attempts"] == 2
