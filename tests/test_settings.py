from __future__ import annotations

import json

import pytest

from shop_plugin.settings import (
    DEFAULT_TRACKED_GAMES,
    OverlaySettings,
    load_settings,
    parse_truthy,
    settings_from_mapping,
)


@pytest.mark.parametrize(
    "raw, expected",
    [("1", True), ("Yes", True), (" on ", True), ("0", False), ("off", False), ("maybe", False), (None, False)],
)
def test_parse_truthy(raw, expected):
    assert parse_truthy(raw) is expected


def test_defaults_track_tft_and_launcher():
    settings = OverlaySettings()
    assert settings.tracked_game_ids == (21570, 10902)
    assert "store" in settings.required_features
    assert settings.asset_set_versions[0] == 16
    assert settings.asset_set_versions[-1] == 9


def test_missing_file_yields_defaults(tmp_path):
    assert load_settings(tmp_path / "missing.json", environ={}) == OverlaySettings()


def test_unreadable_file_yields_defaults(tmp_path):
    path = tmp_path / "shop_overlay.json"
    path.write_text("{broken", encoding="utf-8")
    assert load_settings(path, environ={}) == OverlaySettings()


def test_file_values_are_coerced(tmp_path):
    path = tmp_path / "shop_overlay.json"
    path.write_text(
        json.dumps(
            {
                "tracked_game_ids": [21570, "21570", "bad"],
                "catalog_ttl_seconds": "120",
                "retry_interval_seconds": -4,
                "asset_base_url": "https://cdn.test/game/",
                "asset_set_versions": [14, 16, 15],
                "log_retention": 99,
                "debug": "true",
            }
        ),
        encoding="utf-8",
    )

    settings = load_settings(path, environ={})

    assert settings.tracked_game_ids == (21570,)
    assert settings.catalog_ttl_seconds == 120.0
    assert settings.retry_interval_seconds == 0.1
    assert settings.asset_base_url == "https://cdn.test/game"
    assert settings.asset_set_versions == (16, 15, 14)
    assert settings.log_retention == 20
    assert settings.debug is True


def test_invalid_values_keep_base():
    base = OverlaySettings(catalog_timeout=7.0)
    settings = settings_from_mapping({"catalog_timeout": "soon", "tracked_game_ids": "nope"}, base=base)
    assert settings.catalog_timeout == 7.0
    assert settings.tracked_game_ids == DEFAULT_TRACKED_GAMES


def test_environment_overrides_file(tmp_path):
    path = tmp_path / "shop_overlay.json"
    path.write_text(json.dumps({"grace_period_seconds": 3}), encoding="utf-8")
    environ = {
        "TFT_OVERLAY_GRACE_PERIOD_SECONDS": "0.5",
        "TFT_OVERLAY_TRACKED_GAME_IDS": "21570;5426",
        "TFT_OVERLAY_REQUIRED_FEATURES": "store, board",
    }

    settings = load_settings(path, environ=environ)

    assert settings.grace_period_seconds == 0.5
    assert settings.tracked_game_ids == (21570, 5426)
    assert settings.required_features == ("store", "board")


def test_dev_mode_forces_debug():
    settings = load_settings(None, environ={"TFT_OVERLAY_DEV_MODE": "1"})
    assert settings.debug is True
