"""Configuration loader for the shop overlay core."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional

from shop_plugin.champion_data import ACTIVE_SET_NUMBER

_LOGGER = logging.getLogger("TFT.ShopOverlay.Settings")

DEV_MODE_ENV_VAR = "TFT_OVERLAY_DEV_MODE"
ENV_PREFIX = "TFT_OVERLAY_"
SETTINGS_FILENAME = "shop_overlay.json"

TFT_GAME_ID = 21570
LOL_LAUNCHER_GAME_ID = 10902
DEFAULT_TRACKED_GAMES = (TFT_GAME_ID, LOL_LAUNCHER_GAME_ID)
DEFAULT_REQUIRED_FEATURES = ("match_info", "store", "roster", "game_info", "board", "live_client_data")
DEFAULT_CATALOG_URL = "https://raw.communitydragon.org/latest/cdragon/tft/en_us.json"
DEFAULT_ASSET_BASE_URL = "https://raw.communitydragon.org/latest/game"
DEFAULT_ASSET_SET_VERSIONS = tuple(range(ACTIVE_SET_NUMBER, 8, -1))

LOG_RETENTION_MIN = 1
LOG_RETENTION_MAX = 20


def parse_truthy(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    token = value.strip().lower()
    if token in {"1", "true", "yes", "on"}:
        return True
    if token in {"0", "false", "no", "off"}:
        return False
    return default


@dataclass(frozen=True)
class OverlaySettings:
    tracked_game_ids: tuple[int, ...] = DEFAULT_TRACKED_GAMES
    required_features: tuple[str, ...] = DEFAULT_REQUIRED_FEATURES
    catalog_url: str = DEFAULT_CATALOG_URL
    catalog_ttl_seconds: float = 3600.0
    catalog_timeout: float = 5.0
    grace_period_seconds: float = 1.5
    retry_interval_seconds: float = 5.0
    asset_base_url: str = DEFAULT_ASSET_BASE_URL
    asset_set_versions: tuple[int, ...] = DEFAULT_ASSET_SET_VERSIONS
    asset_probe_timeout: float = 3.0
    debug: bool = False
    log_retention: int = 5
    log_max_bytes: int = 512 * 1024


def _coerce_float(raw: Any, fallback: float, *, minimum: float) -> float:
    try:
        value = float(raw)
    except (TypeError, ValueError):
        value = fallback
    return max(minimum, value)


def _coerce_int(raw: Any, fallback: int, *, minimum: int, maximum: Optional[int] = None) -> int:
    try:
        value = int(raw)
    except (TypeError, ValueError):
        value = fallback
    value = max(minimum, value)
    if maximum is not None:
        value = min(maximum, value)
    return value


def _coerce_int_tuple(raw: Any, fallback: tuple[int, ...]) -> tuple[int, ...]:
    if isinstance(raw, str):
        raw = [token for token in raw.replace(";", ",").split(",") if token.strip()]
    if not isinstance(raw, (list, tuple)):
        return fallback
    values: list[int] = []
    for item in raw:
        try:
            number = int(item)
        except (TypeError, ValueError):
            continue
        if number not in values:
            values.append(number)
    return tuple(values) or fallback


def _coerce_str_tuple(raw: Any, fallback: tuple[str, ...]) -> tuple[str, ...]:
    if isinstance(raw, str):
        raw = raw.split(",")
    if not isinstance(raw, (list, tuple)):
        return fallback
    cleaned = [str(item).strip() for item in raw if isinstance(item, (str, int))]
    return tuple(filter(None, cleaned)) or fallback


def _coerce_url(raw: Any, fallback: str) -> str:
    if not isinstance(raw, str):
        return fallback
    value = raw.strip()
    return value or fallback


def settings_from_mapping(data: Mapping[str, Any], base: Optional[OverlaySettings] = None) -> OverlaySettings:
    """Build settings from a loosely typed mapping; invalid values keep the base value."""

    base = base or OverlaySettings()
    debug_raw = data.get("debug")
    if isinstance(debug_raw, str):
        debug = parse_truthy(debug_raw, base.debug)
    elif debug_raw is None:
        debug = base.debug
    else:
        debug = bool(debug_raw)
    return replace(
        base,
        tracked_game_ids=_coerce_int_tuple(data.get("tracked_game_ids"), base.tracked_game_ids),
        required_features=_coerce_str_tuple(data.get("required_features"), base.required_features),
        catalog_url=_coerce_url(data.get("catalog_url"), base.catalog_url),
        catalog_ttl_seconds=_coerce_float(data.get("catalog_ttl_seconds"), base.catalog_ttl_seconds, minimum=1.0),
        catalog_timeout=_coerce_float(data.get("catalog_timeout"), base.catalog_timeout, minimum=0.5),
        grace_period_seconds=_coerce_float(data.get("grace_period_seconds"), base.grace_period_seconds, minimum=0.0),
        retry_interval_seconds=_coerce_float(
            data.get("retry_interval_seconds"), base.retry_interval_seconds, minimum=0.1
        ),
        asset_base_url=_coerce_url(data.get("asset_base_url"), base.asset_base_url).rstrip("/"),
        asset_set_versions=tuple(
            sorted(_coerce_int_tuple(data.get("asset_set_versions"), base.asset_set_versions), reverse=True)
        ),
        asset_probe_timeout=_coerce_float(data.get("asset_probe_timeout"), base.asset_probe_timeout, minimum=0.5),
        debug=debug,
        log_retention=_coerce_int(
            data.get("log_retention"), base.log_retention, minimum=LOG_RETENTION_MIN, maximum=LOG_RETENTION_MAX
        ),
        log_max_bytes=_coerce_int(data.get("log_max_bytes"), base.log_max_bytes, minimum=16 * 1024),
    )


def _env_overrides(environ: Mapping[str, str], keys: Iterable[str]) -> dict[str, str]:
    overrides: dict[str, str] = {}
    for key in keys:
        env_key = ENV_PREFIX + key.upper()
        if env_key in environ:
            overrides[key] = environ[env_key]
    return overrides


def load_settings(path: Optional[Path] = None, *, environ: Optional[Mapping[str, str]] = None) -> OverlaySettings:
    """Load settings from JSON, then apply TFT_OVERLAY_* environment overrides.

    A missing or unreadable file yields defaults; the overlay must start without one.
    """

    environ = os.environ if environ is None else environ
    data: dict[str, Any] = {}
    if path is not None:
        try:
            loaded = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            loaded = {}
        except (OSError, json.JSONDecodeError) as exc:
            _LOGGER.warning("Ignoring unreadable settings file %s: %s", path, exc)
            loaded = {}
        if isinstance(loaded, dict):
            data.update(loaded)

    settings = settings_from_mapping(data)
    overrides = _env_overrides(environ, OverlaySettings.__dataclass_fields__.keys())
    if overrides:
        _LOGGER.debug("Applied env overrides: %s", ", ".join(sorted(overrides)))
        settings = settings_from_mapping(overrides, base=settings)
    if parse_truthy(environ.get(DEV_MODE_ENV_VAR)):
        settings = replace(settings, debug=True)
    return settings
