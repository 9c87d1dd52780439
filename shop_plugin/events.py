"""Event values delivered to the overlay core.

Game events mirror what the game-event transport reports; the asset events are
the renderer's feedback about icon URLs it tried to load.
"""
from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Union

STORE_FEATURE = "store"
SHOP_PIECES_KEY = "shop_pieces"


@dataclass(frozen=True)
class RawFeatureUpdate:
    feature: str
    key: str
    value: str

    @property
    def is_shop_pieces(self) -> bool:
        return self.feature == STORE_FEATURE and self.key == SHOP_PIECES_KEY

    @classmethod
    def from_info(cls, info: Mapping[str, Any]) -> Optional["RawFeatureUpdate"]:
        """Build an update from a transport ``info`` mapping; non-string values are re-serialised."""

        feature = info.get("feature")
        key = info.get("key")
        if not isinstance(feature, str) or not isinstance(key, str):
            return None
        value = info.get("value")
        if value is None:
            return None
        if not isinstance(value, str):
            try:
                value = json.dumps(value, sort_keys=True, ensure_ascii=False)
            except (TypeError, ValueError):
                return None
        return cls(feature=feature, key=key, value=value)


@dataclass(frozen=True)
class GameDetected:
    game_id: int
    name: str = ""
    pid: Optional[int] = None


@dataclass(frozen=True)
class GameExit:
    game_id: int
    process_name: str = ""
    pid: Optional[int] = None


@dataclass(frozen=True)
class ElevationRequired:
    game_id: int


@dataclass(frozen=True)
class GameError:
    game_id: int
    info: Any = None


@dataclass(frozen=True)
class FeatureUpdate:
    game_id: int
    update: RawFeatureUpdate


@dataclass(frozen=True)
class AssetLoadFailed:
    url: str


@dataclass(frozen=True)
class AssetLoadSucceeded:
    url: str
    name: str


@dataclass(frozen=True)
class WantedToggled:
    champion_id: str


OverlayEvent = Union[
    GameDetected,
    GameExit,
    ElevationRequired,
    GameError,
    FeatureUpdate,
    AssetLoadFailed,
    AssetLoadSucceeded,
    WantedToggled,
]
