"""Normalises raw ``store/shop_pieces`` updates into immutable shop snapshots."""
from __future__ import annotations

import enum
import json
import logging
import re
import time
from dataclasses import dataclass, replace
from typing import Any, Callable, List, Mapping, Optional, Tuple, Union

from shop_plugin.events import RawFeatureUpdate
from shop_plugin.identifier_resolution import CostTier

_LOGGER = logging.getLogger("TFT.ShopOverlay.Shop")

SHOP_WIDTH = 5
SOLD_NAME = "sold"
_SLOT_SUFFIX = re.compile(r"_(\d+)$")


class ShopPayloadError(ValueError):
    """Raised when a shop_pieces payload cannot be decoded."""


class SlotMarker(enum.Enum):
    SOLD = "sold"
    EMPTY = "empty"


SOLD = SlotMarker.SOLD
EMPTY = SlotMarker.EMPTY


@dataclass(frozen=True)
class EntityRef:
    id: str
    cost_tier: CostTier


@dataclass(frozen=True)
class SlotEntry:
    slot_index: int
    occupant: Union[EntityRef, SlotMarker]

    @property
    def occupied(self) -> bool:
        return isinstance(self.occupant, EntityRef)


@dataclass(frozen=True)
class ShopSnapshot:
    slots: Tuple[SlotEntry, ...]
    raw_fingerprint: str
    captured_at: float

    @property
    def has_occupants(self) -> bool:
        return any(slot.occupied for slot in self.slots)

    def occupant_ids(self) -> List[str]:
        return [slot.occupant.id for slot in self.slots if isinstance(slot.occupant, EntityRef)]

    def slot(self, index: int) -> SlotEntry:
        return self.slots[index - 1]


SHOP_UPDATED = "shop_updated"
SHOP_EMPTY = "shop_empty"
PARSE_ERROR = "parse_error"


@dataclass(frozen=True)
class ShopSignal:
    kind: str
    snapshot: Optional[ShopSnapshot] = None
    error: Optional[str] = None


ShopListener = Callable[[ShopSignal], None]


def normalize_slot_key(key: Any) -> Optional[int]:
    """Map ``shop_3`` / ``store_3`` / ``slot_3`` (any ``*_N``) to 3; None when out of range."""

    if not isinstance(key, str):
        return None
    match = _SLOT_SUFFIX.search(key.strip())
    if match is None:
        return None
    index = int(match.group(1))
    if 1 <= index <= SHOP_WIDTH:
        return index
    return None


def decode_shop_pieces(raw: str) -> Mapping[str, Any]:
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as exc:
        raise ShopPayloadError(f"shop_pieces is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise ShopPayloadError(f"shop_pieces must be an object, got {type(data).__name__}")
    return data


def _is_sold(name: Any) -> bool:
    if not isinstance(name, str):
        return True
    token = name.strip()
    return not token or token.lower() == SOLD_NAME


class ShopSnapshotBuilder:
    """Owns the current shop snapshot and the dedup fingerprint."""

    def __init__(
        self,
        cost_resolver: Callable[[str], CostTier],
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._resolve_cost = cost_resolver
        self._clock = clock
        self._fingerprint: Optional[str] = None
        self._snapshot: Optional[ShopSnapshot] = None
        self._listeners: List[ShopListener] = []

    @property
    def fingerprint(self) -> Optional[str]:
        return self._fingerprint

    @property
    def snapshot(self) -> Optional[ShopSnapshot]:
        return self._snapshot

    def add_listener(self, listener: ShopListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: ShopListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def reset(self) -> None:
        """Forget the fingerprint and snapshot so the next payload is treated as new."""

        self._fingerprint = None
        self._snapshot = None

    def accept(self, update: RawFeatureUpdate) -> Optional[ShopSignal]:
        """Process one raw update; returns the emitted signal, or None when nothing was emitted."""

        if not update.is_shop_pieces:
            return None
        raw = update.value
        if raw == self._fingerprint:
            return None

        try:
            pieces = decode_shop_pieces(raw)
        except ShopPayloadError as exc:
            _LOGGER.warning("Error parsing shop_pieces: %s", exc)
            signal = ShopSignal(kind=PARSE_ERROR, error=str(exc))
            self._notify(signal)
            return signal

        snapshot = self._build_snapshot(pieces, raw)
        self._fingerprint = raw
        self._snapshot = snapshot
        if snapshot.has_occupants:
            _LOGGER.debug("Shop updated: %s", snapshot.occupant_ids())
            signal = ShopSignal(kind=SHOP_UPDATED, snapshot=snapshot)
        else:
            _LOGGER.debug("Shop empty: no champions in shop")
            signal = ShopSignal(kind=SHOP_EMPTY, snapshot=snapshot)
        self._notify(signal)
        return signal

    def reprice(self) -> Optional[ShopSnapshot]:
        """Re-resolve cost tiers of the held snapshot after the catalog changed.

        Returns a new snapshot with the same fingerprint, or None when nothing is held. Listeners
        are not notified; the caller decides whether to re-render.
        """

        snapshot = self._snapshot
        if snapshot is None:
            return None
        slots = []
        for slot in snapshot.slots:
            occupant = slot.occupant
            if isinstance(occupant, EntityRef):
                occupant = EntityRef(id=occupant.id, cost_tier=self._resolve_cost(occupant.id))
            slots.append(SlotEntry(slot_index=slot.slot_index, occupant=occupant))
        self._snapshot = replace(snapshot, slots=tuple(slots))
        return self._snapshot

    def _build_snapshot(self, pieces: Mapping[str, Any], raw: str) -> ShopSnapshot:
        occupants: dict[int, Union[EntityRef, SlotMarker]] = {}
        for key, value in pieces.items():
            index = normalize_slot_key(key)
            if index is None:
                _LOGGER.debug("Ignoring unrecognised shop slot key %r", key)
                continue
            if not isinstance(value, Mapping) or "name" not in value:
                continue
            name = value.get("name")
            if _is_sold(name):
                occupants[index] = SOLD
                continue
            champion_id = name.strip()
            occupants[index] = EntityRef(id=champion_id, cost_tier=self._resolve_cost(champion_id))
        slots = tuple(
            SlotEntry(slot_index=index, occupant=occupants.get(index, EMPTY))
            for index in range(1, SHOP_WIDTH + 1)
        )
        return ShopSnapshot(slots=slots, raw_fingerprint=raw, captured_at=self._clock())

    def _notify(self, signal: ShopSignal) -> None:
        for listener in list(self._listeners):
            try:
                listener(signal)
            except Exception as exc:
                _LOGGER.error("Shop listener failed for %s: %s", signal.kind, exc, exc_info=exc)
