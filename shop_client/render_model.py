"""Projection of shop snapshot + catalog + wanted set into the renderer's slot model."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

from shop_client.asset_candidates import placeholder_for
from shop_plugin.catalog_source import CatalogEntry
from shop_plugin.champion_data import tier_color
from shop_plugin.identifier_resolution import CostTier, strip_set_prefix
from shop_plugin.shop_snapshot import SHOP_WIDTH, EntityRef, ShopSnapshot

_MIN_DRIFT_MATCH = 3


@dataclass(frozen=True)
class TraitView:
    name: str
    icon_url: Optional[str] = None
    placeholder: str = "?"


@dataclass(frozen=True)
class SlotView:
    slot_index: int
    occupied: bool
    cost_tier: Optional[CostTier] = None
    is_wanted: bool = False
    entity_id: Optional[str] = None
    display_name: Optional[str] = None
    color: Optional[str] = None
    traits: Tuple[TraitView, ...] = ()


@dataclass(frozen=True)
class RenderModel:
    slots: Tuple[SlotView, ...]

    @property
    def shop_empty(self) -> bool:
        return not any(slot.occupied for slot in self.slots)

    def wanted_indexes(self) -> Tuple[int, ...]:
        return tuple(slot.slot_index for slot in self.slots if slot.is_wanted)

    def to_payload(self) -> Dict[str, Any]:
        """Plain mapping for renderers that consume JSON-like data."""

        return {
            "shop_empty": self.shop_empty,
            "slots": [
                {
                    "slot": slot.slot_index,
                    "occupied": slot.occupied,
                    "tier": slot.cost_tier,
                    "wanted": slot.is_wanted,
                    "champion": slot.entity_id,
                    "name": slot.display_name,
                    "color": slot.color,
                    "traits": [
                        {"name": trait.name, "icon": trait.icon_url, "placeholder": trait.placeholder}
                        for trait in slot.traits
                    ],
                }
                for slot in self.slots
            ],
        }


EMPTY_RENDER_MODEL = RenderModel(
    slots=tuple(SlotView(slot_index=index, occupied=False) for index in range(1, SHOP_WIDTH + 1))
)


def is_wanted(champion_id: str, wanted_ids: Iterable[str]) -> bool:
    """Exact membership, else a wanted id's set-less name found inside the occupant id."""

    wanted = tuple(wanted_ids)
    if champion_id in wanted:
        return True
    occupant_base = strip_set_prefix(champion_id)
    for wanted_id in wanted:
        base = strip_set_prefix(wanted_id)
        if not base:
            continue
        if base == occupant_base:
            return True
        # Short names like "Vi" would otherwise light up "Viego".
        if len(base) >= _MIN_DRIFT_MATCH and base in champion_id:
            return True
    return False


def _trait_views(entry: Optional[CatalogEntry], icons: Mapping[str, str]) -> Tuple[TraitView, ...]:
    if entry is None:
        return ()
    return tuple(
        TraitView(name=trait.name, icon_url=icons.get(trait.name), placeholder=placeholder_for(trait.name))
        for trait in entry.traits
    )


def project(
    snapshot: Optional[ShopSnapshot],
    wanted_ids: Iterable[str],
    catalog: Optional[Mapping[str, CatalogEntry]],
    icons: Optional[Mapping[str, str]] = None,
) -> RenderModel:
    """Pure projection; identical inputs always give an equal RenderModel."""

    if snapshot is None:
        return EMPTY_RENDER_MODEL
    wanted = tuple(wanted_ids)
    icon_map = icons or {}
    views = []
    for index in range(1, SHOP_WIDTH + 1):
        slot = snapshot.slots[index - 1] if index <= len(snapshot.slots) else None
        occupant = slot.occupant if slot is not None else None
        if not isinstance(occupant, EntityRef):
            views.append(SlotView(slot_index=index, occupied=False))
            continue
        entry = catalog.get(occupant.id) if catalog else None
        views.append(
            SlotView(
                slot_index=index,
                occupied=True,
                cost_tier=occupant.cost_tier,
                is_wanted=is_wanted(occupant.id, wanted),
                entity_id=occupant.id,
                display_name=entry.display_name if entry is not None else strip_set_prefix(occupant.id),
                color=tier_color(occupant.cost_tier),
                traits=_trait_views(entry, icon_map),
            )
        )
    return RenderModel(slots=tuple(views))
