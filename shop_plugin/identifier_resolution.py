"""Champion identifier resolution.

Telemetry reports champions by API name (``TFT16_Jhin``), but the names drift
between content sets, punctuation is inconsistent (``Kog'Maw`` vs ``KogMaw``)
and mid-set patches occasionally leak ids from a previous set. Cost lookup
therefore walks a cascade, first match wins:

1. exact id in the live catalog
2. exact id in the bundled fallback table
3. set prefix stripped and the active prefix re-applied (fallback table)
4. fuzzy: a fallback bare name contained in the raw id (bare names of three
   characters or more, table scanned in sorted key order)
5. the ``"?"`` sentinel

Everything here is pure; callers pass the tables in.
"""
from __future__ import annotations

import logging
import re
from typing import Any, Mapping, Optional, Union

from shop_plugin.champion_data import ACTIVE_SET_PREFIX, CHAMPION_COSTS, UNKNOWN_TIER

_LOGGER = logging.getLogger("TFT.ShopOverlay.Catalog")

CostTier = Union[int, str]

_SET_PREFIX = re.compile(r"^TFT\d+_", re.IGNORECASE)
_NON_ALNUM = re.compile(r"[^0-9a-z]+")
_MIN_FUZZY_LENGTH = 3


def strip_set_prefix(raw_id: str) -> str:
    """``TFT16_Jhin`` -> ``Jhin``; ids without a set prefix are returned unchanged."""

    return _SET_PREFIX.sub("", raw_id or "", count=1)


def bare_name(key: str) -> str:
    """Suffix after the last underscore, the way table keys encode the champion name."""

    return (key or "").rsplit("_", 1)[-1]


def normalize_token(value: str) -> str:
    return _NON_ALNUM.sub("", (value or "").lower())


def _catalog_cost(catalog: Optional[Mapping[str, Any]], key: str) -> Optional[int]:
    if not catalog:
        return None
    entry = catalog.get(key)
    if entry is None:
        return None
    cost = getattr(entry, "cost", entry)
    return cost if isinstance(cost, int) and cost > 0 else None


def _table_cost(table: Mapping[str, int], key: str) -> Optional[int]:
    cost = table.get(key)
    return cost if isinstance(cost, int) and cost > 0 else None


def fuzzy_match(raw_id: str, table: Mapping[str, int]) -> Optional[str]:
    """Return the first table key (sorted order) whose bare name occurs inside ``raw_id``."""

    haystack = normalize_token(raw_id)
    if not haystack:
        return None
    for key in sorted(table):
        needle = normalize_token(bare_name(key))
        if len(needle) < _MIN_FUZZY_LENGTH:
            continue
        if needle in haystack:
            return key
    return None


def resolve_cost(
    raw_id: str,
    catalog: Optional[Mapping[str, Any]] = None,
    fallback: Mapping[str, int] = CHAMPION_COSTS,
    set_prefix: str = ACTIVE_SET_PREFIX,
) -> CostTier:
    """Resolve a raw champion id to its cost tier, ``"?"`` when nothing matches."""

    if not raw_id:
        return UNKNOWN_TIER

    cost = _catalog_cost(catalog, raw_id)
    if cost is not None:
        return cost

    cost = _table_cost(fallback, raw_id)
    if cost is not None:
        return cost

    cost = _table_cost(fallback, set_prefix + strip_set_prefix(raw_id))
    if cost is not None:
        return cost

    key = fuzzy_match(raw_id, fallback)
    if key is not None:
        _LOGGER.debug("Champion %s resolved by name containment via %s", raw_id, key)
        return fallback[key]

    _LOGGER.info("Unknown champion: %s", raw_id)
    return UNKNOWN_TIER
