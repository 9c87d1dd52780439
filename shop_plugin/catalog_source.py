"""Versioned champion catalog with a remote source, bundled fallback and TTL cache."""
from __future__ import annotations

import asyncio
import logging
import re
import time
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Tuple

from shop_plugin.catalog_remote import CatalogFetchError
from shop_plugin.champion_data import ACTIVE_SET_NUMBER, CHAMPION_COSTS
from shop_plugin.identifier_resolution import CostTier, resolve_cost
from shop_plugin.settings import DEFAULT_ASSET_BASE_URL

_LOGGER = logging.getLogger("TFT.ShopOverlay.Catalog")

CATALOG_TTL_SECONDS = 3600.0
FAILURE_RETRY_SECONDS = 60.0
DENYLIST_TOKENS = (
    "dummy",
    "npc",
    "minion",
    "krug",
    "golem",
    "wolf",
    "raptor",
    "scuttle",
    "herald",
    "voidspawn",
    "training",
    "armory",
    "carousel",
)
SOURCE_REMOTE = "remote"
SOURCE_FALLBACK = "fallback"

_ASSET_EXTENSION = re.compile(r"\.(tex|dds)$", re.IGNORECASE)
_UNSAFE_PATH_CHARS = re.compile(r"[^0-9a-z_]+")

DefinitionFetcher = Callable[[], Awaitable[Mapping[str, Any]]]


@dataclass(frozen=True)
class TraitRef:
    name: str
    icon_ref: Optional[str] = None


@dataclass(frozen=True)
class CatalogEntry:
    id: str
    display_name: str
    cost: int
    image_ref: str
    traits: Tuple[TraitRef, ...] = ()


Catalog = Mapping[str, CatalogEntry]


def asset_path_to_url(path: str, base_url: str = DEFAULT_ASSET_BASE_URL) -> str:
    """``ASSETS/UX/Foo.TFT_Set16.tex`` -> ``<base>/assets/ux/foo.tft_set16.png``."""

    cleaned = (path or "").strip().replace("\\", "/").lstrip("/")
    cleaned = _ASSET_EXTENSION.sub(".png", cleaned).lower()
    return f"{base_url.rstrip('/')}/{cleaned}"


def fallback_image_ref(champion_id: str, base_url: str = DEFAULT_ASSET_BASE_URL) -> str:
    token = _UNSAFE_PATH_CHARS.sub("", champion_id.lower())
    return f"{base_url.rstrip('/')}/assets/characters/{token}/hud/{token}_square.tft_set{ACTIVE_SET_NUMBER}.png"


def is_denylisted(*values: Optional[str]) -> bool:
    for value in values:
        if not value:
            continue
        lowered = value.lower()
        if any(token in lowered for token in DENYLIST_TOKENS):
            return True
    return False


def _select_set_block(document: Mapping[str, Any], set_number: int) -> Optional[Mapping[str, Any]]:
    mutator = f"TFTSet{set_number}"
    blocks = document.get("setData")
    candidates: List[Mapping[str, Any]] = []
    if isinstance(blocks, list):
        candidates = [block for block in blocks if isinstance(block, Mapping)]
    for block in candidates:
        if block.get("mutator") == mutator:
            return block
    for block in candidates:
        if block.get("number") == set_number:
            return block
    sets = document.get("sets")
    if isinstance(sets, Mapping):
        block = sets.get(str(set_number))
        if isinstance(block, Mapping):
            return block
    return None


def _trait_table(block: Mapping[str, Any], base_url: str) -> Dict[str, TraitRef]:
    table: Dict[str, TraitRef] = {}
    traits = block.get("traits")
    if not isinstance(traits, list):
        return table
    for trait in traits:
        if not isinstance(trait, Mapping):
            continue
        name = trait.get("name")
        if not isinstance(name, str) or not name:
            continue
        icon = trait.get("icon")
        icon_ref = asset_path_to_url(icon, base_url) if isinstance(icon, str) and icon else None
        ref = TraitRef(name=name, icon_ref=icon_ref)
        table[name] = ref
        api_name = trait.get("apiName")
        if isinstance(api_name, str) and api_name:
            table.setdefault(api_name, ref)
    return table


def parse_content_set(
    document: Mapping[str, Any],
    *,
    set_number: int = ACTIVE_SET_NUMBER,
    base_url: str = DEFAULT_ASSET_BASE_URL,
) -> Dict[str, CatalogEntry]:
    """Extract playable champions of ``set_number`` from a content-set document."""

    block = _select_set_block(document, set_number)
    if block is None:
        return {}
    prefix = f"tft{set_number}_"
    traits = _trait_table(block, base_url)
    entries: Dict[str, CatalogEntry] = {}
    champions = block.get("champions")
    if not isinstance(champions, list):
        return entries
    for champion in champions:
        if not isinstance(champion, Mapping):
            continue
        api_name = champion.get("apiName") or champion.get("characterName")
        if not isinstance(api_name, str) or not api_name.lower().startswith(prefix):
            continue
        display_name = champion.get("name") if isinstance(champion.get("name"), str) else api_name
        if is_denylisted(api_name, display_name):
            continue
        cost = champion.get("cost")
        if isinstance(cost, bool) or not isinstance(cost, int) or cost <= 0:
            continue
        image = champion.get("squareIcon") or champion.get("tileIcon") or champion.get("icon")
        image_ref = asset_path_to_url(image, base_url) if isinstance(image, str) and image else fallback_image_ref(api_name, base_url)
        trait_refs = []
        raw_traits = champion.get("traits")
        if isinstance(raw_traits, list):
            for trait_name in raw_traits:
                if isinstance(trait_name, str) and trait_name:
                    trait_refs.append(traits.get(trait_name, TraitRef(name=trait_name)))
        entries[api_name] = CatalogEntry(
            id=api_name,
            display_name=display_name,
            cost=cost,
            image_ref=image_ref,
            traits=tuple(trait_refs),
        )
    return entries


def build_fallback_catalog(
    table: Mapping[str, int] = CHAMPION_COSTS,
    *,
    base_url: str = DEFAULT_ASSET_BASE_URL,
) -> Dict[str, CatalogEntry]:
    entries: Dict[str, CatalogEntry] = {}
    for champion_id, cost in table.items():
        entries[champion_id] = CatalogEntry(
            id=champion_id,
            display_name=champion_id.split("_", 1)[-1],
            cost=cost,
            image_ref=fallback_image_ref(champion_id, base_url),
        )
    return entries


class CatalogSource:
    """Process-wide catalog owner; at most one remote fetch is in flight at a time."""

    def __init__(
        self,
        fetch_definition: DefinitionFetcher,
        *,
        ttl_seconds: float = CATALOG_TTL_SECONDS,
        failure_retry_seconds: float = FAILURE_RETRY_SECONDS,
        set_number: int = ACTIVE_SET_NUMBER,
        fallback_table: Mapping[str, int] = CHAMPION_COSTS,
        asset_base_url: str = DEFAULT_ASSET_BASE_URL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._fetch_definition = fetch_definition
        self._ttl = max(1.0, float(ttl_seconds))
        self._failure_retry = max(1.0, min(float(failure_retry_seconds), self._ttl))
        self._set_number = set_number
        self._fallback_table = fallback_table
        self._asset_base_url = asset_base_url
        self._clock = clock
        self._catalog: Optional[Catalog] = None
        self._source: Optional[str] = None
        self._expires_at = 0.0
        self._pending: Optional[asyncio.Task[Catalog]] = None
        self._fetch_count = 0

    @property
    def source(self) -> Optional[str]:
        return self._source

    @property
    def fetch_count(self) -> int:
        return self._fetch_count

    @property
    def fallback_table(self) -> Mapping[str, int]:
        return self._fallback_table

    def current(self) -> Optional[Catalog]:
        """Last loaded catalog, even if stale; never triggers I/O."""

        return self._catalog

    def is_fresh(self) -> bool:
        return self._catalog is not None and self._clock() < self._expires_at

    def invalidate(self) -> None:
        self._expires_at = 0.0

    def resolve_cost(self, raw_id: str) -> CostTier:
        return resolve_cost(raw_id, self._catalog, self._fallback_table)

    def entry(self, champion_id: str) -> Optional[CatalogEntry]:
        catalog = self._catalog
        return catalog.get(champion_id) if catalog else None

    async def get_catalog(self) -> Catalog:
        if self.is_fresh():
            assert self._catalog is not None
            return self._catalog
        pending = self._pending
        if pending is None or pending.done():
            pending = asyncio.create_task(self._refresh(), name="TFTOverlay-CatalogFetch")
            self._pending = pending
        return await asyncio.shield(pending)

    async def close(self) -> None:
        pending = self._pending
        self._pending = None
        if pending is not None and not pending.done():
            pending.cancel()
            try:
                await pending
            except asyncio.CancelledError:
                pass

    async def _refresh(self) -> Catalog:
        self._fetch_count += 1
        entries: Dict[str, CatalogEntry] = {}
        try:
            document = await self._fetch_definition()
            if not isinstance(document, Mapping):
                raise CatalogFetchError(f"Catalog document must be a mapping, got {type(document).__name__}")
            entries = parse_content_set(document, set_number=self._set_number, base_url=self._asset_base_url)
        except asyncio.CancelledError:
            raise
        except CatalogFetchError as exc:
            _LOGGER.warning("Catalog fetch failed; using bundled fallback: %s", exc)
        except Exception as exc:
            _LOGGER.warning("Catalog parse failed; using bundled fallback: %s", exc, exc_info=exc)

        if entries:
            self._install(entries, SOURCE_REMOTE, self._ttl)
            _LOGGER.info("Loaded %d champions for set %d from remote catalog", len(entries), self._set_number)
        else:
            if self._source != SOURCE_FALLBACK:
                _LOGGER.info("Remote catalog unavailable or empty; using %d bundled champions", len(self._fallback_table))
            fallback = build_fallback_catalog(self._fallback_table, base_url=self._asset_base_url)
            self._install(fallback, SOURCE_FALLBACK, self._failure_retry)
        assert self._catalog is not None
        return self._catalog

    def _install(self, entries: Mapping[str, CatalogEntry], source: str, lifetime: float) -> None:
        self._catalog = MappingProxyType(dict(entries))
        self._source = source
        self._expires_at = self._clock() + lifetime
