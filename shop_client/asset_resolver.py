"""Trait icon resolution with a positive-only, self-healing cache."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional, Sequence

from shop_client.asset_candidates import build_candidates, placeholder_for, trait_key
from shop_plugin.settings import DEFAULT_ASSET_BASE_URL, DEFAULT_ASSET_SET_VERSIONS

_LOGGER = logging.getLogger("TFT.ShopOverlay.Client.Assets")

ProbeFn = Callable[[str], Awaitable[bool]]


@dataclass(frozen=True)
class IconResolution:
    name: str
    url: Optional[str]
    placeholder: str
    cached: bool = False

    @property
    def resolved(self) -> bool:
        return self.url is not None


class AssetResolver:
    """Only confirmed URLs are cached; a URL reported as broken is evicted so the next call re-probes."""

    def __init__(
        self,
        probe: ProbeFn,
        *,
        base_url: str = DEFAULT_ASSET_BASE_URL,
        set_versions: Sequence[int] = DEFAULT_ASSET_SET_VERSIONS,
    ) -> None:
        self._probe = probe
        self._base_url = base_url
        self._set_versions = tuple(set_versions)
        self._cache: Dict[str, str] = {}
        self._inflight: Dict[str, asyncio.Task[Optional[str]]] = {}

    def cached_url(self, name: str) -> Optional[str]:
        return self._cache.get(trait_key(name))

    def cache_snapshot(self) -> Dict[str, str]:
        return dict(self._cache)

    async def resolve_trait_icon(self, name: str, hint_url: Optional[str] = None) -> IconResolution:
        key = trait_key(name)
        placeholder = placeholder_for(name)
        if not key:
            return IconResolution(name=name, url=None, placeholder=placeholder)
        cached = self._cache.get(key)
        if cached is not None:
            return IconResolution(name=name, url=cached, placeholder=placeholder, cached=True)

        task = self._inflight.get(key)
        if task is None or task.done():
            task = asyncio.create_task(self._probe_candidates(key, name, hint_url), name=f"TFTOverlay-Icon-{key}")
            self._inflight[key] = task
            task.add_done_callback(lambda done, key=key: self._forget_inflight(key, done))
        url = await asyncio.shield(task)
        return IconResolution(name=name, url=url, placeholder=placeholder)

    def report_load_failed(self, url: str) -> int:
        """Evict every cached entry pointing at ``url``; returns how many were dropped."""

        stale = [key for key, cached in self._cache.items() if cached == url]
        for key in stale:
            del self._cache[key]
        if stale:
            _LOGGER.debug("Evicted icon cache entries %s after load failure of %s", stale, url)
        return len(stale)

    def report_load_succeeded(self, url: str, name: str) -> None:
        key = trait_key(name)
        if key and url:
            self._cache.setdefault(key, url)

    def clear(self) -> None:
        for task in self._inflight.values():
            if not task.done():
                task.cancel()
        self._inflight.clear()
        self._cache.clear()

    async def _probe_candidates(self, key: str, name: str, hint_url: Optional[str]) -> Optional[str]:
        candidates = build_candidates(name, hint_url, base_url=self._base_url, set_versions=self._set_versions)
        for url in candidates:
            try:
                ok = await self._probe(url)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                _LOGGER.debug("Icon probe raised for %s: %s", url, exc)
                ok = False
            if ok:
                self._cache[key] = url
                _LOGGER.debug("Resolved trait icon %s -> %s", name, url)
                return url
        _LOGGER.info("No icon found for trait %s after %d candidates; using placeholder", name, len(candidates))
        return None

    def _forget_inflight(self, key: str, task: asyncio.Task[Optional[str]]) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
