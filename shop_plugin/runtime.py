"""Wires the shop overlay pipeline together.

Raw events enter through the dispatcher, pass the connection gate, become
shop snapshots and leave as RenderModels through the renderer sink. The
runtime holds exactly one current snapshot. Icon probing is tagged with the
snapshot and session generation that started it and its result is dropped if
either has moved on by the time it finishes; a late catalog refresh only
re-projects while a game session is active.
"""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable, Coroutine, Dict, Optional, Set, Tuple

from shop_client.asset_probe import HttpAssetProbe
from shop_client.asset_resolver import AssetResolver
from shop_client.render_model import EMPTY_RENDER_MODEL, RenderModel, project
from shop_plugin.catalog_remote import CatalogRemote
from shop_plugin.catalog_source import CatalogSource, TraitRef
from shop_plugin.connection import ConnectionState, ConnectionStateMachine, EventSource
from shop_plugin.event_queue import EventDispatcher
from shop_plugin.events import (
    AssetLoadFailed,
    AssetLoadSucceeded,
    ElevationRequired,
    FeatureUpdate,
    GameDetected,
    GameError,
    GameExit,
    RawFeatureUpdate,
    WantedToggled,
)
from shop_plugin.settings import OverlaySettings
from shop_plugin.shop_snapshot import (
    PARSE_ERROR,
    SHOP_EMPTY,
    SHOP_UPDATED,
    EntityRef,
    ShopSignal,
    ShopSnapshot,
    ShopSnapshotBuilder,
)
from shop_plugin.wanted_set import MemoryStore, OpaqueStore, WantedSet

_LOGGER = logging.getLogger("TFT.ShopOverlay.Runtime")

RendererSink = Callable[[RenderModel], None]


class ShopOverlayRuntime:
    """Owns one instance of every pipeline component."""

    def __init__(
        self,
        event_source: EventSource,
        *,
        settings: Optional[OverlaySettings] = None,
        store: Optional[OpaqueStore] = None,
        renderer: Optional[RendererSink] = None,
        catalog: Optional[CatalogSource] = None,
        asset_resolver: Optional[AssetResolver] = None,
        dispatcher: Optional[EventDispatcher] = None,
        sleep: Callable[[float], Coroutine[Any, Any, None]] = asyncio.sleep,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.settings = settings or OverlaySettings()
        self._renderer = renderer
        self._remote: Optional[CatalogRemote] = None
        self._probe: Optional[HttpAssetProbe] = None

        if catalog is None:
            self._remote = CatalogRemote(self.settings.catalog_url, timeout=self.settings.catalog_timeout)
            catalog = CatalogSource(
                self._remote.fetch_content_set_definition,
                ttl_seconds=self.settings.catalog_ttl_seconds,
                asset_base_url=self.settings.asset_base_url,
            )
        self.catalog = catalog

        if asset_resolver is None:
            self._probe = HttpAssetProbe(timeout=self.settings.asset_probe_timeout)
            asset_resolver = AssetResolver(
                self._probe,
                base_url=self.settings.asset_base_url,
                set_versions=self.settings.asset_set_versions,
            )
        self.assets = asset_resolver

        self.wanted = WantedSet(store if store is not None else MemoryStore())
        self.wanted.add_listener(self._on_wanted_changed)

        self.builder = ShopSnapshotBuilder(self.catalog.resolve_cost, clock=clock)
        self.builder.add_listener(self._on_shop_signal)

        self.connection = ConnectionStateMachine(
            event_source,
            required_features=self.settings.required_features,
            grace_period=self.settings.grace_period_seconds,
            retry_interval=self.settings.retry_interval_seconds,
            on_update=self._on_feature_update,
            on_session_reset=self._on_session_reset,
            on_state_change=self._on_state_change,
            sleep=sleep,
        )

        self.dispatcher = dispatcher or EventDispatcher()
        self._register_handlers()

        self._snapshot: Optional[ShopSnapshot] = None
        self._render_model: RenderModel = EMPTY_RENDER_MODEL
        self._icon_task: Optional[asyncio.Task[None]] = None
        self._tasks: Set[asyncio.Task[Any]] = set()
        self._started = False

    # Lifecycle -------------------------------------------------------------------

    @property
    def render_model(self) -> RenderModel:
        return self._render_model

    @property
    def snapshot(self) -> Optional[ShopSnapshot]:
        return self._snapshot

    async def start(self) -> None:
        if self._started:
            return
        self._started = True
        self.dispatcher.start()
        self.connection.register_tracked_games(self.settings.tracked_game_ids)
        self._emit(EMPTY_RENDER_MODEL)
        self._spawn(self._refresh_catalog(), "catalog-warm")
        self.connection.start_reconciliation()
        _LOGGER.info("Shop overlay runtime started; tracking %s", list(self.settings.tracked_game_ids))

    async def stop(self) -> None:
        if not self._started:
            return
        self._started = False
        # Drain queued events first; their handlers may still spawn background work.
        await self.dispatcher.stop()
        await self.connection.shutdown()
        self._cancel_icon_task()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as exc:
                _LOGGER.debug("Background task ended with error during stop: %s", exc)
        await self.catalog.close()
        self.assets.clear()
        if self._remote is not None:
            self._remote.close()
        if self._probe is not None:
            self._probe.close()
        _LOGGER.info("Shop overlay runtime stopped")

    def submit(self, event: Any) -> bool:
        return self.dispatcher.submit(event)

    # Event routing -----------------------------------------------------------------

    def _register_handlers(self) -> None:
        register = self.dispatcher.register
        register(GameDetected, lambda event: self.connection.on_game_detected(event.game_id))
        register(GameExit, lambda event: self.connection.on_game_exit(event.game_id))
        register(ElevationRequired, lambda event: self.connection.on_elevation_required(event.game_id))
        register(GameError, lambda event: self.connection.on_error(event.game_id, event.info))
        register(FeatureUpdate, lambda event: self.connection.forward(event.update, event.game_id))
        register(AssetLoadFailed, self._on_asset_failed)
        register(AssetLoadSucceeded, lambda event: self.assets.report_load_succeeded(event.url, event.name))
        register(WantedToggled, lambda event: self.wanted.toggle(event.champion_id))

    def _on_feature_update(self, update: RawFeatureUpdate) -> None:
        self.builder.accept(update)

    def _on_shop_signal(self, signal: ShopSignal) -> None:
        if signal.kind == PARSE_ERROR:
            return
        self._snapshot = signal.snapshot
        if signal.kind == SHOP_EMPTY:
            self._cancel_icon_task()
            self._emit(EMPTY_RENDER_MODEL)
            return
        if signal.kind == SHOP_UPDATED and signal.snapshot is not None:
            self._render()
            self._schedule_icon_resolution(signal.snapshot)

    def _on_session_reset(self) -> None:
        self.builder.reset()
        self._snapshot = None
        self._cancel_icon_task()
        self._emit(EMPTY_RENDER_MODEL)

    def _on_state_change(self, previous: ConnectionState, current: ConnectionState) -> None:
        if current is ConnectionState.CONNECTED and not self.catalog.is_fresh():
            self._spawn(self._refresh_catalog(), "catalog-refresh")

    def _on_wanted_changed(self, ids: Tuple[str, ...]) -> None:
        if self._snapshot is not None:
            self._render()

    def _on_asset_failed(self, event: AssetLoadFailed) -> None:
        if self.assets.report_load_failed(event.url) and self._snapshot is not None:
            self._render()
            self._schedule_icon_resolution(self._snapshot)

    # Projection ----------------------------------------------------------------------

    def _render(self) -> None:
        snapshot = self._snapshot
        if snapshot is None:
            self._emit(EMPTY_RENDER_MODEL)
            return
        catalog = self.catalog.current()
        icons: Dict[str, str] = {}
        for trait in self._traits_for(snapshot):
            url = self.assets.cached_url(trait.name)
            if url is not None:
                icons[trait.name] = url
        self._emit(project(snapshot, self.wanted.ids(), catalog, icons))

    def _emit(self, model: RenderModel) -> None:
        self._render_model = model
        if self._renderer is None:
            return
        try:
            self._renderer(model)
        except Exception as exc:
            _LOGGER.error("Renderer rejected render model: %s", exc, exc_info=exc)

    def _traits_for(self, snapshot: ShopSnapshot) -> Tuple[TraitRef, ...]:
        traits: Dict[str, TraitRef] = {}
        for slot in snapshot.slots:
            occupant = slot.occupant
            if not isinstance(occupant, EntityRef):
                continue
            entry = self.catalog.entry(occupant.id)
            if entry is None:
                continue
            for trait in entry.traits:
                traits.setdefault(trait.name, trait)
        return tuple(traits.values())

    # Background work ------------------------------------------------------------------

    def _schedule_icon_resolution(self, snapshot: ShopSnapshot) -> None:
        self._cancel_icon_task()
        pending = [trait for trait in self._traits_for(snapshot) if self.assets.cached_url(trait.name) is None]
        if not pending:
            return
        self._icon_task = self._spawn(
            self._resolve_icons(snapshot, self.connection.generation, pending), "icon-resolution"
        )

    async def _resolve_icons(self, snapshot: ShopSnapshot, generation: int, traits: list[TraitRef]) -> None:
        resolved = 0
        for trait in traits:
            result = await self.assets.resolve_trait_icon(trait.name, trait.icon_ref)
            if result.resolved:
                resolved += 1
        if snapshot is not self._snapshot or generation != self.connection.generation:
            _LOGGER.debug("Dropping icon results for a superseded shop snapshot")
            return
        if resolved:
            self._render()

    async def _refresh_catalog(self) -> None:
        await self.catalog.get_catalog()
        if self.connection.active_id is None:
            return
        if self._snapshot is not None:
            self._snapshot = self.builder.reprice()
            self._render()
            if self._snapshot is not None:
                self._schedule_icon_resolution(self._snapshot)

    def _cancel_icon_task(self) -> None:
        task = self._icon_task
        self._icon_task = None
        if task is not None and not task.done():
            task.cancel()

    def _spawn(self, coro: Coroutine[Any, Any, None], label: str) -> asyncio.Task[None]:
        task = asyncio.create_task(coro, name=f"TFTOverlay-{label}")
        self._tasks.add(task)
        task.add_done_callback(self._task_finished)
        return task

    def _task_finished(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            _LOGGER.warning("Background task %s failed: %s", task.get_name(), exc)
