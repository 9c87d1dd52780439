"""Qt-side bridge: runs the overlay runtime on a background asyncio loop and forwards models to the Qt thread."""
from __future__ import annotations

import asyncio
import logging
import threading
from typing import Any, Callable, Optional

from PyQt6.QtCore import QObject, pyqtSignal, pyqtSlot

from shop_client.render_model import RenderModel
from shop_plugin.events import AssetLoadFailed, AssetLoadSucceeded, WantedToggled

_LOGGER = logging.getLogger("TFT.ShopOverlay.Client.Bridge")

SubmitFn = Callable[[Any], bool]


class RenderBridge(QObject):
    """Carries RenderModels to the Qt thread and renderer feedback back to the dispatcher."""

    render_model_changed = pyqtSignal(object)
    payload_changed = pyqtSignal(dict)

    def __init__(self, submit: Optional[SubmitFn] = None) -> None:
        super().__init__()
        self._submit = submit
        self._last_model: Optional[RenderModel] = None

    @property
    def last_model(self) -> Optional[RenderModel]:
        return self._last_model

    def attach(self, submit: SubmitFn) -> None:
        self._submit = submit

    def publish(self, model: RenderModel) -> None:
        """Renderer sink; safe to call from the runtime thread (queued signal delivery)."""

        self._last_model = model
        self.render_model_changed.emit(model)
        self.payload_changed.emit(model.to_payload())

    @pyqtSlot(str)
    def report_asset_failed(self, url: str) -> None:
        self._forward(AssetLoadFailed(url=url))

    @pyqtSlot(str, str)
    def report_asset_loaded(self, url: str, name: str) -> None:
        self._forward(AssetLoadSucceeded(url=url, name=name))

    @pyqtSlot(str)
    def toggle_wanted(self, champion_id: str) -> None:
        self._forward(WantedToggled(champion_id=champion_id))

    def _forward(self, event: Any) -> None:
        submit = self._submit
        if submit is None:
            _LOGGER.debug("Bridge not attached; dropping %s", type(event).__name__)
            return
        if not submit(event):
            _LOGGER.warning("Runtime did not accept %s", type(event).__name__)


class RuntimeHost:
    """Owns the background thread whose asyncio loop drives the runtime."""

    def __init__(self, runtime_factory: Callable[[], Any], bridge: RenderBridge) -> None:
        self._runtime_factory = runtime_factory
        self._bridge = bridge
        self._thread: Optional[threading.Thread] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._stop_event: Optional[asyncio.Event] = None
        self._ready = threading.Event()
        self.runtime: Any = None

    def start(self, timeout: float = 5.0) -> bool:
        if self._thread and self._thread.is_alive():
            return True
        self._ready.clear()
        self._thread = threading.Thread(target=self._thread_main, name="TFTOverlay-Runtime", daemon=True)
        self._thread.start()
        if not self._ready.wait(timeout):
            _LOGGER.warning("Overlay runtime did not start within %.1fs", timeout)
            return False
        return self.runtime is not None

    def stop(self, timeout: float = 5.0) -> None:
        loop = self._loop
        stop_event = self._stop_event
        if loop is not None and stop_event is not None and not loop.is_closed():
            try:
                loop.call_soon_threadsafe(stop_event.set)
            except RuntimeError as exc:
                _LOGGER.debug("Runtime loop already closed: %s", exc)
        if self._thread:
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                _LOGGER.warning("Thread %s did not exit cleanly within %.1fs", self._thread.name, timeout)
        self._thread = None
        self._loop = None
        self._stop_event = None

    def submit_threadsafe(self, event: Any) -> bool:
        runtime = self.runtime
        if runtime is None:
            return False
        return runtime.dispatcher.submit_threadsafe(event)

    def _thread_main(self) -> None:
        loop = asyncio.new_event_loop()
        self._loop = loop
        asyncio.set_event_loop(loop)
        try:
            loop.run_until_complete(self._run())
        except Exception as exc:
            _LOGGER.error("Overlay runtime crashed: %s", exc, exc_info=exc)
        finally:
            self._ready.set()
            pending = asyncio.all_tasks(loop)
            for task in pending:
                task.cancel()
            if pending:
                loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
            loop.run_until_complete(loop.shutdown_asyncgens())
            loop.close()

    async def _run(self) -> None:
        self._stop_event = asyncio.Event()
        runtime = self._runtime_factory()
        self.runtime = runtime
        self._bridge.attach(self.submit_threadsafe)
        await runtime.start()
        self._ready.set()
        try:
            await self._stop_event.wait()
        finally:
            await runtime.stop()
            self.runtime = None
