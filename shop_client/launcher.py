"""Primary entry point: wires settings, logging, the wanted store and the runtime host together."""
from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Any, Mapping, Optional, Union

from shop_client.qt_bridge import RenderBridge, RuntimeHost
from shop_plugin.connection import EventSource
from shop_plugin.logging_utils import LOGGER_NAME, configure_logging
from shop_plugin.runtime import ShopOverlayRuntime
from shop_plugin.settings import load_settings
from shop_plugin.wanted_set import JsonFileStore, resolve_store_path

SETTINGS_FILENAME = "overlay_settings.json"

LOGGER = logging.getLogger(f"{LOGGER_NAME}.Launcher")


class _OverlayLauncher:
    """Encapsulates overlay state so the module globals stay tidy."""

    def __init__(
        self,
        app_dir: Path,
        event_source: EventSource,
        *,
        log_dir: Optional[Path] = None,
        environ: Optional[Mapping[str, str]] = None,
        runtime_options: Optional[Mapping[str, Any]] = None,
    ) -> None:
        self.app_dir = app_dir
        self.settings = load_settings(app_dir / SETTINGS_FILENAME, environ=environ)
        configure_logging(self.settings, log_dir=log_dir)
        self.store = JsonFileStore(resolve_store_path(app_dir))
        self._event_source = event_source
        self._runtime_options = dict(runtime_options or {})
        self.bridge = RenderBridge()
        self.host = RuntimeHost(self._build_runtime, self.bridge)
        self._lock = threading.Lock()
        self._running = False

    def _build_runtime(self) -> ShopOverlayRuntime:
        return ShopOverlayRuntime(
            self._event_source,
            settings=self.settings,
            store=self.store,
            renderer=self.bridge.publish,
            **self._runtime_options,
        )

    # Lifecycle ------------------------------------------------------------

    def start(self) -> bool:
        with self._lock:
            if self._running:
                return True
            self._running = self.host.start()
        if self._running:
            LOGGER.info("Overlay started from %s", self.app_dir)
        else:
            LOGGER.error("Overlay runtime failed to start; overlay remains inactive.")
        return self._running

    def stop(self) -> None:
        with self._lock:
            if not self._running:
                return
            self._running = False
        LOGGER.info("Overlay stopping")
        self.host.stop()

    def submit(self, event: Any) -> bool:
        return self._running and self.host.submit_threadsafe(event)


_launcher: Optional[_OverlayLauncher] = None


def overlay_start(
    app_dir: Union[str, Path],
    event_source: EventSource,
    *,
    log_dir: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
    **runtime_options: Any,
) -> RenderBridge:
    """Start the overlay and return the bridge the Qt renderer connects to."""

    global _launcher
    overlay_stop()
    _launcher = _OverlayLauncher(
        Path(app_dir),
        event_source,
        log_dir=log_dir,
        environ=environ,
        runtime_options=runtime_options,
    )
    _launcher.start()
    return _launcher.bridge


def overlay_submit(event: Any) -> bool:
    """Hand a transport event to the running overlay; safe from any thread."""

    launcher = _launcher
    if launcher is None:
        return False
    return launcher.submit(event)


def overlay_stop() -> None:
    global _launcher
    if _launcher:
        try:
            _launcher.stop()
        finally:
            _launcher = None
