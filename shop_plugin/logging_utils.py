from __future__ import annotations

import logging
import os
import tempfile
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:  # pragma: no cover - import cycle guard
    from shop_plugin.settings import OverlaySettings

LOGGER_NAME = "TFT.ShopOverlay"
LOG_DIR_ENV_VAR = "TFT_OVERLAY_LOG_DIR"
LOG_FILENAME = "shop-overlay.log"
_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


class ReleaseLogLevelFilter(logging.Filter):
    """Promote debug logs to INFO in release builds so diagnostics stay visible."""

    def __init__(self, release_mode: bool) -> None:
        super().__init__()
        self._release_mode = release_mode

    def filter(self, record: logging.LogRecord) -> bool:
        if self._release_mode and record.levelno == logging.DEBUG:
            record.levelno = logging.INFO
            record.levelname = "INFO"
        return True


def resolve_logs_dir(base_path: Optional[Path] = None, log_dir_name: str = "TFTShopOverlay") -> Path:
    """
    Resolve the directory to store overlay logs.

    Strategy:
    - Use TFT_OVERLAY_LOG_DIR if set.
    - Fall back to XDG state/cache locations, then `base_path/logs` (defaults to cwd).
    - Final fallback: tempdir/<log_dir_name>.
    """
    candidates = []

    env_override = os.environ.get(LOG_DIR_ENV_VAR)
    if env_override:
        candidates.append(Path(env_override).expanduser())

    state_home = Path(os.environ.get("XDG_STATE_HOME", Path.home() / ".local" / "state"))
    cache_home = Path(os.environ.get("XDG_CACHE_HOME", Path.home() / ".cache"))
    candidates.append(state_home / "logs")
    candidates.append(cache_home / "logs")
    candidates.append((base_path or Path.cwd()) / "logs")

    for base in candidates:
        try:
            target = base / log_dir_name
            target.mkdir(parents=True, exist_ok=True)
            return target
        except OSError:
            continue

    temp_fallback = Path(tempfile.gettempdir()) / log_dir_name
    temp_fallback.mkdir(parents=True, exist_ok=True)
    return temp_fallback


def build_rotating_file_handler(
    log_dir: Path,
    filename: str,
    *,
    retention: int = 5,
    max_bytes: int = 512 * 1024,
    formatter: Optional[logging.Formatter] = None,
) -> logging.Handler:
    """Construct a rotating file handler with sane defaults."""
    retention = max(1, retention)
    backup_count = max(0, retention - 1)
    log_dir.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        log_dir / filename,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )
    if formatter is not None:
        handler.setFormatter(formatter)
    return handler


def configure_logging(settings: "OverlaySettings", *, log_dir: Optional[Path] = None) -> logging.Logger:
    """Attach the rotating file handler to the overlay logger once.

    The logger always passes DEBUG so the release filter can promote those records to INFO.
    """

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG)
    if any(getattr(handler, "_shop_overlay_handler", False) for handler in logger.handlers):
        return logger
    try:
        target_dir = log_dir or resolve_logs_dir()
        handler = build_rotating_file_handler(
            target_dir,
            LOG_FILENAME,
            retention=settings.log_retention,
            max_bytes=settings.log_max_bytes,
            formatter=logging.Formatter(_LOG_FORMAT),
        )
    except OSError as exc:
        logger.warning("Unable to open overlay log file; continuing without file logging: %s", exc)
        return logger
    handler._shop_overlay_handler = True  # type: ignore[attr-defined]
    handler.addFilter(ReleaseLogLevelFilter(release_mode=not settings.debug))
    logger.addHandler(handler)
    return logger
