"""User-selected "wanted" champions and the opaque string store that persists them."""
from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Protocol, Tuple

from shop_plugin.identifier_resolution import strip_set_prefix

_LOGGER = logging.getLogger("TFT.ShopOverlay.Wanted")

WANTED_STORE_KEY = "wanted_champions"
STORE_FILENAME = "shop_overlay_store.json"

WantedListener = Callable[[Tuple[str, ...]], None]


class OpaqueStore(Protocol):
    def get(self, key: str) -> Optional[str]: ...
    def set(self, key: str, value: str) -> None: ...


class MemoryStore:
    """In-process store; nothing survives a restart."""

    def __init__(self, initial: Optional[Dict[str, str]] = None) -> None:
        self._values: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        self._values[key] = value


class JsonFileStore:
    """Best-effort key/value strings in a single JSON file, written atomically."""

    def __init__(self, path: Path) -> None:
        self._path = path
        self._lock = threading.Lock()
        self._values: Dict[str, str] = self._load()

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> Dict[str, str]:
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except (OSError, json.JSONDecodeError) as exc:
            _LOGGER.warning("Failed to load store %s: %s", self._path, exc)
            return {}
        if not isinstance(raw, dict):
            return {}
        return {str(key): value for key, value in raw.items() if isinstance(value, str)}

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._values[key] = value
            snapshot = dict(self._values)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(snapshot, indent=2, sort_keys=True), encoding="utf-8")
        tmp_path.replace(self._path)


def resolve_store_path(root: Optional[Path] = None) -> Path:
    base = root if root is not None else Path.cwd()
    return base / STORE_FILENAME


def _clean_ids(values: Iterable[object]) -> List[str]:
    cleaned: List[str] = []
    for value in values:
        if not isinstance(value, str):
            continue
        token = value.strip()
        if token and token not in cleaned:
            cleaned.append(token)
    return cleaned


class WantedSet:
    """Ordered, duplicate-free champion ids; every mutation is persisted immediately."""

    def __init__(self, store: OpaqueStore, *, key: str = WANTED_STORE_KEY) -> None:
        self._store = store
        self._key = key
        self._ids: List[str] = self._load()
        self._listeners: List[WantedListener] = []

    def _load(self) -> List[str]:
        try:
            raw = self._store.get(self._key)
        except Exception as exc:
            _LOGGER.warning("Failed to read wanted champions from store: %s", exc)
            return []
        if not raw:
            return []
        try:
            data = json.loads(raw)
        except (TypeError, ValueError) as exc:
            _LOGGER.warning("Discarding corrupt wanted champion list: %s", exc)
            return []
        if not isinstance(data, list):
            return []
        return _clean_ids(data)

    def ids(self) -> Tuple[str, ...]:
        return tuple(self._ids)

    def __len__(self) -> int:
        return len(self._ids)

    def __iter__(self):
        return iter(tuple(self._ids))

    def __contains__(self, champion_id: object) -> bool:
        return isinstance(champion_id, str) and self.contains(champion_id)

    def contains(self, champion_id: str) -> bool:
        """Membership that tolerates set-prefix drift between the stored and the live id."""

        if champion_id in self._ids:
            return True
        base = strip_set_prefix(champion_id)
        return bool(base) and any(strip_set_prefix(wanted) == base for wanted in self._ids)

    def add_listener(self, listener: WantedListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: WantedListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def toggle(self, champion_id: str) -> bool:
        """Flip membership of an exact id; returns the new membership."""

        token = champion_id.strip()
        if not token:
            return False
        if token in self._ids:
            self._ids.remove(token)
            member = False
        else:
            self._ids.append(token)
            member = True
        self._changed()
        return member

    def add(self, champion_id: str) -> bool:
        token = champion_id.strip()
        if not token or token in self._ids:
            return False
        self._ids.append(token)
        self._changed()
        return True

    def remove(self, champion_id: str) -> bool:
        token = champion_id.strip()
        if token not in self._ids:
            return False
        self._ids.remove(token)
        self._changed()
        return True

    def replace(self, champion_ids: Iterable[str]) -> None:
        cleaned = _clean_ids(champion_ids)
        if cleaned == self._ids:
            return
        self._ids = cleaned
        self._changed()

    def _changed(self) -> None:
        self._persist()
        snapshot = self.ids()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as exc:
                _LOGGER.error("Wanted-set listener failed: %s", exc, exc_info=exc)

    def _persist(self) -> None:
        try:
            self._store.set(self._key, json.dumps(self._ids))
        except Exception as exc:
            _LOGGER.warning("Failed to persist wanted champions: %s", exc)
