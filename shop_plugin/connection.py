"""Connection lifecycle for the tracked game.

The host can start before or after the game. Live ``game-detected`` events
cover the first case; a startup reconciliation loop probes for an
already-running game to cover the second. Both paths funnel into the same
connect transition, and whichever fires first wins: live events cancel the
probe loop, and the probe loop re-checks the session generation after every
suspension point so it never overrides a live transition.
"""
from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, FrozenSet, Iterable, Mapping, Optional, Protocol, Sequence

from shop_plugin.events import SHOP_PIECES_KEY, STORE_FEATURE, RawFeatureUpdate
from shop_plugin.settings import DEFAULT_REQUIRED_FEATURES

_LOGGER = logging.getLogger("TFT.ShopOverlay.Connection")

GRACE_PERIOD_SECONDS = 1.5
RETRY_INTERVAL_SECONDS = 5.0


class ConnectionState(enum.Enum):
    IDLE = "idle"
    DETECTING = "detecting"
    CONNECTED = "connected"
    ELEVATION_BLOCKED = "elevation_blocked"


@dataclass
class GameSession:
    tracked_ids: FrozenSet[int] = field(default_factory=frozenset)
    active_id: Optional[int] = None
    state: ConnectionState = ConnectionState.IDLE
    generation: int = 0


class EventSource(Protocol):
    """Callbacks into the game-event transport."""

    def enable_tracking(self, game_id: int) -> None: ...

    async def set_required_features(self, game_id: int, features: Sequence[str]) -> None: ...

    async def get_info(self, game_id: int) -> Optional[Mapping[str, Any]]: ...


SleepFn = Callable[[float], Awaitable[None]]
StateChangeFn = Callable[[ConnectionState, ConnectionState], None]


class ConnectionStateMachine:
    """Owns the GameSession; the only component allowed to mutate it."""

    def __init__(
        self,
        event_source: EventSource,
        *,
        required_features: Sequence[str] = DEFAULT_REQUIRED_FEATURES,
        grace_period: float = GRACE_PERIOD_SECONDS,
        retry_interval: float = RETRY_INTERVAL_SECONDS,
        on_update: Optional[Callable[[RawFeatureUpdate], None]] = None,
        on_session_reset: Optional[Callable[[], None]] = None,
        on_state_change: Optional[StateChangeFn] = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self._source = event_source
        self._required_features = tuple(required_features)
        self._grace_period = max(0.0, float(grace_period))
        self._retry_interval = max(0.0, float(retry_interval))
        self._on_update = on_update
        self._on_session_reset = on_session_reset
        self._on_state_change = on_state_change
        self._sleep = sleep
        self._session = GameSession()
        self._reconcile_task: Optional[asyncio.Task[None]] = None
        self._registration_task: Optional[asyncio.Task[None]] = None
        self._probe_attempts = 0

    # Read-only views --------------------------------------------------------

    @property
    def session(self) -> GameSession:
        return self._session

    @property
    def state(self) -> ConnectionState:
        return self._session.state

    @property
    def active_id(self) -> Optional[int]:
        return self._session.active_id

    @property
    def generation(self) -> int:
        return self._session.generation

    @property
    def tracked_ids(self) -> FrozenSet[int]:
        return self._session.tracked_ids

    @property
    def probe_attempts(self) -> int:
        return self._probe_attempts

    @property
    def reconciling(self) -> bool:
        task = self._reconcile_task
        return task is not None and not task.done()

    def is_tracked(self, game_id: int) -> bool:
        return game_id in self._session.tracked_ids

    def is_current(self, generation: int) -> bool:
        """True while the session that issued ``generation`` is still the live one."""

        return generation == self._session.generation and self._session.active_id is not None

    # Configuration ------------------------------------------------------------

    def register_tracked_games(self, game_ids: Iterable[int]) -> None:
        tracked = frozenset(int(game_id) for game_id in game_ids)
        _LOGGER.info("Register to game events for %s", sorted(tracked))
        self._session.tracked_ids = tracked

    # Live event path ----------------------------------------------------------

    def on_game_detected(self, game_id: int) -> bool:
        """Attach to a tracked game; returns False when the game is left unmanaged."""

        if not self.is_tracked(game_id):
            _LOGGER.debug("Skip game-detected for untracked game %s", game_id)
            return False
        if self._session.state is ConnectionState.ELEVATION_BLOCKED:
            _LOGGER.warning("Game %s detected while elevation is required; restart with matching privileges", game_id)
            return False
        self._stop_reconciliation()
        if self._session.state is ConnectionState.CONNECTED and self._session.active_id == game_id:
            _LOGGER.debug("Game %s already connected", game_id)
            return True
        self._connect(game_id, origin="game-detected")
        return True

    def on_game_exit(self, game_id: int) -> None:
        if not self.is_tracked(game_id):
            _LOGGER.debug("Ignoring exit of untracked game %s", game_id)
            return
        self._stop_reconciliation()
        self._cancel_registration()
        previous_active = self._session.active_id
        self._session.active_id = None
        self._session.generation += 1
        if self._session.state is not ConnectionState.ELEVATION_BLOCKED:
            self._set_state(ConnectionState.IDLE)
        _LOGGER.info("Game exit %s (active=%s); session reset", game_id, previous_active)
        self._reset_downstream()

    def on_elevation_required(self, game_id: int) -> None:
        if not self.is_tracked(game_id):
            return
        self._stop_reconciliation()
        self._cancel_registration()
        self._session.active_id = None
        self._session.generation += 1
        self._set_state(ConnectionState.ELEVATION_BLOCKED)
        _LOGGER.error(
            "Game %s runs with elevated privileges; the overlay must be restarted elevated to receive events",
            game_id,
        )
        self._reset_downstream()

    def on_error(self, game_id: int, info: Any = None) -> None:
        _LOGGER.warning("Game event error for %s: %s", game_id, info)
        if game_id != self._session.active_id:
            return
        self._cancel_registration()
        self._session.active_id = None
        self._session.generation += 1
        self._set_state(ConnectionState.IDLE)
        self._reset_downstream()
        self.start_reconciliation()

    def forward(self, update: RawFeatureUpdate, game_id: Optional[int] = None) -> bool:
        """Gate: only updates for the connected, tracked game reach the shop builder."""

        if self._session.state is not ConnectionState.CONNECTED:
            return False
        if game_id is not None and game_id != self._session.active_id:
            return False
        if self._on_update is not None:
            self._on_update(update)
        return True

    async def get_info_for_active_game(self) -> Optional[Mapping[str, Any]]:
        game_id = self._session.active_id
        if game_id is None:
            return None
        return await self._source.get_info(game_id)

    # Startup reconciliation ---------------------------------------------------

    def start_reconciliation(self) -> Optional[asyncio.Task[None]]:
        """Start the probe loop unless one is already running (single flight)."""

        if self.reconciling:
            return self._reconcile_task
        if self._session.state in (ConnectionState.CONNECTED, ConnectionState.ELEVATION_BLOCKED):
            return None
        task = asyncio.create_task(self._reconcile(self._session.generation), name="TFTOverlay-Reconcile")
        self._reconcile_task = task
        return task

    async def shutdown(self) -> None:
        tasks = [task for task in (self._reconcile_task, self._registration_task) if task is not None]
        self._reconcile_task = None
        self._registration_task = None
        for task in tasks:
            if not task.done():
                task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as exc:
                _LOGGER.debug("Background task ended with error during shutdown: %s", exc)

    async def _reconcile(self, generation: int) -> None:
        await self._sleep(self._grace_period)
        while True:
            if self._preempted(generation):
                _LOGGER.debug("Reconciliation stopped; session changed on the live path")
                return
            if self._session.state not in (ConnectionState.IDLE, ConnectionState.DETECTING):
                return
            if not self._session.tracked_ids:
                _LOGGER.debug("Reconciliation stopped; no tracked games")
                self._set_state(ConnectionState.IDLE)
                return
            self._set_state(ConnectionState.DETECTING)
            self._probe_attempts += 1
            await self._register_all_features()
            if self._preempted(generation):
                return
            if await self._probe_tracked(generation):
                return
            if self._preempted(generation):
                return
            _LOGGER.info("No game found, will retry in %.1f seconds", self._retry_interval)
            await self._sleep(self._retry_interval)

    def _preempted(self, generation: int) -> bool:
        return generation != self._session.generation

    async def _register_all_features(self) -> None:
        for game_id in sorted(self._session.tracked_ids):
            try:
                await self._source.set_required_features(game_id, self._required_features)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                _LOGGER.debug("Failed to auto-set features for %s: %s", game_id, exc)

    async def _probe_tracked(self, generation: int) -> bool:
        for game_id in sorted(self._session.tracked_ids):
            try:
                info = await self._source.get_info(game_id)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                _LOGGER.debug("No existing game found for %s: %s", game_id, exc)
                continue
            if self._preempted(generation):
                return True
            payload = info.get("res") if isinstance(info, Mapping) else None
            if not payload:
                continue
            _LOGGER.info("Found existing game data for %s", game_id)
            self._connect(game_id, origin="startup probe")
            update = _shop_update_from_info(payload)
            if update is not None:
                _LOGGER.debug("Found existing shop data")
                self.forward(update, game_id)
            return True
        return False

    # Transitions ----------------------------------------------------------------

    def _connect(self, game_id: int, *, origin: str) -> None:
        try:
            self._source.enable_tracking(game_id)
        except Exception as exc:
            _LOGGER.warning("enable_tracking failed for %s: %s", game_id, exc)
        self._session.active_id = game_id
        self._session.generation += 1
        self._set_state(ConnectionState.CONNECTED)
        _LOGGER.info("Connected to game %s via %s", game_id, origin)
        self._start_registration(game_id)

    def _start_registration(self, game_id: int) -> None:
        self._cancel_registration()
        try:
            self._registration_task = asyncio.create_task(
                self._register_features(game_id), name="TFTOverlay-RegisterFeatures"
            )
        except RuntimeError as exc:
            _LOGGER.warning("No running loop; feature registration for %s skipped: %s", game_id, exc)

    async def _register_features(self, game_id: int) -> None:
        try:
            await self._source.set_required_features(game_id, self._required_features)
            _LOGGER.debug("set-required-features for %s: %s", game_id, ", ".join(self._required_features))
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            _LOGGER.warning("Failed to set required features for %s: %s", game_id, exc)

    def _cancel_registration(self) -> None:
        task = self._registration_task
        self._registration_task = None
        if task is not None and not task.done():
            task.cancel()

    def _stop_reconciliation(self) -> None:
        task = self._reconcile_task
        if task is None:
            return
        self._reconcile_task = None
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        if task is not current and not task.done():
            task.cancel()

    def _set_state(self, state: ConnectionState) -> None:
        previous = self._session.state
        if previous is state:
            return
        self._session.state = state
        _LOGGER.debug("Connection state %s -> %s", previous.value, state.value)
        if self._on_state_change is not None:
            try:
                self._on_state_change(previous, state)
            except Exception as exc:
                _LOGGER.error("State-change hook failed: %s", exc, exc_info=exc)

    def _reset_downstream(self) -> None:
        if self._on_session_reset is None:
            return
        try:
            self._on_session_reset()
        except Exception as exc:
            _LOGGER.error("Session reset hook failed: %s", exc, exc_info=exc)


def _shop_update_from_info(payload: Mapping[str, Any]) -> Optional[RawFeatureUpdate]:
    store = payload.get(STORE_FEATURE)
    if not isinstance(store, Mapping):
        return None
    value = store.get(SHOP_PIECES_KEY)
    if value is None:
        return None
    return RawFeatureUpdate.from_info({"feature": STORE_FEATURE, "key": SHOP_PIECES_KEY, "value": value})
