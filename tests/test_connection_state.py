from __future__ import annotations

import asyncio
import json

from shop_plugin.connection import ConnectionState, ConnectionStateMachine
from shop_plugin.events import RawFeatureUpdate

TFT = 21570
LAUNCHER = 10902
FEATURES = ("me", "store", "board")


class FakeEventSource:
    def __init__(self, infos=None):
        self.infos = infos or {}
        self.enabled = []
        self.feature_calls = []
        self.info_calls = []
        self.info_gate = None

    def enable_tracking(self, game_id):
        self.enabled.append(game_id)

    async def set_required_features(self, game_id, features):
        self.feature_calls.append((game_id, tuple(features)))

    async def get_info(self, game_id):
        self.info_calls.append(game_id)
        if self.info_gate is not None:
            await self.info_gate.wait()
        value = self.infos.get(game_id)
        if isinstance(value, list):
            value = value.pop(0) if value else None
        if isinstance(value, Exception):
            raise value
        return value


class _Recorder:
    def __init__(self):
        self.updates = []
        self.resets = 0
        self.transitions = []
        self.sleeps = []

    def on_update(self, update):
        self.updates.append(update)

    def on_reset(self):
        self.resets += 1

    def on_state(self, previous, current):
        self.transitions.append((previous, current))

    async def sleep(self, delay):
        self.sleeps.append(delay)
        await asyncio.sleep(0)


def _machine(source, recorder, tracked=(TFT,)):
    machine = ConnectionStateMachine(
        source,
        required_features=FEATURES,
        on_update=recorder.on_update,
        on_session_reset=recorder.on_reset,
        on_state_change=recorder.on_state,
        sleep=recorder.sleep,
    )
    machine.register_tracked_games(tracked)
    return machine


def _shop_update(name="TFT16_Jhin"):
    return RawFeatureUpdate("store", "shop_pieces", json.dumps({"shop_1": {"name": name}}))


def test_game_detected_connects_and_registers_features():
    source = FakeEventSource()
    recorder = _Recorder()

    async def scenario():
        machine = _machine(source, recorder)
        assert machine.on_game_detected(TFT)
        await asyncio.sleep(0)
        await machine.shutdown()
        return machine

    machine = asyncio.run(scenario())

    assert machine.state is ConnectionState.CONNECTED
    assert machine.active_id == TFT
    assert machine.generation == 1
    assert source.enabled == [TFT]
    assert source.feature_calls == [(TFT, FEATURES)]


def test_untracked_game_is_left_unmanaged():
    source = FakeEventSource()
    recorder = _Recorder()

    async def scenario():
        machine = _machine(source, recorder)
        assert not machine.on_game_detected(5426)
        return machine

    machine = asyncio.run(scenario())
    assert machine.state is ConnectionState.IDLE
    assert source.enabled == []


def test_repeated_detection_of_active_game_is_idempotent():
    source = FakeEventSource()
    recorder = _Recorder()

    async def scenario():
        machine = _machine(source, recorder)
        machine.on_game_detected(TFT)
        machine.on_game_detected(TFT)
        await machine.shutdown()
        return machine

    machine = asyncio.run(scenario())
    assert machine.generation == 1
    assert source.enabled == [TFT]


def test_forward_is_gated_on_connected_active_game():
    source = FakeEventSource()
    recorder = _Recorder()

    async def scenario():
        machine = _machine(source, recorder, tracked=(TFT, LAUNCHER))
        assert not machine.forward(_shop_update(), TFT)
        machine.on_game_detected(TFT)
        assert machine.forward(_shop_update(), TFT)
        assert not machine.forward(_shop_update(), LAUNCHER)
        assert machine.forward(_shop_update())
        await machine.shutdown()

    asyncio.run(scenario())
    assert len(recorder.updates) == 2


def test_game_exit_resets_session():
    source = FakeEventSource()
    recorder = _Recorder()

    async def scenario():
        machine = _machine(source, recorder)
        machine.on_game_detected(TFT)
        generation = machine.generation
        machine.on_game_exit(TFT)
        assert machine.generation == generation + 1
        assert not machine.is_current(generation)
        assert not machine.forward(_shop_update(), TFT)
        await machine.shutdown()
        return machine

    machine = asyncio.run(scenario())

    assert machine.state is ConnectionState.IDLE
    assert machine.active_id is None
    assert recorder.resets == 1
    assert recorder.updates == []


def test_exit_of_untracked_game_is_ignored():
    source = FakeEventSource()
    recorder = _Recorder()

    async def scenario():
        machine = _machine(source, recorder)
        machine.on_game_detected(TFT)
        machine.on_game_exit(5426)
        await machine.shutdown()
        return machine

    machine = asyncio.run(scenario())
    assert machine.state is ConnectionState.CONNECTED
    assert recorder.resets == 0


def test_elevation_blocks_until_restart():
    source = FakeEventSource()
    recorder = _Recorder()

    async def scenario():
        machine = _machine(source, recorder)
        machine.on_elevation_required(TFT)
        assert not machine.on_game_detected(TFT)
        machine.on_game_exit(TFT)
        assert machine.start_reconciliation() is None
        return machine

    machine = asyncio.run(scenario())
    assert machine.state is ConnectionState.ELEVATION_BLOCKED
    assert source.enabled == []


def test_reconciliation_attaches_to_running_game_and_forwards_shop():
    shop = json.dumps({"shop_1": {"name": "TFT16_Jhin"}})
    source = FakeEventSource({TFT: {"res": {"store": {"shop_pieces": shop}}}})
    recorder = _Recorder()

    async def scenario():
        machine = _machine(source, recorder)
        task = machine.start_reconciliation()
        await task
        await machine.shutdown()
        return machine

    machine = asyncio.run(scenario())

    assert machine.state is ConnectionState.CONNECTED
    assert machine.active_id == TFT
    assert recorder.sleeps == [1.5]
    assert (ConnectionState.IDLE, ConnectionState.DETECTING) in recorder.transitions
    assert [update.value for update in recorder.updates] == [shop]


def test_reconciliation_retries_until_game_appears():
    source = FakeEventSource({TFT: [None, {"res": {"me": {"name": "player"}}}]})
    recorder = _Recorder()

    async def scenario():
        machine = _machine(source, recorder)
        await machine.start_reconciliation()
        await machine.shutdown()
        return machine

    machine = asyncio.run(scenario())

    assert machine.probe_attempts == 2
    assert recorder.sleeps == [1.5, 5.0]
    assert machine.state is ConnectionState.CONNECTED
    assert recorder.updates == []


def test_probe_errors_count_as_not_found():
    source = FakeEventSource({TFT: [RuntimeError("not running"), {"res": {"me": {}}}]})
    recorder = _Recorder()

    async def scenario():
        machine = _machine(source, recorder)
        await machine.start_reconciliation()
        await machine.shutdown()
        return machine

    machine = asyncio.run(scenario())
    assert machine.active_id == TFT
    assert machine.probe_attempts == 2


def test_live_detection_preempts_startup_probe():
    source = FakeEventSource({TFT: {"res": {"me": {}}}, LAUNCHER: {"res": {"me": {}}}})
    recorder = _Recorder()

    async def scenario():
        source.info_gate = asyncio.Event()
        machine = _machine(source, recorder, tracked=(TFT, LAUNCHER))
        task = machine.start_reconciliation()
        while not source.info_calls:
            await asyncio.sleep(0)
        machine.on_game_detected(TFT)
        source.info_gate.set()
        try:
            await task
        except asyncio.CancelledError:
            pass
        await machine.shutdown()
        return machine

    machine = asyncio.run(scenario())

    assert source.info_calls == [LAUNCHER]
    assert source.enabled == [TFT]
    assert machine.active_id == TFT
    assert not machine.reconciling


def test_start_reconciliation_is_single_flight():
    source = FakeEventSource()
    recorder = _Recorder()

    async def scenario():
        machine = _machine(source, recorder)
        first = machine.start_reconciliation()
        second = machine.start_reconciliation()
        assert first is second
        await machine.shutdown()
        assert first.cancelled()

    asyncio.run(scenario())


def test_error_on_active_game_restarts_detection():
    source = FakeEventSource()
    recorder = _Recorder()

    async def scenario():
        machine = _machine(source, recorder)
        machine.on_game_detected(TFT)
        machine.on_error(TFT, {"reason": "disconnected"})
        assert machine.state is ConnectionState.IDLE
        assert machine.reconciling
        await machine.shutdown()
        return machine

    machine = asyncio.run(scenario())
    assert recorder.resets == 1
    assert machine.active_id is None


def test_get_info_for_active_game():
    source = FakeEventSource({TFT: {"res": {"me": {"name": "player"}}}})
    recorder = _Recorder()

    async def scenario():
        machine = _machine(source, recorder)
        assert await machine.get_info_for_active_game() is None
        machine.on_game_detected(TFT)
        info = await machine.get_info_for_active_game()
        await machine.shutdown()
        return info

    assert asyncio.run(scenario()) == {"res": {"me": {"name": "player"}}}
