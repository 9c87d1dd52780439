from __future__ import annotations

import asyncio
import threading

from shop_plugin.event_queue import EventDispatcher
from shop_plugin.events import FeatureUpdate, GameDetected, GameExit, RawFeatureUpdate


def test_events_are_handled_in_arrival_order():
    seen = []

    async def slow_detected(event):
        await asyncio.sleep(0.01)
        seen.append(("detected", event.game_id))

    async def scenario():
        dispatcher = EventDispatcher()
        dispatcher.register(GameDetected, slow_detected)
        dispatcher.register(GameExit, lambda event: seen.append(("exit", event.game_id)))
        dispatcher.start()
        assert dispatcher.submit(GameDetected(21570))
        assert dispatcher.submit(GameExit(21570))
        await dispatcher.join()
        await dispatcher.stop()
        assert not dispatcher.running

    asyncio.run(scenario())
    assert seen == [("detected", 21570), ("exit", 21570)]


def test_handler_failure_does_not_stop_dispatch():
    seen = []

    def broken(event):
        raise RuntimeError("handler bug")

    async def scenario():
        dispatcher = EventDispatcher()
        dispatcher.register(GameDetected, broken)
        dispatcher.register(GameDetected, lambda event: seen.append(event.game_id))
        dispatcher.start()
        dispatcher.submit(GameDetected(1))
        dispatcher.submit(GameDetected(2))
        await dispatcher.join()
        await dispatcher.stop()

    asyncio.run(scenario())
    assert seen == [1, 2]


def test_submit_before_start_is_dropped():
    dispatcher = EventDispatcher()
    assert not dispatcher.submit(GameDetected(1))
    assert not dispatcher.submit_threadsafe(GameDetected(1))


def test_lifecycle_event_survives_telemetry_backlog():
    seen = []

    async def scenario():
        dispatcher = EventDispatcher()
        dispatcher.register(FeatureUpdate, lambda event: seen.append("update"))
        dispatcher.register(GameExit, lambda event: seen.append(("exit", event.game_id)))
        dispatcher.start()
        update = RawFeatureUpdate("store", "shop_pieces", "{}")
        backlog = [dispatcher.submit(FeatureUpdate(game_id=21570, update=update)) for _ in range(300)]
        accepted = dispatcher.submit(GameExit(21570))
        await dispatcher.join()
        await dispatcher.stop()
        return all(backlog), accepted

    assert asyncio.run(scenario()) == (True, True)
    assert seen.count("update") == 300
    assert seen[-1] == ("exit", 21570)


def test_submit_threadsafe_from_transport_thread():
    seen = []

    async def scenario():
        dispatcher = EventDispatcher()
        dispatcher.register(GameExit, lambda event: seen.append(event.game_id))
        dispatcher.start()
        results = []
        worker = threading.Thread(target=lambda: results.append(dispatcher.submit_threadsafe(GameExit(7))))
        worker.start()
        await asyncio.to_thread(worker.join)
        for _ in range(10):
            await asyncio.sleep(0)
        await dispatcher.join()
        await dispatcher.stop()
        return results

    assert asyncio.run(scenario()) == [True]
    assert seen == [7]


def test_unregistered_events_are_ignored():
    async def scenario():
        dispatcher = EventDispatcher()
        dispatcher.start()
        dispatcher.submit(object())
        await dispatcher.join()
        await dispatcher.stop()

    asyncio.run(scenario())
