"""Single-threaded event dispatch for the overlay core."""
from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Type, Union

_LOGGER = logging.getLogger("TFT.ShopOverlay.Dispatcher")

Handler = Callable[[Any], Union[None, Awaitable[None]]]


class EventDispatcher:
    """Feeds every input through one unbounded asyncio queue so handlers run strictly in arrival order.

    Nothing accepted while running is ever dropped.
    """

    def __init__(self) -> None:
        self._handlers: Dict[type, List[Handler]] = {}
        self._queue: Optional[asyncio.Queue[Optional[Any]]] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._task: Optional[asyncio.Task[None]] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def register(self, event_type: Type[Any], handler: Handler) -> None:
        self._handlers.setdefault(event_type, []).append(handler)

    def start(self) -> None:
        if self.running:
            return
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        self._task = asyncio.create_task(self._run(), name="TFTOverlay-Dispatcher")

    async def stop(self) -> None:
        task = self._task
        queue_ref = self._queue
        if task is None or queue_ref is None:
            return
        if not task.done():
            await queue_ref.put(None)
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._task = None
        self._queue = None
        self._loop = None

    def submit(self, event: Any) -> bool:
        """Enqueue from the loop thread; returns False when the event was dropped."""

        queue_ref = self._queue
        if queue_ref is None:
            _LOGGER.debug("Dispatcher not running; dropping %s", type(event).__name__)
            return False
        queue_ref.put_nowait(event)
        return True

    def submit_threadsafe(self, event: Any) -> bool:
        """Enqueue from a transport thread."""

        loop = self._loop
        if loop is None or loop.is_closed():
            _LOGGER.debug("Dispatcher loop unavailable; dropping %s", type(event).__name__)
            return False
        try:
            loop.call_soon_threadsafe(self.submit, event)
        except RuntimeError as exc:
            _LOGGER.warning("Failed to enqueue %s on dispatcher loop: %s", type(event).__name__, exc)
            return False
        return True

    async def join(self) -> None:
        """Wait until every queued event has been handled."""

        queue_ref = self._queue
        if queue_ref is not None:
            await queue_ref.join()

    async def dispatch(self, event: Any) -> None:
        for handler in list(self._handlers.get(type(event), ())):
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                _LOGGER.error("Handler for %s failed: %s", type(event).__name__, exc, exc_info=exc)

    async def _run(self) -> None:
        queue_ref = self._queue
        assert queue_ref is not None
        while True:
            event = await queue_ref.get()
            try:
                if event is None:
                    return
                await self.dispatch(event)
            finally:
                queue_ref.task_done()
