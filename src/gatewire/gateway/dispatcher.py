"""Dispatcher — ordered delivery of gateway events to user handlers.

The connection's read loop hands events to :meth:`Dispatcher.dispatch`,
which only enqueues them.  A single consumer task drains the queue, so
events reach handlers in socket order, and within one event handlers run
one after another in registration order.  Handlers never run on the read
loop itself: async handlers run as their own tasks and sync handlers run on
a thread pool, so a slow handler cannot starve heartbeats or decoding.

A handler that raises (or exceeds ``handler_timeout``) is logged and
recorded as a :class:`HandlerFault`; the remaining handlers still run.
Enqueueing never waits: when handlers fall a full queue behind, the oldest
queued event is dropped and counted in :attr:`Dispatcher.dropped_count`.
"""

from __future__ import annotations

import asyncio
import inspect
from collections import defaultdict, deque
from collections.abc import Awaitable, Callable
from concurrent.futures import ThreadPoolExecutor
from typing import Any

from loguru import logger

from gatewire.core.exceptions import HandlerFault
from gatewire.gateway.events import GatewayEvent

Handler = Callable[[GatewayEvent], Awaitable[None] | None]
"""Sync or async callable receiving one :class:`GatewayEvent`."""

WILDCARD = "*"


def _handler_name(handler: Any) -> str:
    return getattr(handler, "__qualname__", None) or repr(handler)


def _is_async(handler: Any) -> bool:
    return inspect.iscoroutinefunction(handler) or inspect.iscoroutinefunction(getattr(handler, "__call__", None))


class Dispatcher:
    """Handler registry plus the worker that invokes it.

    Args:
        max_workers: Thread pool size for sync handlers.
        queue_size: Pending events allowed before the oldest is shed
            (``0`` = unbounded).
        handler_timeout: Seconds a single handler may take before it is
            abandoned and recorded as a fault.  ``None`` disables the limit.
        max_dead_letters: How many faults to keep for introspection.
    """

    def __init__(
        self,
        max_workers: int = 4,
        queue_size: int = 1000,
        handler_timeout: float | None = None,
        max_dead_letters: int = 100,
    ):
        self._handlers: dict[str, list[Handler]] = defaultdict(list)
        self._max_workers = max_workers
        self._queue_size = queue_size
        self._queue: asyncio.Queue[tuple[GatewayEvent, list[Handler]]] | None = None
        self._executor: ThreadPoolExecutor | None = None
        self._consumer_task: asyncio.Task | None = None
        self._background_tasks: set[asyncio.Task] = set()  # prevent GC of running handler tasks
        self._dead_letters: deque[HandlerFault] = deque(maxlen=max_dead_letters)
        self._dropped = 0
        self.handler_timeout = handler_timeout

    @classmethod
    def from_config(cls, config: Any) -> Dispatcher:
        settings = config.validated().dispatch
        return cls(
            max_workers=settings.max_workers,
            queue_size=settings.queue_size,
            handler_timeout=settings.handler_timeout,
        )

    # ── Registration ───────────────────────────────────────────────

    def register(self, event_type: str, handler: Handler) -> None:
        """Register *handler* for *event_type* (case-sensitive)."""
        if not callable(handler):
            raise TypeError(f"Handler for {event_type!r} is not callable: {handler!r}")
        self._handlers[event_type].append(handler)

    def on(self, event_type: str) -> Callable[[Handler], Handler]:
        """Decorator form of :meth:`register`."""

        def decorator(func: Handler) -> Handler:
            self.register(event_type, func)
            return func

        return decorator

    def on_all(self, handler: Handler) -> None:
        """Register *handler* for every event (runs after the specific ones)."""
        self.register(WILDCARD, handler)

    def off(self, event_type: str, handler: Handler) -> None:
        """Unregister *handler* from *event_type*."""
        try:
            self._handlers[event_type].remove(handler)
        except ValueError:
            pass

    def handlers_for(self, event_type: str) -> list[Handler]:
        """Handlers that would run for *event_type*, in invocation order."""
        return [*self._handlers.get(event_type, ()), *self._handlers.get(WILDCARD, ())]

    # ── Lifecycle ──────────────────────────────────────────────────

    @property
    def running(self) -> bool:
        return self._consumer_task is not None and not self._consumer_task.done()

    def start(self) -> None:
        """Create the consumer task.  Must be called from a running event loop."""
        if self.running:
            logger.debug("Dispatcher consumer already running")
            return
        self._queue = asyncio.Queue(maxsize=self._queue_size)
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=self._max_workers, thread_name_prefix="gatewire-handler")
        self._consumer_task = asyncio.create_task(self._consume_loop(), name="gateway-dispatcher")
        logger.debug("Dispatcher consumer started")

    async def stop(self) -> None:
        """Stop delivering events.

        Queued events are discarded.  Handlers already running keep going;
        shutdown does not wait for them.
        """
        task, self._consumer_task = self._consumer_task, None
        if task and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None
        self._queue = None
        logger.debug("Dispatcher consumer stopped")

    async def join(self) -> None:
        """Wait until every queued event has been delivered."""
        if self._queue is not None and self.running:
            await self._queue.join()

    # ── Dispatch ───────────────────────────────────────────────────

    def dispatch_nowait(self, event: GatewayEvent) -> None:
        """Queue *event* for its handlers without ever waiting.

        Events nobody listens to are dropped without error.  When the queue
        is full the oldest queued event is shed to make room.  Safe to call
        from the socket read loop.
        """
        handlers = self.handlers_for(event.name)
        if not handlers:
            logger.trace(f"No handlers for {event.name}, dropping")
            return
        if not self.running:
            self.start()
        assert self._queue is not None
        try:
            self._queue.put_nowait((event, handlers))
        except asyncio.QueueFull:
            shed, _ = self._queue.get_nowait()
            self._queue.task_done()
            self._dropped += 1
            logger.warning(f"Dispatch queue full, dropped {shed.name} event (seq={shed.sequence})")
            self._queue.put_nowait((event, handlers))

    async def dispatch(self, event: GatewayEvent) -> None:
        """Async form of :meth:`dispatch_nowait`."""
        self.dispatch_nowait(event)

    @property
    def dropped_count(self) -> int:
        """Events shed because the queue was full."""
        return self._dropped

    async def _consume_loop(self) -> None:
        assert self._queue is not None
        queue = self._queue
        while True:
            event, handlers = await queue.get()
            try:
                for handler in handlers:
                    await self._invoke(handler, event)
            finally:
                queue.task_done()

    async def _invoke(self, handler: Handler, event: GatewayEvent) -> None:
        name = _handler_name(handler)
        try:
            if _is_async(handler):
                task = asyncio.create_task(handler(event), name=f"handler:{event.name}:{name}")
                self._background_tasks.add(task)
                task.add_done_callback(self._background_tasks.discard)
                work: Awaitable[Any] = asyncio.shield(task)
            else:
                loop = asyncio.get_running_loop()
                work = loop.run_in_executor(self._executor, handler, event)
            if self.handler_timeout is not None:
                await asyncio.wait_for(work, timeout=self.handler_timeout)
            else:
                await work
        except asyncio.CancelledError:
            raise
        except TimeoutError as exc:
            logger.warning(f"Handler {name} for {event.name} exceeded {self.handler_timeout}s, moving on")
            self._record_fault(event, name, exc)
        except Exception as exc:
            logger.exception(f"Handler {name} failed on {event.name}")
            self._record_fault(event, name, exc)

    # ── Dead letter introspection ──────────────────────────────────

    def _record_fault(self, event: GatewayEvent, handler_name: str, exc: BaseException) -> None:
        self._dead_letters.append(HandlerFault(event_name=event.name, handler_name=handler_name, error=exc))

    @property
    def dead_letter_count(self) -> int:
        """Number of recorded handler faults."""
        return len(self._dead_letters)

    def get_dead_letters(self) -> list[HandlerFault]:
        return list(self._dead_letters)

    def clear_dead_letters(self) -> None:
        self._dead_letters.clear()
