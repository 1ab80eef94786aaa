"""Heartbeat scheduler — keeps a gateway session alive and detects zombies.

Runs as its own asyncio task so slow handlers or a busy read loop can never
delay a beat.  Each tick checks whether the previous beat was acknowledged;
if not, the connection is assumed dead (the remote may be silently gone, so
no socket error will ever arrive) and the zombie callback fires once.
"""

from __future__ import annotations

import asyncio
import inspect
import random
import time
from collections.abc import Awaitable, Callable
from typing import Any

from loguru import logger

SendFn = Callable[[int | None], Awaitable[None]]
"""Async callable that sends one heartbeat carrying the given sequence number."""

SequenceFn = Callable[[], int | None]
"""Returns the last dispatch sequence number seen on the session."""

ZombieFn = Callable[[], Any]
"""Called (sync or async) when a beat went unacknowledged for a whole interval."""


class HeartbeatScheduler:
    """Periodic heartbeat sender with ack tracking.

    Args:
        send_fn: Sends a heartbeat payload through the current socket.
        sequence_fn: Synchronized read of the session's sequence number.
        on_zombie: Invoked once when an ack is missed.
        jitter_fn: Source of the first-beat jitter fraction.  Values are
            clamped into the open interval (0, 1).
    """

    def __init__(
        self,
        send_fn: SendFn,
        sequence_fn: SequenceFn,
        on_zombie: ZombieFn,
        *,
        jitter_fn: Callable[[], float] = random.random,
    ):
        self._send_fn = send_fn
        self._sequence_fn = sequence_fn
        self._on_zombie = on_zombie
        self._jitter_fn = jitter_fn
        self._task: asyncio.Task | None = None
        self._interval: float | None = None
        self._ack_pending = False
        self._last_send: float | None = None
        self._last_ack: float | None = None
        self.latency: float | None = None

    # ── Public API ─────────────────────────────────────────────────

    @property
    def interval(self) -> float | None:
        """Current interval in seconds, or None before the first ``start``."""
        return self._interval

    @property
    def ack_pending(self) -> bool:
        return self._ack_pending

    @property
    def last_ack(self) -> float | None:
        """``time.monotonic()`` of the most recent ack."""
        return self._last_ack

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, interval_ms: float) -> None:
        """(Re)start beating every ``interval_ms`` milliseconds.

        Any previous timer is cancelled first, so the old interval is never
        used again.  Must be called from a running event loop.
        """
        if interval_ms <= 0:
            raise ValueError(f"Heartbeat interval must be positive, got {interval_ms}")
        self.stop()
        self._interval = interval_ms / 1000.0
        self._ack_pending = False
        self._task = asyncio.create_task(self._run(self._interval), name="gateway-heartbeat")
        logger.debug(f"Heartbeat started (interval={interval_ms}ms)")

    def on_ack_received(self) -> None:
        """Clear the pending flag and update latency."""
        self._ack_pending = False
        self._last_ack = time.monotonic()
        if self._last_send is not None:
            self.latency = self._last_ack - self._last_send

    async def beat_now(self) -> None:
        """Send one heartbeat immediately (the gateway asked for it)."""
        await self._beat()

    def stop(self) -> None:
        """Cancel the timer.  Safe to call from inside the heartbeat task."""
        task, self._task = self._task, None
        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()
        self._ack_pending = False

    # ── Internal ───────────────────────────────────────────────────

    def first_delay(self, interval: float) -> float:
        """Jittered delay before the first beat, strictly inside (0, interval)."""
        jitter = min(max(self._jitter_fn(), 1e-3), 1 - 1e-3)
        return interval * jitter

    async def _run(self, interval: float) -> None:
        try:
            await asyncio.sleep(self.first_delay(interval))
            while True:
                if self._ack_pending:
                    logger.warning(f"No heartbeat ack within {interval:.1f}s, connection looks dead")
                    self._ack_pending = False
                    result = self._on_zombie()
                    if inspect.isawaitable(result):
                        await result
                    return
                await self._beat()
                await asyncio.sleep(interval)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            # The read loop sees the same socket failure and reconnects.
            logger.warning(f"Heartbeat loop stopped: {e!r}")

    async def _beat(self) -> None:
        seq = self._sequence_fn()
        self._ack_pending = True
        self._last_send = time.monotonic()
        logger.debug(f"Sending heartbeat (seq={seq})")
        await self._send_fn(seq)
