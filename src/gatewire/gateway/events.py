"""Dispatch events as handlers see them, and the session metadata behind them.

Every dispatch payload read from the socket is turned into a
:class:`GatewayEvent` carrying the event name, decoded body and sequence
number, plus a reference to the :class:`SessionInfo` of the connection that
produced it.  Handlers that need the client's own user (captured from READY)
read it from ``event.session.user`` instead of ambient global state.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Any


class SessionInfo:
    """Session metadata owned by one gateway connection.

    Written only by the connection's read loop.  ``sequence`` is also read
    by the heartbeat task and by handlers running on worker threads, so it
    is guarded by a lock; it only moves forward within a session.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._sequence: int | None = None
        self.session_id: str | None = None
        self.resume_url: str | None = None
        self.user: dict[str, Any] | None = None

    @property
    def sequence(self) -> int | None:
        with self._lock:
            return self._sequence

    def advance(self, seq: int | None) -> None:
        """Record a dispatch sequence number, ignoring anything not newer."""
        if seq is None:
            return
        with self._lock:
            if self._sequence is None or seq > self._sequence:
                self._sequence = seq

    @property
    def resumable(self) -> bool:
        return self.session_id is not None and self.sequence is not None

    def clear(self) -> None:
        """Forget the session and its user; the next handshake must identify."""
        with self._lock:
            self._sequence = None
        self.session_id = None
        self.resume_url = None
        self.user = None

    def __repr__(self) -> str:
        return f"SessionInfo(session_id={self.session_id!r}, sequence={self.sequence})"


@dataclass
class GatewayEvent:
    """A named dispatch event as delivered to handlers."""

    name: str
    data: Any = None
    sequence: int | None = None
    session: SessionInfo | None = field(default=None, repr=False, compare=False)
    received_at: float = field(default_factory=time.time)

    @property
    def user(self) -> dict[str, Any] | None:
        """The client's own user object from READY, if known."""
        return self.session.user if self.session else None
