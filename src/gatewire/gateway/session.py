"""Handshake / session state machine.

Pure bookkeeping: it decides what to send after ``hello`` (identify or
resume), tracks session metadata from READY/RESUMED and dispatch sequence
numbers, and moves between :class:`SessionState` values.  It performs no
I/O; the connection manager feeds it payloads and sends what it returns.

Transitions::

    DISCONNECTED --begin_connect--> CONNECTING --hello--> IDENTIFYING --READY--> READY
    any --transport drop / reconnect op / zombie--> RECONNECTING
    RECONNECTING --hello (resumable)--> RESUMING --RESUMED--> READY
    RECONNECTING --hello (no session)--> IDENTIFYING
    any --invalid session (not resumable) / reset--> DISCONNECTED
"""

from __future__ import annotations

from typing import Any

from loguru import logger

from gatewire.core.exceptions import ProtocolError
from gatewire.core.identity import Identity
from gatewire.gateway.events import GatewayEvent, SessionInfo
from gatewire.gateway.opcodes import READY, RESUMED, GatewayPayload, OpCode, SessionState

Outbound = tuple[OpCode, dict[str, Any]]


class GatewaySession:
    """State and metadata for one logical gateway session.

    Args:
        identity: Credential and metadata used for identify/resume.
        large_threshold: Member count above which the gateway omits
            offline members from guild payloads.
    """

    def __init__(self, identity: Identity, *, large_threshold: int = 250):
        self.identity = identity
        self.large_threshold = large_threshold
        self.info = SessionInfo()
        self._state = SessionState.DISCONNECTED

    @property
    def state(self) -> SessionState:
        return self._state

    def _transition(self, new: SessionState) -> None:
        if new is not self._state:
            logger.debug(f"Gateway session {self._state.value} -> {new.value}")
            self._state = new

    # ── Handshake ──────────────────────────────────────────────────

    def begin_connect(self) -> None:
        """A fresh connection is being opened (no resume)."""
        self._transition(SessionState.CONNECTING)

    def on_hello(self, payload: GatewayPayload) -> tuple[float, Outbound]:
        """Handle ``hello`` and return ``(interval_ms, payload_to_send)``.

        Raises:
            ProtocolError: ``hello`` arrived outside a handshake or lacks an interval.
        """
        if self._state not in (SessionState.CONNECTING, SessionState.RECONNECTING):
            raise ProtocolError(f"Unexpected hello in state {self._state.value}")

        data = payload.d if isinstance(payload.d, dict) else {}
        interval = data.get("heartbeat_interval")
        if not isinstance(interval, (int, float)) or isinstance(interval, bool) or interval <= 0:
            raise ProtocolError(f"hello carries no usable heartbeat_interval: {payload.d!r}")

        if self._state is SessionState.RECONNECTING and self.info.resumable:
            self._transition(SessionState.RESUMING)
            return float(interval), self.resume_payload()

        self.info.clear()
        self._transition(SessionState.IDENTIFYING)
        return float(interval), self.identify_payload()

    def identify_payload(self) -> Outbound:
        data: dict[str, Any] = {
            "token": self.identity.token,
            "properties": self.identity.connection_properties,
            "intents": self.identity.intents,
            "compress": False,
            "large_threshold": self.large_threshold,
        }
        if self.identity.presence is not None:
            data["presence"] = self.identity.presence
        return OpCode.IDENTIFY, data

    def resume_payload(self) -> Outbound:
        return OpCode.RESUME, {
            "token": self.identity.token,
            "session_id": self.info.session_id,
            "seq": self.info.sequence,
        }

    # ── Steady state ───────────────────────────────────────────────

    def on_dispatch(self, payload: GatewayPayload) -> GatewayEvent:
        """Record a dispatch payload and turn it into a handler event."""
        name = payload.t or ""
        self.info.advance(payload.s)

        if name == READY:
            if self._state is not SessionState.IDENTIFYING:
                logger.warning(f"READY received in state {self._state.value}")
            data = payload.d if isinstance(payload.d, dict) else {}
            self.info.session_id = data.get("session_id")
            self.info.resume_url = data.get("resume_gateway_url")
            self.info.user = data.get("user")
            self._transition(SessionState.READY)
            logger.info(f"Gateway session ready (session={self.info.session_id}, seq={self.info.sequence})")
        elif name == RESUMED:
            if self._state is not SessionState.RESUMING:
                logger.warning(f"RESUMED received in state {self._state.value}")
            self._transition(SessionState.READY)
            logger.info(f"Gateway session resumed (session={self.info.session_id}, seq={self.info.sequence})")

        return GatewayEvent(name=name, data=payload.d, sequence=payload.s, session=self.info)

    # ── Failure paths ──────────────────────────────────────────────

    def mark_reconnecting(self) -> None:
        """The socket is gone (drop, zombie, reconnect request, timeout)."""
        self._transition(SessionState.RECONNECTING)

    def on_invalid_session(self, resumable: bool) -> None:
        if resumable:
            logger.info("Gateway invalidated the session but allows resume")
            self._transition(SessionState.RECONNECTING)
        else:
            logger.info("Gateway invalidated the session, next connect will identify")
            self.reset()

    def discard(self) -> None:
        """Forget the session but keep reconnecting (next hello identifies)."""
        self.info.clear()

    def reset(self) -> None:
        """Drop all session metadata and go to DISCONNECTED."""
        self.info.clear()
        self._transition(SessionState.DISCONNECTED)
