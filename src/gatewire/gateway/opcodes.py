"""Gateway wire vocabulary: opcodes, close codes, session states, payload envelope."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any


class OpCode(enum.IntEnum):
    """Integer tag carried in the ``op`` field of every gateway payload."""

    DISPATCH = 0
    HEARTBEAT = 1
    IDENTIFY = 2
    PRESENCE_UPDATE = 3
    RESUME = 6
    RECONNECT = 7
    INVALID_SESSION = 9
    HELLO = 10
    HEARTBEAT_ACK = 11


class SessionState(enum.Enum):
    """Lifecycle state of a gateway connection."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    IDENTIFYING = "identifying"
    READY = "ready"
    RESUMING = "resuming"
    RECONNECTING = "reconnecting"


class CloseCode(enum.IntEnum):
    """WebSocket close codes sent by the gateway."""

    UNKNOWN_ERROR = 4000
    UNKNOWN_OPCODE = 4001
    DECODE_ERROR = 4002
    NOT_AUTHENTICATED = 4003
    AUTHENTICATION_FAILED = 4004
    ALREADY_AUTHENTICATED = 4005
    INVALID_SEQ = 4007
    RATE_LIMITED = 4008
    SESSION_TIMED_OUT = 4009
    INVALID_SHARD = 4010
    SHARDING_REQUIRED = 4011
    INVALID_API_VERSION = 4012
    INVALID_INTENTS = 4013
    DISALLOWED_INTENTS = 4014


# Closes after which the same configuration can never succeed.
FATAL_CLOSE_CODES = frozenset(
    {
        CloseCode.INVALID_SHARD,
        CloseCode.SHARDING_REQUIRED,
        CloseCode.INVALID_API_VERSION,
        CloseCode.INVALID_INTENTS,
        CloseCode.DISALLOWED_INTENTS,
    }
)

# Closes after which the session cannot be resumed.
SESSION_DISCARD_CLOSE_CODES = frozenset({CloseCode.INVALID_SEQ, CloseCode.SESSION_TIMED_OUT})

# Dispatch names the state machine reacts to.
READY = "READY"
RESUMED = "RESUMED"


@dataclass(frozen=True)
class GatewayPayload:
    """One decoded gateway message: ``{"op", "d", "s", "t"}``."""

    op: OpCode
    d: Any = None
    s: int | None = None
    t: str | None = None

    @property
    def is_dispatch(self) -> bool:
        return self.op is OpCode.DISPATCH
