"""Gateway framework: connection, handshake, heartbeat, codec, dispatch."""

from .backoff import Backoff, ReconnectPolicy
from .codec import NEEDS_MORE_DATA, FrameCodec
from .connection import GatewayConnection
from .dispatcher import Dispatcher
from .events import GatewayEvent, SessionInfo
from .heartbeat import HeartbeatScheduler
from .opcodes import CloseCode, GatewayPayload, OpCode, SessionState
from .session import GatewaySession

__all__ = [
    "NEEDS_MORE_DATA",
    "Backoff",
    "CloseCode",
    "Dispatcher",
    "FrameCodec",
    "GatewayConnection",
    "GatewayEvent",
    "GatewayPayload",
    "GatewaySession",
    "HeartbeatScheduler",
    "OpCode",
    "ReconnectPolicy",
    "SessionInfo",
    "SessionState",
]
