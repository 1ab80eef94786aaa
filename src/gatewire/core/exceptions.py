"""
Gatewire exception hierarchy.

All gatewire exceptions inherit from GatewireError, making it easy for consumers
to catch library-level errors while still distinguishing specific failure modes.

Gateway failures split into recoverable ones (TransportError and its
HandshakeTimeout subclass, handled by the reconnect loop), absorbed ones
(ProtocolError, logged and dropped) and terminal ones (AuthenticationError,
GatewayRejectedError, ReconnectExhaustedError) which reach the caller.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from time import time


class GatewireError(Exception):
    """Base exception class for all gatewire errors."""


class ConfigurationError(GatewireError):
    """Raised for configuration errors (missing keys, invalid values)."""


class APIError(GatewireError):
    """Raised for request-layer communication errors."""

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status


class RateLimitedError(APIError):
    """Raised when the API answers 429; ``retry_after`` is in seconds."""

    def __init__(self, message: str, retry_after: float = 0.0):
        super().__init__(message, status=429)
        self.retry_after = retry_after


class AuthenticationError(GatewireError):
    """Raised when the credential is rejected (HTTP 401 or gateway close 4004)."""


class GatewayError(GatewireError):
    """Base class for gateway connection errors."""


class TransportError(GatewayError):
    """Socket-level failure. Triggers a reconnect."""


class HandshakeTimeout(TransportError):
    """No ``hello`` (or READY/RESUMED) arrived within the handshake window."""


class ProtocolError(GatewayError):
    """Malformed frame or unexpected opcode. The frame is dropped."""


class DecodeError(ProtocolError):
    """A frame could not be decompressed or parsed."""


class CompressionError(DecodeError):
    """The shared zlib stream is corrupt; the connection must be reopened."""


class GatewayRejectedError(GatewayError):
    """The gateway closed with a code that must not be retried."""

    def __init__(self, code: int, reason: str = ""):
        super().__init__(f"Gateway closed with {code}: {reason or 'no reason given'}")
        self.code = code
        self.reason = reason


class ReconnectExhaustedError(GatewayError):
    """The reconnect policy ran out of attempts."""


class NotReadyError(GatewayError):
    """The operation requires a READY gateway session."""


@dataclass(frozen=True)
class HandlerFault:
    """Record of an exception raised inside a user event handler.

    Faults are isolated at the dispatch boundary and kept for introspection;
    they are never raised into the connection.
    """

    event_name: str
    handler_name: str
    error: BaseException
    timestamp: float = field(default_factory=time)
