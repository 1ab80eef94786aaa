"""Gatewire — client for real-time push-notification gateways."""

__version__ = "0.1.0"

from gatewire.client import Client
from gatewire.core.identity import Identity
from gatewire.gateway import Dispatcher, GatewayConnection, GatewayEvent, SessionState

__all__ = [
    "Client",
    "Dispatcher",
    "GatewayConnection",
    "GatewayEvent",
    "Identity",
    "SessionState",
    "__version__",
]
