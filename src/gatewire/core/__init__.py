"""Core infrastructure: config, identity, exceptions, logging, CLI."""

from .config import Config, get_config, reset_config
from .exceptions import (
    APIError,
    AuthenticationError,
    ConfigurationError,
    GatewayError,
    GatewireError,
    HandlerFault,
    TransportError,
)
from .identity import Identity

__all__ = [
    "APIError",
    "AuthenticationError",
    "Config",
    "ConfigurationError",
    "GatewayError",
    "GatewireError",
    "HandlerFault",
    "Identity",
    "TransportError",
    "get_config",
    "reset_config",
]
