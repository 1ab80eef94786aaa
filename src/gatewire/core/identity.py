"""Process-wide client identity shared by the gateway handshake and the request layer."""

from __future__ import annotations

import platform
from dataclasses import dataclass, field
from typing import Any

from gatewire.core.exceptions import ConfigurationError


@dataclass(frozen=True)
class Identity:
    """Immutable credential plus application metadata.

    ``intents`` is the capability bitmask sent on identify. ``presence`` is
    an optional initial presence object included in the identify payload.
    """

    token: str
    name: str = "gatewire"
    url: str = ""
    version: str = "0.1.0"
    intents: int = 513
    presence: dict[str, Any] | None = None
    properties: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.token:
            raise ConfigurationError("A credential token is required")

    @property
    def connection_properties(self) -> dict[str, str]:
        """``os``/``browser``/``device`` strings reported on identify."""
        return {
            "os": platform.system().lower() or "unknown",
            "browser": self.name,
            "device": self.name,
            **self.properties,
        }

    @property
    def user_agent(self) -> str:
        return f"{self.name} ({self.url}, {self.version})"

    @classmethod
    def from_config(cls, config: Any) -> Identity:
        """Build an identity from the ``identity`` section of a Config."""
        settings = config.validated().identity
        return cls(
            token=settings.token,
            name=settings.name,
            url=settings.url,
            version=settings.version,
            intents=settings.intents,
            presence=settings.presence,
        )

    def __repr__(self) -> str:
        return f"Identity(name={self.name!r}, version={self.version!r}, intents={self.intents})"
