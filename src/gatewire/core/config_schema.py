"""Pydantic models for config validation.

Opt-in schema validation for ``Config.config_data``.  Call
``Config.validated()`` to obtain a typed, validated ``GatewireConfig``
instance.  Existing dict-based access continues to work unchanged.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from gatewire.core.utils.logging import DEFAULT_FORMAT


class APIConfig(BaseModel):
    """HTTP request layer settings."""

    base_url: str = "https://discord.com/api"
    version: int = 10
    timeout: float = 15.0
    auth_scheme: str = "Bot"

    @field_validator("base_url")
    @classmethod
    def _strip_slash(cls, v: str) -> str:
        return v.rstrip("/")


class IdentityConfig(BaseModel):
    """Credential and application metadata sent on identify."""

    model_config = ConfigDict(extra="allow")

    token: str = ""
    name: str = "gatewire"
    url: str = ""
    version: str = "0.1.0"
    intents: int = Field(default=513, ge=0)
    presence: dict | None = None


class GatewaySettings(BaseModel):
    """Socket-level knobs."""

    compress: bool = True
    handshake_timeout: float = Field(default=30.0, gt=0)
    large_threshold: int = Field(default=250, ge=50, le=250)


class ReconnectConfig(BaseModel):
    """Capped exponential backoff between reconnect attempts."""

    base_delay: float = Field(default=1.0, ge=0)
    max_delay: float = Field(default=60.0, ge=0)
    max_attempts: int | None = Field(default=None, ge=1)

    @model_validator(mode="after")
    def _cap_above_base(self) -> ReconnectConfig:
        if self.max_delay < self.base_delay:
            raise ValueError(f"max_delay ({self.max_delay}) must be >= base_delay ({self.base_delay})")
        return self


class DispatchConfig(BaseModel):
    """Handler execution settings."""

    max_workers: int = Field(default=4, ge=1)
    queue_size: int = Field(default=1000, ge=0)
    handler_timeout: float | None = Field(default=None, gt=0)


LOG_LEVELS = ("TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL")


class LoggingConfig(BaseModel):
    """loguru sinks; ``gateway_level`` overrides the threshold for socket internals."""

    level: str = "INFO"
    file: str | None = None
    format: str = DEFAULT_FORMAT
    rotation: str = "10 MB"
    retention: str = "7 days"
    gateway_level: str | None = None

    @field_validator("level", "gateway_level")
    @classmethod
    def _known_level(cls, v: str | None) -> str | None:
        if v is None:
            return v
        if v.upper() not in LOG_LEVELS:
            raise ValueError(f"Unknown log level {v!r}, expected one of {', '.join(LOG_LEVELS)}")
        return v.upper()


class GatewireConfig(BaseModel):
    """Root configuration model.

    Uses ``extra="allow"`` so consumers can bolt on custom sections
    without touching this schema.
    """

    model_config = ConfigDict(extra="allow")

    api: APIConfig = APIConfig()
    identity: IdentityConfig = IdentityConfig()
    gateway: GatewaySettings = GatewaySettings()
    reconnect: ReconnectConfig = ReconnectConfig()
    dispatch: DispatchConfig = DispatchConfig()
    logging: LoggingConfig = LoggingConfig()
