"""
Logging configuration using loguru.

gatewire logs through loguru under its module names.  Everything below
``gatewire.gateway`` is chatty: raw frames go out at TRACE, handshake and
heartbeat steps at DEBUG.  ``gateway_level`` sets a separate threshold for
that subtree so an app can run at INFO while still tracing its socket, or
the other way round.

Call setup_logging() at app startup, setup_logging_from_config() to read the
``logging`` config section, or just use loguru directly.
"""

import sys
from typing import Any

from loguru import logger

GATEWAY_LOGGER = "gatewire.gateway"

DEFAULT_FORMAT = "<green>{time:HH:mm:ss}</green> <level>[{level.name}]</level> <cyan>{name}</cyan> {message}"
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level} | {name}:{line} | {message}"


def _sink_options(level: str, gateway_level: str | None) -> dict[str, Any]:
    if gateway_level is None:
        return {"level": level}
    # Per-module thresholds live in the filter; the sink itself lets everything through
    return {"level": 0, "filter": {"": level, GATEWAY_LOGGER: gateway_level}}


def setup_logging(
    level: str = "WARNING",
    log_file: str | None = None,
    fmt: str = DEFAULT_FORMAT,
    rotation: str = "10 MB",
    retention: str = "7 days",
    gateway_level: str | None = None,
) -> None:
    """
    Configure loguru with console and optional file output.

    Args:
        level: Minimum log level (TRACE, DEBUG, INFO, WARNING, ERROR).
        log_file: Path to log file. If None, only logs to stderr.
        fmt: Loguru format string for the console.
        rotation: Log file rotation size.
        retention: How long to keep rotated logs.
        gateway_level: Separate minimum level for ``gatewire.gateway``
            (frames, heartbeats, handshake).  None = same as *level*.
    """
    options = _sink_options(level.upper(), gateway_level.upper() if gateway_level else None)

    logger.remove()
    logger.add(sys.stderr, format=fmt, **options)

    if log_file:
        logger.add(
            log_file,
            format=FILE_FORMAT,
            rotation=rotation,
            retention=retention,
            enqueue=True,
            **options,
        )


def setup_logging_from_config(config: Any, level: str | None = None) -> None:
    """Apply the ``logging`` section of a :class:`~gatewire.core.config.Config`.

    *level* (e.g. from a ``--log-level`` flag) overrides the configured level.
    """
    settings = config.validated().logging
    setup_logging(
        level=level or settings.level,
        log_file=settings.file,
        fmt=settings.format,
        rotation=settings.rotation,
        retention=settings.retention,
        gateway_level=settings.gateway_level,
    )
