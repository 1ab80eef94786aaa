"""Shared setup logic for CLI commands."""

from __future__ import annotations

import sys
from pathlib import Path

import click

GATEWIRE_DIR = Path.home() / ".gatewire"
CONFIG_PATH = GATEWIRE_DIR / "config.yaml"

config_option = click.option(
    "--config",
    "config_file",
    type=click.Path(dir_okay=False),
    default=None,
    help=f"YAML/JSON config file (default: {CONFIG_PATH}).",
)


def load_config(config_file: str | None = None):
    """Load config from *config_file*, falling back to ~/.gatewire/config.yaml."""
    from gatewire.core.config import Config

    path = config_file or (str(CONFIG_PATH) if CONFIG_PATH.exists() else None)
    return Config(config_file=path)


def load_identity(config):
    """Build the Identity, exiting with a hint when no token is configured."""
    from gatewire.core.exceptions import ConfigurationError
    from gatewire.core.identity import Identity

    try:
        return Identity.from_config(config)
    except ConfigurationError as e:
        click.echo(f"{e}. Set identity.token in the config file or GATEWIRE_IDENTITY__TOKEN.")
        sys.exit(1)


def configure_logging(config, level: str | None = None) -> None:
    from gatewire.core.utils.logging import setup_logging_from_config

    setup_logging_from_config(config, level=level)
