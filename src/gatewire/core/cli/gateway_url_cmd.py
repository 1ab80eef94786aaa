"""gatewire gateway-url — print the discovered gateway endpoint."""

from __future__ import annotations

import asyncio

import click

from .common import config_option


@click.command(name="gateway-url")
@config_option
def gateway_url(config_file: str | None) -> None:
    """Print the gateway URL returned by endpoint discovery."""
    from gatewire.core.cli.common import load_config, load_identity
    from gatewire.core.exceptions import GatewireError
    from gatewire.rest.client import RestClient

    config = load_config(config_file)
    identity = load_identity(config)
    rest = RestClient.from_config(config, identity)

    try:
        url = asyncio.run(rest.get_gateway_url())
    except GatewireError as e:
        raise click.ClickException(str(e)) from e
    click.echo(url)
