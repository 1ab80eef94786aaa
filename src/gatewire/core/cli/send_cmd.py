"""gatewire send — post one message through the request layer."""

from __future__ import annotations

import asyncio

import click

from .common import config_option


@click.command()
@click.argument("channel_id")
@click.argument("message")
@click.option("--typing/--no-typing", default=False, help="Show the typing indicator before sending.")
@config_option
def send(channel_id: str, message: str, typing: bool, config_file: str | None) -> None:
    """Send MESSAGE to the channel CHANNEL_ID."""
    from gatewire.core.cli.common import load_config, load_identity
    from gatewire.core.exceptions import GatewireError
    from gatewire.rest.client import RestClient

    config = load_config(config_file)
    rest = RestClient.from_config(config, load_identity(config))

    async def _send() -> dict:
        if typing:
            await rest.trigger_typing(channel_id)
        return await rest.send_message(channel_id, message)

    try:
        result = asyncio.run(_send())
    except GatewireError as e:
        raise click.ClickException(str(e)) from e
    click.echo(f"Sent message {result.get('id', '?')} to {channel_id}")
