"""gatewire listen — connect to the gateway and log incoming events."""

from __future__ import annotations

import asyncio
import json

import click

from .common import config_option


@click.command()
@click.option("--event", "events", multiple=True, help="Only print these event names (repeatable).")
@click.option("--log-level", default=None, help="Override logging.level (TRACE shows every frame).")
@config_option
def listen(events: tuple[str, ...], log_level: str | None, config_file: str | None) -> None:
    """Connect to the gateway and print dispatch events until Ctrl+C."""
    from gatewire.client import Client
    from gatewire.core.cli.common import configure_logging, load_config, load_identity
    from gatewire.core.exceptions import GatewireError

    config = load_config(config_file)
    load_identity(config)
    configure_logging(config, log_level)

    client = Client.from_config(config)
    wanted = set(events)

    def _print_event(event) -> None:  # type: ignore[no-untyped-def]
        if wanted and event.name not in wanted:
            return
        body = json.dumps(event.data, default=str)
        click.echo(f"[{event.sequence}] {event.name} {body[:300]}")

    client.dispatcher.on_all(_print_event)

    click.echo("Connecting to the gateway... Press Ctrl+C to stop.\n")
    try:
        asyncio.run(client.run())
    except GatewireError as e:
        raise click.ClickException(str(e)) from e
