"""Gatewire CLI — entry point for listen, send and gateway-url commands."""

import click

from gatewire import __version__


@click.group()
@click.version_option(version=__version__, package_name="gatewire")
def main() -> None:
    """Gatewire — push-notification gateway client."""


# Register subcommands (lazy imports keep startup fast)
from .gateway_url_cmd import gateway_url
from .listen_cmd import listen
from .send_cmd import send

main.add_command(listen)
main.add_command(send)
main.add_command(gateway_url)
