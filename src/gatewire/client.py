"""High-level client — one gateway connection plus the request layer.

Usage::

    client = Client(Identity(token="..."))

    @client.on("MESSAGE_CREATE")
    async def echo(event):
        if event.data["author"]["id"] != event.user["id"]:
            await client.send_message(event.data["channel_id"], event.data["content"])

    asyncio.run(client.run())
"""

from __future__ import annotations

import asyncio
import signal
from typing import Any

from loguru import logger

from gatewire.core.identity import Identity
from gatewire.gateway.backoff import ReconnectPolicy
from gatewire.gateway.connection import GatewayConnection
from gatewire.gateway.dispatcher import Dispatcher, Handler
from gatewire.gateway.opcodes import SessionState
from gatewire.rest.client import RestClient


class Client:
    """Bot-facing facade over :class:`GatewayConnection` and :class:`RestClient`.

    Extra keyword arguments are forwarded to :class:`GatewayConnection`.
    """

    def __init__(
        self,
        identity: Identity,
        *,
        rest: RestClient | None = None,
        dispatcher: Dispatcher | None = None,
        **connection_kwargs: Any,
    ):
        self.identity = identity
        self.rest = rest or RestClient(identity)
        self.dispatcher = dispatcher or Dispatcher()
        connection_kwargs.setdefault("api_version", self.rest.api_version)
        self.connection = GatewayConnection(
            identity,
            url_provider=self.rest.get_gateway_url,
            dispatcher=self.dispatcher,
            **connection_kwargs,
        )
        self._stop_event: asyncio.Event | None = None

    @classmethod
    def from_config(cls, config: Any, **overrides: Any) -> Client:
        """Build a client from a :class:`~gatewire.core.config.Config`."""
        settings = config.validated()
        identity = Identity.from_config(config)
        kwargs: dict[str, Any] = {
            "api_version": settings.api.version,
            "compress": settings.gateway.compress,
            "handshake_timeout": settings.gateway.handshake_timeout,
            "large_threshold": settings.gateway.large_threshold,
            "policy": ReconnectPolicy.from_config(config),
        }
        kwargs.update(overrides)
        return cls(
            identity,
            rest=RestClient.from_config(config, identity),
            dispatcher=Dispatcher.from_config(config),
            **kwargs,
        )

    # ── Handlers ───────────────────────────────────────────────────

    def on(self, event_type: str):
        """Decorator registering a handler for a dispatch event name."""
        return self.dispatcher.on(event_type)

    def register(self, event_type: str, handler: Handler) -> None:
        self.dispatcher.register(event_type, handler)

    # ── State ──────────────────────────────────────────────────────

    @property
    def user(self) -> dict[str, Any] | None:
        """Our own user object, available once READY has been received."""
        return self.connection.user

    @property
    def state(self) -> SessionState:
        return self.connection.state

    @property
    def latency(self) -> float | None:
        return self.connection.latency

    # ── Lifecycle ──────────────────────────────────────────────────

    async def start(self) -> None:
        """Connect and return once the session is READY."""
        await self.connection.connect()

    async def close(self) -> None:
        if self._stop_event is not None:
            self._stop_event.set()
        await self.connection.disconnect()

    async def run(self) -> None:
        """Connect and block until Ctrl+C/SIGTERM or a terminal gateway error."""
        self._stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self._stop_event.set)
            except (NotImplementedError, RuntimeError):
                pass  # Windows / non-main thread

        try:
            await self.start()
            await self._wait_until_stopped(self._stop_event)
        finally:
            for sig in (signal.SIGINT, signal.SIGTERM):
                try:
                    loop.remove_signal_handler(sig)
                except (NotImplementedError, RuntimeError):
                    pass

    async def _wait_until_stopped(self, stop_event: asyncio.Event) -> None:
        closed = asyncio.create_task(self.connection.wait_closed())
        stopped = asyncio.create_task(stop_event.wait())
        try:
            await asyncio.wait({closed, stopped}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stopped.cancel()
        if not closed.done():
            logger.info("Shutting down gateway client")
            await self.connection.disconnect()
            await asyncio.wait({closed})
        closed.result()

    # ── Actions ────────────────────────────────────────────────────

    async def send_message(self, channel_id: str | int, content: str, **fields: Any) -> dict[str, Any]:
        return await self.rest.send_message(channel_id, content, **fields)

    async def trigger_typing(self, channel_id: str | int) -> None:
        await self.rest.trigger_typing(channel_id)

    async def update_status(self, presence: dict[str, Any]) -> None:
        await self.connection.update_status(presence)
