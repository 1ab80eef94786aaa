"""Shared test fixtures for gatewire."""

from __future__ import annotations

import asyncio
import json
import os
import tempfile
from typing import Any

import pytest
from websockets.exceptions import ConnectionClosed
from websockets.frames import Close

from gatewire.core.identity import Identity
from gatewire.gateway.backoff import ReconnectPolicy
from gatewire.gateway.connection import GatewayConnection
from gatewire.gateway.dispatcher import Dispatcher


@pytest.fixture
def tmp_dir():
    """Provide a temporary directory that is cleaned up after the test."""
    with tempfile.TemporaryDirectory() as d:
        yield d


@pytest.fixture
def tmp_config_file(tmp_dir):
    """Create a temporary YAML config file."""
    import yaml

    config_data = {
        "identity": {"token": "file-token", "name": "testbot", "intents": 33281},
        "reconnect": {"base_delay": 0.5, "max_delay": 10, "max_attempts": 5},
        "gateway": {"compress": False},
    }
    config_path = os.path.join(tmp_dir, "config.yaml")
    with open(config_path, "w") as f:
        yaml.dump(config_data, f)
    return config_path


@pytest.fixture
def identity() -> Identity:
    return Identity(token="secret-token", name="testbot", url="https://example.test", version="1.2.3")


# ---------------------------------------------------------------------------
# Fake gateway sockets
# ---------------------------------------------------------------------------


class FakeSocket:
    """In-memory stand-in for a websockets client connection."""

    def __init__(self, url: str):
        self.url = url
        self.sent: list[dict[str, Any]] = []
        self.closed = False
        self.close_code: int | None = None
        self._inbound: asyncio.Queue[Any] = asyncio.Queue()

    # Server side -------------------------------------------------------

    def feed(self, op: int, d: Any = None, s: int | None = None, t: str | None = None) -> None:
        self._inbound.put_nowait(json.dumps({"op": op, "d": d, "s": s, "t": t}))

    def feed_raw(self, raw: str | bytes) -> None:
        self._inbound.put_nowait(raw)

    def hello(self, interval: int = 41250) -> None:
        self.feed(10, {"heartbeat_interval": interval})

    def dispatch(self, name: str, data: Any, seq: int) -> None:
        self.feed(0, data, s=seq, t=name)

    def server_close(self, code: int, reason: str = "") -> None:
        self._inbound.put_nowait(ConnectionClosed(Close(code, reason), None))

    def drop(self) -> None:
        """Abnormal closure with no close frame (1006)."""
        self._inbound.put_nowait(ConnectionClosed(None, None))

    # Client side -------------------------------------------------------

    async def recv(self) -> Any:
        item = await self._inbound.get()
        if isinstance(item, Exception):
            self._inbound.put_nowait(item)
            raise item
        return item

    async def send(self, text: str) -> None:
        if self.closed:
            raise ConnectionClosed(None, Close(self.close_code or 1000, ""))
        self.sent.append(json.loads(text))

    async def close(self, code: int = 1000, reason: str = "") -> None:
        if self.closed:
            return
        self.closed = True
        self.close_code = code
        self._inbound.put_nowait(ConnectionClosed(Close(code, reason), Close(code, reason), rcvd_then_sent=False))

    # Assertions --------------------------------------------------------

    def sent_with_op(self, op: int) -> list[dict[str, Any]]:
        return [p for p in self.sent if p["op"] == op]

    async def wait_for_sent(self, op: int, timeout: float = 2.0) -> dict[str, Any]:
        async def _poll() -> dict[str, Any]:
            while True:
                matches = self.sent_with_op(op)
                if matches:
                    return matches[-1]
                await asyncio.sleep(0.005)

        return await asyncio.wait_for(_poll(), timeout)


class FakeGateway:
    """Socket factory handed to GatewayConnection as ``connect_fn``."""

    def __init__(self) -> None:
        self.sockets: list[FakeSocket] = []
        self._new: asyncio.Queue[FakeSocket] = asyncio.Queue()
        self.fail_next = 0

    async def connect(self, url: str) -> FakeSocket:
        if self.fail_next:
            self.fail_next -= 1
            raise OSError("connection refused")
        ws = FakeSocket(url)
        self.sockets.append(ws)
        self._new.put_nowait(ws)
        return ws

    async def next_socket(self, timeout: float = 2.0) -> FakeSocket:
        return await asyncio.wait_for(self._new.get(), timeout)


@pytest.fixture
def fake_gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
async def make_connection(identity, fake_gateway):
    """Factory for GatewayConnections wired to the fake gateway; disconnects on teardown."""
    created: list[GatewayConnection] = []

    async def url_provider() -> str:
        return "wss://gateway.test"

    def _make(**kwargs: Any) -> GatewayConnection:
        params: dict[str, Any] = {
            "connect_fn": fake_gateway.connect,
            "policy": ReconnectPolicy(base_delay=0.01, max_delay=0.02),
            "invalid_session_delay": (0.0, 0.01),
            "handshake_timeout": 2.0,
            "compress": False,
            "dispatcher": Dispatcher(),
        }
        params.update(kwargs)
        conn = GatewayConnection(identity, url_provider, **params)
        created.append(conn)
        return conn

    yield _make

    for conn in created:
        await conn.disconnect()


async def complete_handshake(
    conn: GatewayConnection,
    gateway: FakeGateway,
    *,
    session_id: str = "abc",
    seq: int = 1,
    interval: int = 41250,
    extra: dict[str, Any] | None = None,
) -> FakeSocket:
    """Drive connect() through hello -> identify -> READY and return the socket."""
    connecting = asyncio.create_task(conn.connect())
    ws = await gateway.next_socket()
    ws.hello(interval)
    await ws.wait_for_sent(2)
    ready = {"session_id": session_id, "user": {"id": "42", "username": "testbot"}, **(extra or {})}
    ws.dispatch("READY", ready, seq)
    await asyncio.wait_for(connecting, 2.0)
    return ws


async def wait_until(predicate, timeout: float = 2.0) -> None:
    async def _poll() -> None:
        while not predicate():
            await asyncio.sleep(0.005)

    await asyncio.wait_for(_poll(), timeout)


@pytest.fixture
def handshake(fake_gateway):
    """``await handshake(conn, session_id=..., seq=...)`` -> FakeSocket after READY."""

    async def _handshake(conn: GatewayConnection, **kwargs: Any) -> FakeSocket:
        return await complete_handshake(conn, fake_gateway, **kwargs)

    return _handshake


@pytest.fixture
def until():
    """``await until(lambda: cond)`` polls until the predicate holds."""
    return wait_until
