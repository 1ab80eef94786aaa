"""Gateway connection manager — socket lifecycle, handshake, reconnects.

Owns one WebSocket at a time and the three tasks around it:

- the **run loop** (one per :meth:`GatewayConnection.connect`), which opens
  sockets, reads frames, feeds them to the :class:`FrameCodec` and the
  :class:`GatewaySession` state machine, and applies the reconnect policy;
- the **heartbeat** task (:class:`HeartbeatScheduler`);
- the **dispatcher** consumer (:class:`Dispatcher`), which runs handlers
  away from the read loop.

Recoverable failures (socket drops, missed heartbeat acks, handshake
timeouts, server-requested reconnects) never reach the caller; they cost
a short gap in event delivery.  Terminal failures (rejected credential,
rejected configuration, exhausted reconnect attempts) end the run loop and
are raised from :meth:`connect` or :meth:`wait_closed` and passed to
``on_error``.
"""

from __future__ import annotations

import asyncio
import inspect
import random
import urllib.parse
from collections.abc import Awaitable, Callable
from typing import Any, NoReturn

import websockets
from loguru import logger
from websockets.exceptions import ConnectionClosed, WebSocketException

from gatewire.core.exceptions import (
    APIError,
    AuthenticationError,
    CompressionError,
    DecodeError,
    GatewayRejectedError,
    GatewireError,
    HandshakeTimeout,
    NotReadyError,
    ProtocolError,
    ReconnectExhaustedError,
    TransportError,
)
from gatewire.core.identity import Identity
from gatewire.gateway.backoff import Backoff, ReconnectPolicy
from gatewire.gateway.codec import FrameCodec
from gatewire.gateway.dispatcher import Dispatcher
from gatewire.gateway.events import SessionInfo
from gatewire.gateway.heartbeat import HeartbeatScheduler
from gatewire.gateway.opcodes import (
    FATAL_CLOSE_CODES,
    READY,
    RESUMED,
    SESSION_DISCARD_CLOSE_CODES,
    CloseCode,
    GatewayPayload,
    OpCode,
    SessionState,
)
from gatewire.gateway.session import GatewaySession

UrlProvider = Callable[[], Awaitable[str]]
"""Async endpoint discovery, typically ``RestClient.get_gateway_url``."""

ConnectFn = Callable[[str], Awaitable[Any]]
"""Opens a WebSocket and returns an object with ``recv``/``send``/``close``."""

ErrorCallback = Callable[[GatewireError], Any]

# Close code used when we drop a socket but want to keep the session resumable.
# A 1000/1001 close tells the gateway the session is over.
RESUMABLE_CLOSE = 4000


def _default_connect(url: str) -> Awaitable[Any]:
    return websockets.connect(url, max_size=None)


def build_gateway_url(base: str, *, version: int, compress: bool) -> str:
    """Append ``v``/``encoding``/``compress`` query parameters to a gateway URL."""
    parts = urllib.parse.urlsplit(base)
    query = dict(urllib.parse.parse_qsl(parts.query))
    query.update({"v": str(version), "encoding": "json"})
    if compress:
        query["compress"] = "zlib-stream"
    else:
        query.pop("compress", None)
    path = parts.path or "/"
    return urllib.parse.urlunsplit((parts.scheme, parts.netloc, path, urllib.parse.urlencode(query), ""))


def _close_details(exc: ConnectionClosed) -> tuple[int | None, str]:
    rcvd = getattr(exc, "rcvd", None)
    if rcvd is None:
        return None, ""
    return rcvd.code, rcvd.reason


class GatewayConnection:
    """One logical connection to the gateway.

    Args:
        identity: Credential plus handshake metadata.
        url_provider: Async callable returning the gateway base URL.  Called
            once and cached; re-queried after a failed socket open.
        dispatcher: Where dispatch events go.  A default one is created if
            omitted.
        api_version: Value of the ``v`` query parameter.
        compress: Negotiate ``zlib-stream`` transport compression.
        handshake_timeout: Seconds allowed for ``hello`` after the socket
            opens, and again for READY/RESUMED after identify/resume.
        large_threshold: Forwarded in the identify payload.
        policy: Reconnect backoff policy.
        connect_fn: Socket factory (tests inject fakes here).
        on_error: Called with terminal errors raised after :meth:`connect`
            returned.
        invalid_session_delay: ``(low, high)`` seconds to wait before
            re-identifying after a non-resumable invalid session.
        jitter_fn: Passed to the heartbeat scheduler.
    """

    def __init__(
        self,
        identity: Identity,
        url_provider: UrlProvider,
        dispatcher: Dispatcher | None = None,
        *,
        api_version: int = 10,
        compress: bool = True,
        handshake_timeout: float = 30.0,
        large_threshold: int = 250,
        policy: ReconnectPolicy | None = None,
        connect_fn: ConnectFn | None = None,
        on_error: ErrorCallback | None = None,
        invalid_session_delay: tuple[float, float] = (1.0, 5.0),
        jitter_fn: Callable[[], float] = random.random,
    ):
        self.identity = identity
        self.dispatcher = dispatcher or Dispatcher()
        self.api_version = api_version
        self.compress = compress
        self.handshake_timeout = handshake_timeout
        self.invalid_session_delay = invalid_session_delay
        self.on_error = on_error

        self._url_provider = url_provider
        self._connect_fn = connect_fn or _default_connect
        self._gateway_url: str | None = None

        self._session = GatewaySession(identity, large_threshold=large_threshold)
        self._codec = FrameCodec(compress=compress)
        self._backoff = Backoff(policy)
        self._heartbeat = HeartbeatScheduler(
            send_fn=self._send_heartbeat,
            sequence_fn=lambda: self._session.info.sequence,
            on_zombie=self._on_zombie,
            jitter_fn=jitter_fn,
        )

        self._ws: Any = None
        self._runner: asyncio.Task | None = None
        self._ready = asyncio.Event()
        self._closing = False
        self._handshake_deadline: float | None = None
        self._fatal: GatewireError | None = None

    # ── Introspection ──────────────────────────────────────────────

    @property
    def state(self) -> SessionState:
        return self._session.state

    @property
    def session(self) -> SessionInfo:
        return self._session.info

    @property
    def session_id(self) -> str | None:
        return self._session.info.session_id

    @property
    def sequence(self) -> int | None:
        return self._session.info.sequence

    @property
    def user(self) -> dict[str, Any] | None:
        """The client's own user object from the last READY."""
        return self._session.info.user

    @property
    def latency(self) -> float | None:
        """Seconds between the last heartbeat and its ack."""
        return self._heartbeat.latency

    @property
    def heartbeat_interval(self) -> float | None:
        """Current heartbeat interval in milliseconds."""
        interval = self._heartbeat.interval
        return interval * 1000.0 if interval is not None else None

    @property
    def last_heartbeat_ack(self) -> float | None:
        return self._heartbeat.last_ack

    @property
    def reconnect_attempts(self) -> int:
        return self._backoff.attempts

    @property
    def is_ready(self) -> bool:
        return self._session.state is SessionState.READY

    # ── Public API ─────────────────────────────────────────────────

    async def connect(self) -> None:
        """Connect and wait for the first READY.

        A no-op while a connection is already running.

        Raises:
            AuthenticationError: The gateway rejected the credential.
            GatewayRejectedError: The gateway rejected the configuration.
            ReconnectExhaustedError: No session could be established within
                the reconnect policy.
        """
        if self._runner is not None and not self._runner.done():
            logger.info(f"Gateway already {self.state.value}, ignoring connect()")
            return

        self._closing = False
        self._fatal = None
        self._ready.clear()
        self._backoff.reset()
        self._session.reset()
        self._session.begin_connect()
        self.dispatcher.start()

        runner = self._runner = asyncio.create_task(self._run(), name="gateway-run-loop")
        ready_waiter = asyncio.create_task(self._ready.wait())
        try:
            await asyncio.wait({runner, ready_waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            if not ready_waiter.done():
                ready_waiter.cancel()

        if runner.done():
            if runner.cancelled():
                return
            runner.result()
            if self._fatal is not None:
                raise self._fatal

    async def wait_closed(self) -> None:
        """Block until the run loop ends; re-raise a terminal error if any."""
        if self._runner is not None:
            try:
                await self._runner
            except asyncio.CancelledError:
                if not self._closing:
                    raise
        if self._fatal is not None:
            raise self._fatal

    async def disconnect(self) -> None:
        """Close the socket, stop heartbeating and forget the session.

        Running handlers are not cancelled and are not waited for.
        """
        self._closing = True
        self._heartbeat.stop()

        ws, self._ws = self._ws, None
        if ws is not None:
            try:
                await ws.close(code=1000, reason="client disconnect")
            except (WebSocketException, OSError) as e:
                logger.debug(f"Error while closing gateway socket: {e!r}")

        runner, self._runner = self._runner, None
        if runner is not None and not runner.done() and runner is not asyncio.current_task():
            runner.cancel()
            try:
                await runner
            except asyncio.CancelledError:
                pass

        self._session.reset()
        await self.dispatcher.stop()
        logger.info("Gateway disconnected")

    async def update_status(self, presence: dict[str, Any]) -> None:
        """Send a presence update (opcode 3).

        Raises:
            NotReadyError: The session is not READY.
        """
        if self.state is not SessionState.READY:
            raise NotReadyError(f"Cannot update status while {self.state.value}")
        await self.send(OpCode.PRESENCE_UPDATE, presence)

    async def send(self, op: OpCode, data: Any = None) -> None:
        """Encode and send one payload through the current socket."""
        text = self._codec.encode(op, data)
        ws = self._ws
        if ws is None:
            raise TransportError("No open gateway socket")
        logger.trace(f"> {text[:200]}")
        try:
            await ws.send(text)
        except ConnectionClosed as e:
            raise TransportError(f"Socket closed while sending op {int(op)}") from e

    # ── Run loop ───────────────────────────────────────────────────

    async def _run(self) -> None:
        try:
            while not self._closing:
                try:
                    await self._run_socket()
                except TransportError as e:
                    logger.warning(f"Gateway connection lost: {e}")

                self._heartbeat.stop()
                if self._closing:
                    break

                if not self._backoff.can_retry():
                    raise ReconnectExhaustedError(f"Gave up after {self._backoff.attempts} reconnect attempts")

                if self._session.state is SessionState.DISCONNECTED:
                    # Invalid session: identify again from scratch.  Counts
                    # as an attempt, only READY resets the counter.
                    attempt = self._backoff.record_attempt()
                    delay = random.uniform(*self.invalid_session_delay)
                    logger.info(f"Re-identifying in {delay:.2f}s (attempt {attempt})")
                    await asyncio.sleep(delay)
                    self._session.begin_connect()
                    continue

                self._session.mark_reconnecting()
                delay = self._backoff.next_delay()
                logger.info(f"Reconnecting in {delay:.2f}s (attempt {self._backoff.attempts})")
                await asyncio.sleep(delay)
        except GatewireError as e:
            await self._fail(e)

    async def _fail(self, error: GatewireError) -> None:
        logger.error(f"Gateway connection failed permanently: {error}")
        self._fatal = error
        self._heartbeat.stop()
        self._session.reset()
        if self.on_error is not None and self._ready.is_set():
            try:
                result = self.on_error(error)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("on_error callback failed")

    async def _resolve_url(self) -> str:
        if self._session.state is SessionState.RECONNECTING and self._session.info.resumable:
            if self._session.info.resume_url:
                return self._session.info.resume_url
        if self._gateway_url is None:
            try:
                self._gateway_url = await self._url_provider()
            except AuthenticationError:
                raise
            except APIError as e:
                raise TransportError(f"Gateway discovery failed: {e}") from e
        return self._gateway_url

    async def _run_socket(self) -> None:
        """Open one socket and read it until it closes or must be replaced."""
        base = await self._resolve_url()
        url = build_gateway_url(base, version=self.api_version, compress=self.compress)
        logger.info(f"Opening gateway socket {url}")

        self._codec.compress = self.compress
        self._codec.reset()
        try:
            ws = await asyncio.wait_for(self._connect_fn(url), timeout=self.handshake_timeout)
        except (OSError, WebSocketException, TimeoutError) as e:
            self._gateway_url = None
            raise TransportError(f"Could not open {url}: {e!r}") from e

        self._ws = ws
        self._handshake_deadline = asyncio.get_running_loop().time() + self.handshake_timeout
        try:
            await self._read_loop(ws)
        finally:
            self._heartbeat.stop()
            self._handshake_deadline = None
            if self._ws is ws:
                self._ws = None
            try:
                await ws.close(code=RESUMABLE_CLOSE)
            except (WebSocketException, OSError):
                pass

    async def _read_loop(self, ws: Any) -> None:
        loop = asyncio.get_running_loop()
        while True:
            timeout = None
            if self._handshake_deadline is not None:
                timeout = max(self._handshake_deadline - loop.time(), 0.0)
            try:
                raw = await asyncio.wait_for(ws.recv(), timeout=timeout)
            except TimeoutError:
                raise HandshakeTimeout(
                    f"Handshake did not complete within {self.handshake_timeout}s (state={self.state.value})"
                ) from None
            except ConnectionClosed as e:
                if self._closing:
                    return
                self._raise_for_close(e)

            try:
                payloads = self._codec.decode_all(raw)
            except CompressionError as e:
                raise TransportError(str(e)) from e
            except DecodeError as e:
                logger.warning(f"Dropping undecodable frame: {e}")
                payloads = self._codec.drain()

            for payload in payloads:
                if not await self._handle(payload):
                    return

    def _raise_for_close(self, exc: ConnectionClosed) -> NoReturn:
        code, reason = _close_details(exc)
        if code == CloseCode.AUTHENTICATION_FAILED:
            raise AuthenticationError(f"Gateway rejected the token: {reason or 'authentication failed'}")
        if code in FATAL_CLOSE_CODES:
            raise GatewayRejectedError(code, reason)
        if code in SESSION_DISCARD_CLOSE_CODES:
            logger.info(f"Gateway closed with {code}, session cannot be resumed")
            self._session.discard()
        raise TransportError(f"Socket closed (code={code}, reason={reason!r})") from exc

    # ── Payload handling ───────────────────────────────────────────

    async def _handle(self, payload: GatewayPayload) -> bool:
        """Apply one payload.  Returns False when the socket must be replaced."""
        logger.trace(f"< op={payload.op.name} t={payload.t} s={payload.s}")
        op = payload.op

        if op is OpCode.DISPATCH:
            if self._session.state is SessionState.DISCONNECTED:
                logger.debug(f"Ignoring dispatch {payload.t} while disconnected")
                return True
            event = self._session.on_dispatch(payload)
            if event.name in (READY, RESUMED):
                self._handshake_deadline = None
                self._backoff.reset()
                self._ready.set()
            self.dispatcher.dispatch_nowait(event)
            return True

        if op is OpCode.HELLO:
            try:
                interval_ms, (out_op, out_data) = self._session.on_hello(payload)
            except ProtocolError as e:
                logger.warning(str(e))
                return True
            await self.send(out_op, out_data)
            logger.debug(f"Sent {out_op.name.lower()}, starting heartbeat every {interval_ms}ms")
            self._heartbeat.start(interval_ms)
            self._handshake_deadline = asyncio.get_running_loop().time() + self.handshake_timeout
            return True

        if op is OpCode.HEARTBEAT_ACK:
            self._heartbeat.on_ack_received()
            return True

        if op is OpCode.HEARTBEAT:
            await self._heartbeat.beat_now()
            return True

        if op is OpCode.RECONNECT:
            logger.info("Gateway requested a reconnect")
            self._session.mark_reconnecting()
            return False

        if op is OpCode.INVALID_SESSION:
            self._session.on_invalid_session(bool(payload.d))
            return False

        logger.warning(f"Ignoring unexpected opcode {op.name} in state {self.state.value}")
        return True

    # ── Heartbeat hooks ────────────────────────────────────────────

    async def _send_heartbeat(self, seq: int | None) -> None:
        await self.send(OpCode.HEARTBEAT, seq)

    def _on_zombie(self) -> None:
        ws = self._ws
        if ws is None:
            return
        logger.warning("Heartbeat ack missed, forcing reconnect")
        self._session.mark_reconnecting()
        task = asyncio.create_task(ws.close(code=RESUMABLE_CLOSE, reason="heartbeat ack missed"))
        task.add_done_callback(lambda t: t.cancelled() or t.exception())
