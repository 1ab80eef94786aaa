"""Frame codec — JSON payloads over an optional zlib-stream transport.

With ``compress=zlib-stream`` the gateway sends one continuous deflate
stream for the whole connection, cut into WebSocket frames at arbitrary
points.  A complete message ends with a sync flush, whose last four bytes
are ``00 00 FF FF``.  The codec buffers binary frames until that suffix
appears, then feeds the buffer to the connection-long decompressor.

A frame can end one flush and carry the whole of the next, so a single
inflate may yield several JSON documents.  They are parsed in order; the
first is returned from :meth:`FrameCodec.decode` and the rest wait in
:attr:`FrameCodec.pending`.
"""

from __future__ import annotations

import json
import zlib
from collections import deque
from typing import Any, Final

from gatewire.core.exceptions import CompressionError, DecodeError
from gatewire.gateway.opcodes import GatewayPayload, OpCode

ZLIB_SUFFIX: Final = b"\x00\x00\xff\xff"


class _NeedsMoreData:
    """Sentinel returned while a compressed message is still incomplete."""

    _instance: _NeedsMoreData | None = None

    def __new__(cls) -> _NeedsMoreData:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "NEEDS_MORE_DATA"

    def __bool__(self) -> bool:
        return False


NEEDS_MORE_DATA: Final = _NeedsMoreData()


class FrameCodec:
    """Stateful decoder/encoder for one gateway connection.

    Args:
        compress: True when the socket was opened with ``compress=zlib-stream``.
    """

    _json = json.JSONDecoder()

    def __init__(self, compress: bool = False):
        self.compress = compress
        self._buffer = bytearray()
        self._inflator = zlib.decompressobj()
        self._pending: deque[GatewayPayload] = deque()

    def reset(self) -> None:
        """Drop buffered bytes, queued payloads and the decompression context."""
        self._buffer.clear()
        self._pending.clear()
        self._inflator = zlib.decompressobj()

    @property
    def buffered(self) -> int:
        """Number of compressed bytes waiting for a flush suffix."""
        return len(self._buffer)

    @property
    def pending(self) -> int:
        """Payloads already decoded but not yet handed out."""
        return len(self._pending)

    def decode(self, raw: bytes | bytearray | str) -> GatewayPayload | _NeedsMoreData:
        """Decode one WebSocket frame.

        Returns the oldest available :class:`GatewayPayload`, or
        ``NEEDS_MORE_DATA`` when nothing is complete yet.  Further payloads
        carried by the same frame are queued; fetch them with :meth:`drain`.

        Raises:
            DecodeError: The frame is not a valid gateway payload.
            CompressionError: The zlib stream is corrupt.
        """
        self._pending.extend(self._decode_frame(raw))
        return self._pending.popleft() if self._pending else NEEDS_MORE_DATA

    def decode_all(self, raw: bytes | bytearray | str) -> list[GatewayPayload]:
        """Decode one frame and return every payload now available, oldest first.

        An empty list means the compressed message is still incomplete.
        """
        self._pending.extend(self._decode_frame(raw))
        return self.drain()

    def drain(self) -> list[GatewayPayload]:
        """Hand out the queued payloads, oldest first."""
        payloads = list(self._pending)
        self._pending.clear()
        return payloads

    def _decode_frame(self, raw: bytes | bytearray | str) -> list[GatewayPayload]:
        if isinstance(raw, str):
            return self._parse(raw)

        if not self.compress:
            try:
                return self._parse(bytes(raw).decode("utf-8"))
            except UnicodeDecodeError as e:
                raise DecodeError(f"Binary frame is not UTF-8: {e}") from e

        self._buffer.extend(raw)
        if len(self._buffer) < len(ZLIB_SUFFIX) or self._buffer[-4:] != ZLIB_SUFFIX:
            return []

        data = bytes(self._buffer)
        self._buffer.clear()
        try:
            text = self._inflator.decompress(data).decode("utf-8")
        except zlib.error as e:
            raise CompressionError(f"Corrupt zlib stream: {e}") from e
        except UnicodeDecodeError as e:
            raise DecodeError(f"Decompressed payload is not UTF-8: {e}") from e
        if not text.strip():
            return []
        return self._parse(text)

    def _parse(self, text: str) -> list[GatewayPayload]:
        """Parse one or more concatenated JSON documents.

        Documents before a malformed one are queued before the error is
        raised.
        """
        payloads: list[GatewayPayload] = []
        pos, end = 0, len(text)
        while True:
            while pos < end and text[pos].isspace():
                pos += 1
            if pos >= end and payloads:
                return payloads
            try:
                doc, pos = self._json.raw_decode(text, pos)
            except json.JSONDecodeError as e:
                self._pending.extend(payloads)
                raise DecodeError(f"Malformed JSON payload: {e}") from e
            try:
                payloads.append(self._envelope(doc))
            except DecodeError:
                self._pending.extend(payloads)
                raise

    @staticmethod
    def _envelope(doc: Any) -> GatewayPayload:
        if not isinstance(doc, dict):
            raise DecodeError(f"Expected a JSON object, got {type(doc).__name__}")

        try:
            op = OpCode(doc["op"])
        except KeyError:
            raise DecodeError("Payload has no 'op' field") from None
        except ValueError:
            raise DecodeError(f"Unknown opcode {doc['op']!r}") from None

        seq = doc.get("s")
        if seq is not None and not isinstance(seq, int):
            raise DecodeError(f"Sequence number must be an integer, got {seq!r}")

        return GatewayPayload(op=op, d=doc.get("d"), s=seq, t=doc.get("t"))

    @staticmethod
    def encode(op: OpCode | int, data: Any = None) -> str:
        """Serialize an outbound payload.

        Unencodable bodies raise ``TypeError``/``ValueError`` straight away;
        they are caller bugs, not transport conditions.
        """
        return json.dumps({"op": int(OpCode(op)), "d": data}, separators=(",", ":"), allow_nan=False)
