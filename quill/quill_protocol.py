"""
Framed request/response messages over a full-duplex byte stream.

Wire format: a 4-byte big-endian length prefix followed by a UTF-8 JSON
object. Requests carry `type`, `method` and `body`; responses carry `type`,
`method`, `status` and `body`. Delivery is assumed to be in order and
reliable, so there is no resequencing or retry: a closed connection is
fatal for both ends and surfaces as ConnectionBroken.

The worker side uses plain sockets driven by select(), so a pending signal
handler (the cancel path) is never held up behind a blocking read. The
controller side uses asyncio streams over the same kind of socket.
"""

from __future__ import annotations

import asyncio
import json
import logging
import select
import socket
import struct
from typing import Any, Optional

from quill.quill_datatypes import ConnectionBroken, ProtocolViolation, WorkerStartupError

logger = logging.getLogger(__name__)

SIGNAL_READY = b"\x00"

STATUS_OK = "ok"
STATUS_EXITED = "exited"
STATUS_FAILED = "failed"
STATUSES = frozenset({STATUS_OK, STATUS_EXITED, STATUS_FAILED})

MESSAGE_TYPES = frozenset({"request", "response"})

HEADER = struct.Struct(">I")
MAX_FRAME_SIZE = 0xFFFFFFFF

# Seconds the worker waits in select() before re-arming its loop.
POLL_INTERVAL = 10.0

_CHUNK = 65536


# --------------------------
# Framing
# --------------------------

def frame_header(length: int) -> bytes:
    if length < 0 or length > MAX_FRAME_SIZE:
        raise ProtocolViolation(f"frame of {length} bytes does not fit a 4-byte length prefix")
    return HEADER.pack(length)


def pack_message(message: Any) -> bytes:
    try:
        payload = json.dumps(message, ensure_ascii=False, separators=(",", ":")).encode("utf-8")
    except (TypeError, ValueError) as e:
        raise ProtocolViolation(f"message is not serializable: {e}") from e
    return frame_header(len(payload)) + payload


def decode_payload(payload: bytes) -> dict:
    try:
        message = json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as e:
        raise ProtocolViolation(f"malformed frame: {e}") from e
    if not isinstance(message, dict) or message.get("type") not in MESSAGE_TYPES:
        raise ProtocolViolation(f"frame is neither a request nor a response: {message!r}")
    return message


def unpack_frame(frame: bytes) -> dict:
    """Decode one complete frame (header included)."""
    if len(frame) < HEADER.size:
        raise ProtocolViolation("truncated frame header")
    (length,) = HEADER.unpack_from(frame)
    payload = frame[HEADER.size:HEADER.size + length]
    if len(payload) != length:
        raise ProtocolViolation(f"truncated frame: expected {length} bytes, got {len(payload)}")
    return decode_payload(payload)


# --------------------------
# Blocking-free socket I/O (worker side)
# --------------------------

def write(sock: socket.socket, data: bytes) -> int:
    view = memoryview(data)
    total = len(view)
    written = 0
    while written < total:
        select.select([], [sock], [])
        try:
            written += sock.send(view[written:])
        except BlockingIOError:
            continue
        except OSError as e:
            raise ConnectionBroken(f"Socket error: wrote {written} of {total} bytes.") from e
    return written


def read(sock: socket.socket, nbytes: int) -> bytes:
    chunks = []
    remaining = nbytes
    while remaining:
        select.select([sock], [], [])
        try:
            chunk = sock.recv(min(remaining, _CHUNK))
        except BlockingIOError:
            continue
        except OSError as e:
            raise ConnectionBroken(f"Socket error: {e}") from e
        if not chunk:
            raise ConnectionBroken()
        chunks.append(chunk)
        remaining -= len(chunk)
    return b"".join(chunks)


def poll(sock: socket.socket, timeout: Optional[float]) -> bool:
    """True when `sock` has data (or EOF) waiting within `timeout` seconds."""
    readable, _, broken = select.select([sock], [], [sock], timeout)
    if broken:
        raise ConnectionBroken()
    return bool(readable)


def send(sock: socket.socket, message: Any) -> int:
    return write(sock, pack_message(message))


def receive(sock: socket.socket, timeout: Optional[float] = None) -> Optional[dict]:
    """Read one message, or return None if nothing arrived within `timeout`."""
    if timeout is not None and not poll(sock, timeout):
        return None
    (length,) = HEADER.unpack(read(sock, HEADER.size))
    return decode_payload(read(sock, length))


def signal_ready(sock: socket.socket) -> int:
    return write(sock, SIGNAL_READY)


def wait_ready(sock: socket.socket) -> None:
    if read(sock, 1) != SIGNAL_READY:
        raise WorkerStartupError("EvalWorker failed to start")


def send_request(sock: socket.socket, method: str, body: Any = None) -> int:
    request = {"type": "request", "method": method, "body": body}
    logger.debug("sendRequest %r", request)
    return send(sock, request)


def send_response(sock: socket.socket, request: dict, status: str, body: Any = None) -> int:
    response = {"type": "response", "method": request.get("method"), "status": status, "body": body}
    logger.debug("sendResponse %r", response)
    return send(sock, response)


def wait_for_request(sock: socket.socket, timeout: Optional[float] = POLL_INTERVAL) -> Optional[dict]:
    message = receive(sock, timeout)
    if message is not None and message["type"] != "request":
        raise ProtocolViolation(f"expected a request, got {message!r}")
    return message


def _check_response(message: dict) -> dict:
    if message["type"] != "response" or message.get("status") not in STATUSES:
        raise ProtocolViolation(f"expected a response, got {message!r}")
    return message


def read_response(sock: socket.socket) -> dict:
    return _check_response(receive(sock))


# --------------------------
# asyncio transport (controller side)
# --------------------------

class AsyncConnection:
    """The controller's end of the stream.

    Exactly one request is in flight at a time; completion requests issued
    from the line-editing thread queue up behind an evaluation.
    """

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        self.reader = reader
        self.writer = writer
        self._lock = asyncio.Lock()
        self._exchanges = set()

    @classmethod
    async def open(cls, sock: socket.socket) -> "AsyncConnection":
        if sock.family == getattr(socket, "AF_UNIX", None):
            reader, writer = await asyncio.open_unix_connection(sock=sock)
        else:
            reader, writer = await asyncio.open_connection(sock=sock)
        return cls(reader, writer)

    async def _read(self, nbytes: int) -> bytes:
        try:
            return await self.reader.readexactly(nbytes)
        except asyncio.IncompleteReadError as e:
            raise ConnectionBroken() from e
        except ConnectionError as e:
            raise ConnectionBroken(f"Socket error: {e}") from e

    async def wait_ready(self) -> None:
        # the worker finishes running its start hooks before this arrives
        if await self._read(1) != SIGNAL_READY:
            raise WorkerStartupError("EvalWorker failed to start")

    async def send(self, message: Any) -> int:
        frame = pack_message(message)
        self.writer.write(frame)
        try:
            await self.writer.drain()
        except ConnectionError as e:
            raise ConnectionBroken(f"Socket error: {e}") from e
        return len(frame)

    async def receive(self) -> dict:
        (length,) = HEADER.unpack(await self._read(HEADER.size))
        return decode_payload(await self._read(length))

    async def _exchange(self, request: dict) -> dict:
        async with self._lock:
            logger.debug("sendRequest %r", request)
            await self.send(request)
            return await self.receive()

    def _forget(self, exchange: asyncio.Task):
        self._exchanges.discard(exchange)
        if not exchange.cancelled() and exchange.exception() is not None:
            logger.debug("abandoned exchange failed: %s", exchange.exception())

    async def request(self, method: str, body: Any = None) -> dict:
        """Send one request and wait for its response.

        A caller that gives up waiting does not abandon the exchange: the
        response is still read off the stream before the next request is
        sent, so replies never pair up with the wrong request.
        """
        request = {"type": "request", "method": method, "body": body}
        exchange = asyncio.ensure_future(self._exchange(request))
        self._exchanges.add(exchange)
        exchange.add_done_callback(self._forget)
        response = await asyncio.shield(exchange)
        logger.debug("readResponse %r", response)
        return _check_response(response)

    async def close(self) -> None:
        self.writer.close()
        try:
            await self.writer.wait_closed()
        except ConnectionError as e:
            logger.debug("connection already gone on close: %s", e)
