import asyncio
import json
import socket
import struct

import pytest

from quill import quill_protocol as protocol
from quill.quill_datatypes import ConnectionBroken, ProtocolViolation, WorkerStartupError


@pytest.fixture
def pair():
    left, right = socket.socketpair()
    yield left, right
    left.close()
    right.close()


def test_frame_is_length_prefixed_json():
    frame = protocol.pack_message({"type": "request", "method": "evaluate", "body": "x = 1\n"})
    (length,) = struct.unpack(">I", frame[:4])
    assert length == len(frame) - 4
    assert json.loads(frame[4:].decode("utf-8"))["body"] == "x = 1\n"


def test_unpack_frame_roundtrip_keeps_unicode():
    message = {"type": "response", "method": "evaluate", "status": "ok", "body": "π → ∞"}
    assert protocol.unpack_frame(protocol.pack_message(message)) == message


def test_frame_too_large_for_prefix():
    with pytest.raises(ProtocolViolation):
        protocol.frame_header(protocol.MAX_FRAME_SIZE + 1)
    with pytest.raises(ProtocolViolation):
        protocol.frame_header(-1)


def test_frame_header_limits():
    assert protocol.frame_header(protocol.MAX_FRAME_SIZE) == b"\xff\xff\xff\xff"
    assert protocol.frame_header(0) == b"\x00\x00\x00\x00"
    assert protocol.frame_header(258) == b"\x00\x00\x01\x02"


WIRE_BODIES = [
    ("none", None),
    ("empty_string", ""),
    ("empty_list", []),
    ("empty_object", {}),
    ("zero", 0),
    ("negative", -7),
    ("float", 3.5),
    ("big_int", 12345678901234567890),
    ("nested_list", [1, [2, [3, "four"]], {"five": 5.0}]),
    ("nested_object", {"outer": {"flags": [True, False, None], "name": "π"}, "count": 2}),
]


@pytest.mark.parametrize("body", [case[1] for case in WIRE_BODIES], ids=[case[0] for case in WIRE_BODIES])
def test_bodies_survive_the_wire(pair, body):
    controller, worker = pair
    protocol.send_request(controller, "complete", body)
    request = protocol.wait_for_request(worker, timeout=1)
    assert request["body"] == body

    protocol.send_response(worker, request, protocol.STATUS_OK, body)
    response = protocol.read_response(controller)
    assert response["body"] == body
    assert response["method"] == "complete"


def test_unserializable_message():
    with pytest.raises(ProtocolViolation):
        protocol.pack_message({"type": "request", "body": object()})


@pytest.mark.parametrize("frame", [
    b"\x00\x00",
    b"\x00\x00\x00\x05abc",
    b"\x00\x00\x00\x03abc",
    protocol.frame_header(2) + b"[]",
    protocol.frame_header(15) + b'{"type":"note"}',
])
def test_malformed_frames(frame):
    with pytest.raises(ProtocolViolation):
        protocol.unpack_frame(frame)


def test_request_response_exchange(pair):
    controller, worker = pair
    protocol.send_request(controller, "evaluate", "1 + 1\n")
    request = protocol.wait_for_request(worker, timeout=1)
    assert request == {"type": "request", "method": "evaluate", "body": "1 + 1\n"}

    protocol.send_response(worker, request, protocol.STATUS_OK)
    response = protocol.read_response(controller)
    assert response["status"] == protocol.STATUS_OK
    assert response["method"] == "evaluate"
    assert response["body"] is None


def test_wait_for_request_times_out(pair):
    _, worker = pair
    assert protocol.wait_for_request(worker, timeout=0.01) is None


def test_wait_for_request_rejects_responses(pair):
    controller, worker = pair
    protocol.send(controller, {"type": "response", "method": "x", "status": "ok", "body": None})
    with pytest.raises(ProtocolViolation):
        protocol.wait_for_request(worker, timeout=1)


def test_read_response_rejects_unknown_status(pair):
    controller, worker = pair
    protocol.send(worker, {"type": "response", "method": "x", "status": "maybe", "body": None})
    with pytest.raises(ProtocolViolation):
        protocol.read_response(controller)


def test_closed_peer_is_connection_broken(pair):
    controller, worker = pair
    controller.close()
    with pytest.raises(ConnectionBroken):
        protocol.receive(worker)


def test_ready_signal(pair):
    controller, worker = pair
    protocol.signal_ready(worker)
    protocol.wait_ready(controller)

    worker.sendall(b"x")
    with pytest.raises(WorkerStartupError):
        protocol.wait_ready(controller)


@pytest.mark.asyncio
async def test_async_connection_request(pair):
    controller, worker = pair
    # the worker's answers can be queued before the request goes out
    protocol.signal_ready(worker)
    protocol.send_response(worker, {"method": "evaluate"}, protocol.STATUS_EXITED, 0)

    connection = await protocol.AsyncConnection.open(controller)
    await connection.wait_ready()
    response = await connection.request("evaluate", "raise SystemExit(0)\n")
    assert response["status"] == protocol.STATUS_EXITED
    assert response["body"] == 0

    request = protocol.wait_for_request(worker, timeout=1)
    assert request["body"] == "raise SystemExit(0)\n"
    await connection.close()


@pytest.mark.asyncio
async def test_async_connection_broken(pair):
    controller, worker = pair
    connection = await protocol.AsyncConnection.open(controller)
    worker.close()
    with pytest.raises(ConnectionBroken):
        await connection.receive()
    await connection.close()


@pytest.mark.asyncio
async def test_async_wait_ready_rejects_other_bytes(pair):
    controller, worker = pair
    worker.sendall(b"?")
    connection = await protocol.AsyncConnection.open(controller)
    with pytest.raises(WorkerStartupError):
        await connection.wait_ready()
    await connection.close()


@pytest.mark.asyncio
async def test_abandoned_request_still_consumes_its_response(pair):
    controller, worker = pair
    loop = asyncio.get_running_loop()
    connection = await protocol.AsyncConnection.open(controller)

    slow = asyncio.ensure_future(connection.request("complete", {"line": "slow().", "cursorOffset": 7}))
    first = await loop.run_in_executor(None, protocol.wait_for_request, worker, 5)
    assert first["method"] == "complete"
    slow.cancel()
    with pytest.raises(asyncio.CancelledError):
        await slow

    # the answer to the abandoned request arrives late
    protocol.send_response(worker, first, protocol.STATUS_OK, {"start": 7, "end": 7, "completions": []})

    pending = asyncio.ensure_future(connection.request("evaluate", "40 + 2\n"))
    second = await loop.run_in_executor(None, protocol.wait_for_request, worker, 5)
    assert second["method"] == "evaluate"
    protocol.send_response(worker, second, protocol.STATUS_OK)

    response = await asyncio.wait_for(pending, 5)
    assert response["method"] == "evaluate"
    assert response["body"] is None
    await connection.close()
