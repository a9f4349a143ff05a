import asyncio
from urllib.parse import parse_qs, urlsplit

import pytest
from websockets.exceptions import ConnectionClosedError
from websockets.frames import Close

from conftest import open_connection, wait_until
from config import (
    CLOSED_FALLBACK_REASON,
    CONSTRUCTION_FAILED_REASON,
    MAX_FRAME_SIZE,
    NOT_CONNECTED_REASON,
    TRANSPORT_ERROR_REASON,
)
from errors import ConstructionFailure, NotConnected, TransportClosed
from relay.connection import RoomConnection, build_relay_url
from relay.models import ConnectionStatus


def test_build_relay_url_sets_room_and_client():
    url = build_relay_url("ws://localhost:8080/ws", "room-1", "client-9")
    parts = urlsplit(url)
    assert (parts.scheme, parts.netloc, parts.path) == ("ws", "localhost:8080", "/ws")
    assert parse_qs(parts.query) == {"roomId": ["room-1"], "clientId": ["client-9"]}


def test_build_relay_url_keeps_other_query_params():
    url = build_relay_url("wss://relay.example/ws?region=eu&roomId=old", "new", "c")
    assert parse_qs(urlsplit(url).query) == {"region": ["eu"], "roomId": ["new"], "clientId": ["c"]}


@pytest.mark.parametrize("base,room", [
    ("http://localhost:8080/ws", "room"),
    ("not a url", "room"),
    ("ws://localhost:8080/ws", ""),
])
def test_build_relay_url_rejects_unusable_input(base, room):
    with pytest.raises(ConstructionFailure):
        build_relay_url(base, room, "client")


def test_new_connection_starts_connecting_with_a_client_id():
    connection = RoomConnection("room-1")
    assert connection.status is ConnectionStatus.CONNECTING
    assert connection.client_id
    assert not connection.is_connected


@pytest.mark.asyncio
async def test_open_connects_and_notifies(relay):
    connection = RoomConnection("room-1", client_id="me", relay_url="ws://relay.test/ws", connector=relay.connect)
    transitions = []

    async def on_status(status, reason):
        transitions.append((status, reason))

    connection.on_status(on_status)
    await connection.open()

    assert connection.is_connected
    assert transitions == [(ConnectionStatus.CONNECTED, None)]
    assert parse_qs(urlsplit(relay.urls[0]).query)["clientId"] == ["me"]
    assert relay.options["max_size"] == MAX_FRAME_SIZE


@pytest.mark.asyncio
async def test_send_before_open_raises_not_connected(relay):
    connection = RoomConnection("room-1", connector=relay.connect)
    with pytest.raises(NotConnected) as excinfo:
        await connection.send(b"frame")
    assert str(excinfo.value) == NOT_CONNECTED_REASON


@pytest.mark.asyncio
async def test_refused_handshake_closes_with_fallback_reason(relay):
    relay.refuse = True
    connection = RoomConnection("room-1", relay_url="ws://relay.test/ws", connector=relay.connect)

    with pytest.raises(TransportClosed) as excinfo:
        await connection.open()

    assert excinfo.value.reason == CLOSED_FALLBACK_REASON
    assert connection.status is ConnectionStatus.CLOSED
    assert connection.reason == CLOSED_FALLBACK_REASON


@pytest.mark.asyncio
async def test_bad_relay_url_is_a_construction_failure(relay):
    connection = RoomConnection("room-1", relay_url="http://relay.test/ws", connector=relay.connect)

    with pytest.raises(ConstructionFailure):
        await connection.open()

    assert connection.status is ConnectionStatus.CLOSED
    assert connection.reason == CONSTRUCTION_FAILED_REASON
    assert relay.urls == []


@pytest.mark.asyncio
async def test_frames_are_delivered_to_subscribers(relay):
    connection = await open_connection(relay)
    received = []

    async def on_frame(frame):
        received.append(frame)

    connection.on_frame(on_frame)
    sock = relay.socket_for(connection)
    sock.push(b"one")
    sock.push("two")
    sock.remote_close("bye")

    await connection.run()

    assert received == [b"one", "two"]
    assert connection.status is ConnectionStatus.CLOSED
    assert connection.reason == "bye"


@pytest.mark.asyncio
async def test_remote_close_without_reason_uses_fallback(relay):
    connection = await open_connection(relay)
    relay.socket_for(connection).remote_close("")

    await connection.run()

    assert connection.reason == CLOSED_FALLBACK_REASON


@pytest.mark.asyncio
async def test_abnormal_close_takes_reason_from_close_frame(relay):
    connection = await open_connection(relay)
    relay.socket_for(connection).fail(ConnectionClosedError(Close(1011, "room expired"), None))

    await connection.run()

    assert connection.status is ConnectionStatus.CLOSED
    assert connection.reason == "room expired"


@pytest.mark.asyncio
async def test_transport_error_closes_with_generic_message(relay):
    connection = await open_connection(relay)
    relay.socket_for(connection).fail(ConnectionResetError("reset by peer"))

    await connection.run()

    assert connection.reason == TRANSPORT_ERROR_REASON


@pytest.mark.asyncio
async def test_failing_subscriber_does_not_stop_the_loop(relay):
    connection = await open_connection(relay)
    received = []

    async def broken(frame):
        raise RuntimeError("boom")

    async def working(frame):
        received.append(frame)

    connection.on_frame(broken)
    connection.on_frame(working)
    sock = relay.socket_for(connection)
    sock.push(b"a")
    sock.push(b"b")
    sock.remote_close()

    await connection.run()

    assert received == [b"a", b"b"]


@pytest.mark.asyncio
async def test_close_is_terminal(relay):
    connection = await open_connection(relay)
    sock = relay.socket_for(connection)
    transitions = []

    async def on_status(status, reason):
        transitions.append(status)

    connection.on_status(on_status)
    run_task = asyncio.create_task(connection.run())

    await connection.close("done here")
    await asyncio.wait_for(run_task, timeout=1)
    await connection.close()

    assert transitions == [ConnectionStatus.CLOSED]
    assert connection.reason == "done here"
    assert sock.closed
    with pytest.raises(NotConnected):
        await connection.send(b"late")
    with pytest.raises(TransportClosed):
        await connection.open()


@pytest.mark.asyncio
async def test_send_on_dead_socket_closes_connection(relay):
    connection = await open_connection(relay)
    sock = relay.socket_for(connection)
    sock.closed = True

    with pytest.raises(NotConnected):
        await connection.send(b"frame")

    await wait_until(lambda: connection.status is ConnectionStatus.CLOSED)
    assert connection.reason == CLOSED_FALLBACK_REASON
