"""Shared fixtures: an in-memory relay that fans frames out within a room.

No network is used. ``FakeRelay.connect`` stands in for the websocket
connector and hands out ``FakeSocket`` objects that behave like a client
connection: ``send``, ``close``, async iteration, ``close_reason``.
"""

import asyncio
from collections import defaultdict
from urllib.parse import parse_qsl, urlsplit

import pytest
from websockets.exceptions import ConnectionClosedError, ConnectionClosedOK
from websockets.frames import Close

from relay.connection import RoomConnection
from transfer.codec import decode

_CLOSED = object()


class FakeSocket:
    """One client connection to the fake relay."""

    def __init__(self, relay=None, room_id=None, client_id=None, inbound=()):
        self.relay = relay
        self.room_id = room_id
        self.client_id = client_id
        self.sent = []
        self.closed = False
        self.close_code = None
        self.close_reason = None
        self._inbound = asyncio.Queue()
        for frame in inbound:
            self._inbound.put_nowait(frame)

    def push(self, frame):
        """Deliver a frame to this client as if the relay forwarded it."""
        self._inbound.put_nowait(frame)

    def remote_close(self, reason=""):
        """The relay closes the connection cleanly."""
        self.close_code = 1000
        self.close_reason = reason
        self._inbound.put_nowait(_CLOSED)

    def fail(self, error):
        """The next receive raises ``error``."""
        self._inbound.put_nowait(error)

    async def send(self, frame):
        if self.closed:
            raise ConnectionClosedOK(Close(1000, ""), Close(1000, ""), True)
        self.sent.append(frame)
        if self.relay is not None:
            self.relay.forward(self, frame)

    async def close(self, code=1000, reason=""):
        if self.closed:
            return
        self.closed = True
        self.close_code = code
        self.close_reason = reason
        self._inbound.put_nowait(_CLOSED)
        if self.relay is not None:
            self.relay.remove(self)

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._inbound.get()
        if item is _CLOSED:
            self.closed = True
            raise StopAsyncIteration
        if isinstance(item, BaseException):
            self.closed = True
            raise item
        return item

    def decoded(self):
        """Every frame this client sent, decoded."""
        return [decode(frame) for frame in self.sent]


class FakeRelay:
    """Forwards frames to every other client in the same room."""

    def __init__(self):
        self.rooms = defaultdict(list)
        self.urls = []
        self.options = {}
        self.refuse = False
        self.greeting = []  # frames pushed to every new client

    async def connect(self, url, **options):
        self.urls.append(url)
        self.options = options
        if self.refuse:
            raise OSError("Connection refused")
        query = dict(parse_qsl(urlsplit(url).query))
        sock = FakeSocket(self, query["roomId"], query["clientId"], self.greeting)
        self.rooms[sock.room_id].append(sock)
        return sock

    def forward(self, sender, frame):
        for peer in self.rooms[sender.room_id]:
            if peer is not sender and not peer.closed:
                peer.push(frame)

    def remove(self, sock):
        if sock in self.rooms[sock.room_id]:
            self.rooms[sock.room_id].remove(sock)

    def socket_for(self, connection):
        """The fake socket backing ``connection``."""
        for sock in self.rooms[connection.room_id]:
            if sock.client_id == connection.client_id:
                return sock
        raise LookupError(connection.client_id)


async def wait_until(predicate, timeout=2.0):
    """Poll ``predicate`` on the event loop until it holds."""
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


async def open_connection(relay, room_id="room-1", client_id=None):
    connection = RoomConnection(
        room_id, client_id=client_id, relay_url="ws://relay.test/ws",
        connector=relay.connect,
    )
    await connection.open()
    return connection


class EventRecorder:
    """Collects (event_type, data) pairs from on_event callbacks."""

    def __init__(self):
        self.events = []

    async def __call__(self, event_type, data):
        self.events.append((event_type, data))

    def of(self, event_type):
        return [data for kind, data in self.events if kind == event_type]


@pytest.fixture
def relay():
    return FakeRelay()


@pytest.fixture
def recorder():
    return EventRecorder()
