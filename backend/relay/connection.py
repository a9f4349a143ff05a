"""
Room connection: the single websocket link between this client and the relay.

The connection is a small state machine, ``connecting -> connected -> closed``.
CLOSED is terminal; a new room session needs a new RoomConnection. Inbound
frames and status changes are published to registered async callbacks, and
``send`` fails fast with NotConnected unless the connection is open.
"""

import asyncio
import logging
import uuid
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from websockets.asyncio.client import connect
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidURI

from config import (
    CLOSED_FALLBACK_REASON,
    CONSTRUCTION_FAILED_REASON,
    MAX_FRAME_SIZE,
    OPEN_TIMEOUT,
    PING_INTERVAL,
    PING_TIMEOUT,
    RELAY_URL,
    TRANSPORT_ERROR_REASON,
)
from errors import ConstructionFailure, NotConnected, TransportClosed
from relay.models import ConnectionStatus

logger = logging.getLogger(__name__)

_TRANSITIONS = {
    ConnectionStatus.CONNECTING: {ConnectionStatus.CONNECTED, ConnectionStatus.CLOSED},
    ConnectionStatus.CONNECTED: {ConnectionStatus.CLOSED},
    ConnectionStatus.CLOSED: set(),
}


def build_relay_url(base_url: str, room_id: str, client_id: str) -> str:
    """Address the relay room: ``base_url?roomId=...&clientId=...``."""
    parts = urlsplit(base_url)
    if parts.scheme not in ("ws", "wss") or not parts.netloc:
        raise ConstructionFailure(CONSTRUCTION_FAILED_REASON)
    if not room_id or not client_id:
        raise ConstructionFailure("A room id and client id are required to join a room.")

    query = [
        (key, value)
        for key, value in parse_qsl(parts.query, keep_blank_values=True)
        if key not in ("roomId", "clientId")
    ]
    query += [("roomId", room_id), ("clientId", client_id)]
    return urlunsplit(parts._replace(query=urlencode(query)))


class RoomConnection:
    """Owns exactly one transport connection to one relay room."""

    def __init__(
        self,
        room_id: str,
        client_id: str | None = None,
        relay_url: str = RELAY_URL,
        connector=connect,
    ) -> None:
        self.room_id = room_id
        self.client_id = client_id or str(uuid.uuid4())
        self._relay_url = relay_url
        self._connector = connector  # async fn(url, **options) -> websocket
        self._ws = None
        self._status = ConnectionStatus.CONNECTING
        self._reason: str | None = None
        self._frame_callbacks: list = []  # async fn(frame: bytes | str)
        self._status_callbacks: list = []  # async fn(status, reason)

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    @property
    def reason(self) -> str | None:
        """Why the connection closed, in words fit for the user."""
        return self._reason

    @property
    def is_connected(self) -> bool:
        return self._status is ConnectionStatus.CONNECTED

    def on_frame(self, callback) -> None:
        """Register callback: async fn(frame) for every inbound frame."""
        self._frame_callbacks.append(callback)

    def on_status(self, callback) -> None:
        """Register callback: async fn(status, reason) on every transition."""
        self._status_callbacks.append(callback)

    async def open(self) -> None:
        """
        Perform the websocket handshake with the relay.

        Raises:
            ConstructionFailure: the relay URL or room id is unusable.
            TransportClosed: the relay refused or never answered.
        """
        if self._status is not ConnectionStatus.CONNECTING:
            raise TransportClosed(self._reason)

        try:
            url = build_relay_url(self._relay_url, self.room_id, self.client_id)
        except ConstructionFailure as e:
            logger.error(f"Cannot build relay URL from {self._relay_url!r}: {e}")
            await self._transition(ConnectionStatus.CLOSED, str(e))
            raise

        logger.info(f"Connecting to room {self.room_id} as {self.client_id}")
        try:
            ws = await self._connector(
                url,
                max_size=MAX_FRAME_SIZE,
                open_timeout=OPEN_TIMEOUT,
                ping_interval=PING_INTERVAL,
                ping_timeout=PING_TIMEOUT,
            )
        except InvalidURI as e:
            logger.error(f"Relay URL rejected: {e}")
            await self._transition(ConnectionStatus.CLOSED, CONSTRUCTION_FAILED_REASON)
            raise ConstructionFailure(CONSTRUCTION_FAILED_REASON) from e
        except (OSError, InvalidHandshake, asyncio.TimeoutError) as e:
            logger.error(f"Relay handshake failed: {e}")
            await self._transition(ConnectionStatus.CLOSED, CLOSED_FALLBACK_REASON)
            raise TransportClosed(CLOSED_FALLBACK_REASON) from e

        if self._status is ConnectionStatus.CLOSED:
            # close() was called while the handshake was in flight
            await ws.close()
            raise TransportClosed(self._reason)

        self._ws = ws
        await self._transition(ConnectionStatus.CONNECTED)

    async def run(self) -> None:
        """Deliver inbound frames until the connection closes."""
        if self._ws is None:
            return

        reason = None
        try:
            async for frame in self._ws:
                await self._dispatch_frame(frame)
            reason = self._ws.close_reason
        except ConnectionClosed as e:
            if e.rcvd is not None:
                reason = e.rcvd.reason
                logger.info(f"Relay closed room {self.room_id}: code={e.rcvd.code} reason={reason!r}")
        except OSError as e:
            logger.error(f"Relay connection error in room {self.room_id}: {e}")
            reason = TRANSPORT_ERROR_REASON

        await self._transition(ConnectionStatus.CLOSED, reason or CLOSED_FALLBACK_REASON)
        await self._ws.close()

    async def send(self, frame: bytes) -> None:
        """Send one frame. Raises NotConnected unless the room is open."""
        if not self.is_connected or self._ws is None:
            raise NotConnected()
        try:
            await self._ws.send(frame)
        except ConnectionClosed as e:
            reason = e.rcvd.reason if e.rcvd is not None else None
            await self._transition(ConnectionStatus.CLOSED, reason or CLOSED_FALLBACK_REASON)
            raise NotConnected() from e

    async def close(self, reason: str | None = None) -> None:
        """Close for good. Further sends raise NotConnected."""
        await self._transition(ConnectionStatus.CLOSED, reason or CLOSED_FALLBACK_REASON)
        if self._ws is not None:
            await self._ws.close()

    async def _transition(self, status: ConnectionStatus, reason: str | None = None) -> bool:
        if status not in _TRANSITIONS[self._status]:
            return False
        previous, self._status, self._reason = self._status, status, reason
        logger.info(
            f"Room {self.room_id}: {previous.value} -> {status.value}"
            + (f" ({reason})" if reason else "")
        )
        for cb in list(self._status_callbacks):
            try:
                await cb(status, reason)
            except Exception as e:
                logger.error(f"Status callback error: {e}", exc_info=True)
        return True

    async def _dispatch_frame(self, frame: bytes | str) -> None:
        for cb in list(self._frame_callbacks):
            try:
                await cb(frame)
            except Exception as e:
                logger.error(f"Frame handler error: {e}", exc_info=True)
