"""
Room session: one relay connection plus the transfers that live on it.

Joining a room always starts from scratch. The previous connection is
closed and a fresh connection and transfer manager take its place, so no
transfer state survives from one session to the next.
"""

import asyncio
import logging

from config import CHUNK_SIZE, LEFT_ROOM_REASON, RELAY_URL
from relay.connection import RoomConnection, connect
from relay.models import ConnectionStatus, RoomStatus
from transfer.manager import TransferManager

logger = logging.getLogger(__name__)


class RoomSession:
    """Holds the current room connection and its transfer manager."""

    def __init__(
        self,
        relay_url: str = RELAY_URL,
        connector=connect,
        chunk_size: int = CHUNK_SIZE,
    ) -> None:
        self._relay_url = relay_url
        self._connector = connector
        self._chunk_size = chunk_size
        self._connection: RoomConnection | None = None
        self._manager: TransferManager | None = None
        self._run_task: asyncio.Task | None = None
        self._event_callbacks: list = []  # async fn(event_type, data)

    @property
    def connection(self) -> RoomConnection | None:
        return self._connection

    @property
    def manager(self) -> TransferManager | None:
        return self._manager

    def on_event(self, callback) -> None:
        """Register callback: async fn(event_type: str, data: dict)."""
        self._event_callbacks.append(callback)

    async def _emit(self, event_type: str, data: dict) -> None:
        for cb in self._event_callbacks:
            try:
                await cb(event_type, data)
            except Exception as e:
                logger.error(f"Event callback error: {e}")

    def status(self) -> RoomStatus:
        if self._connection is None:
            return RoomStatus()
        return RoomStatus(
            room_id=self._connection.room_id,
            client_id=self._connection.client_id,
            status=self._connection.status,
            reason=self._connection.reason,
        )

    async def join(self, room_id: str, client_id: str | None = None) -> RoomStatus:
        """
        Leave the current room (if any) and connect to ``room_id``.

        Raises ConstructionFailure or TransportClosed when the room cannot
        be reached; the failed session stays visible through ``status()``.
        """
        await self.leave()

        connection = RoomConnection(
            room_id,
            client_id=client_id,
            relay_url=self._relay_url,
            connector=self._connector,
        )
        manager = TransferManager(connection, chunk_size=self._chunk_size)
        manager.on_event(self._emit)
        manager.start()
        connection.on_status(self._on_connection_status)
        self._connection, self._manager = connection, manager

        await connection.open()
        self._run_task = asyncio.create_task(connection.run())
        return self.status()

    async def leave(self) -> None:
        """Close the current room. Its transfers stay listed until the next join."""
        if self._connection is None:
            return
        await self._connection.close(LEFT_ROOM_REASON)
        if self._manager is not None:
            await self._manager.stop()
        if self._run_task is not None:
            try:
                await asyncio.wait_for(self._run_task, timeout=5)
            except asyncio.TimeoutError:
                logger.warning(f"Receive loop for room {self._connection.room_id} did not stop")
            self._run_task = None

    async def _on_connection_status(self, status: ConnectionStatus, reason: str | None) -> None:
        await self._emit("connection_status", self.status().model_dump())
