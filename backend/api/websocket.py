"""
Status stream for local UIs.

Every status-page client gets a snapshot on connect (room status and the
current transfer list) so a page opened mid-transfer starts in sync, then
receives the room session's events as they happen.
"""

import asyncio
import json
import logging

from fastapi import WebSocket, WebSocketDisconnect

from relay.session import RoomSession

logger = logging.getLogger(__name__)


class EventBroadcaster:
    """Fans RoomSession events out to status-page WebSocket clients."""

    def __init__(self, session: RoomSession) -> None:
        self._session = session
        self._clients: list[WebSocket] = []
        self._lock = asyncio.Lock()
        session.on_event(self.handle_event)

    @property
    def client_count(self) -> int:
        return len(self._clients)

    def snapshot(self) -> list[tuple[str, dict]]:
        """Events that bring a fresh client up to date."""
        manager = self._session.manager
        transfers = manager.get_transfers() if manager is not None else []
        return [
            ("connection_status", self._session.status().model_dump(mode="json")),
            ("transfers", {"transfers": [t.model_dump(mode="json") for t in transfers]}),
        ]

    async def serve(self, websocket: WebSocket) -> None:
        """Run one client until it goes away. Client messages are ignored."""
        await websocket.accept()
        async with self._lock:
            for event, data in self.snapshot():
                await websocket.send_text(_frame(event, data))
            self._clients.append(websocket)
        logger.info(f"Status client connected. Total: {self.client_count}")

        try:
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            pass
        finally:
            async with self._lock:
                if websocket in self._clients:
                    self._clients.remove(websocket)
            logger.info(f"Status client disconnected. Total: {self.client_count}")

    async def handle_event(self, event_type: str, data: dict) -> None:
        """Event handler compatible with RoomSession.on_event()."""
        message = _frame(event_type, data)
        async with self._lock:
            dead: list[WebSocket] = []
            for ws in self._clients:
                try:
                    await ws.send_text(message)
                except (RuntimeError, WebSocketDisconnect) as e:
                    logger.debug(f"Dropping status client: {e}")
                    dead.append(ws)
            for ws in dead:
                self._clients.remove(ws)


def _frame(event: str, data: dict) -> str:
    return json.dumps({"event": event, "data": data}, default=str)
