"""Pydantic models for the relay connection."""

from enum import Enum

from pydantic import BaseModel


class ConnectionStatus(str, Enum):
    """Lifecycle of a room connection. CLOSED is terminal."""
    CONNECTING = "connecting"
    CONNECTED = "connected"
    CLOSED = "closed"


class RoomStatus(BaseModel):
    """Snapshot of the current room session, exposed to the frontend."""
    room_id: str | None = None
    client_id: str | None = None
    status: ConnectionStatus = ConnectionStatus.CLOSED
    reason: str | None = None


class JoinRoomRequest(BaseModel):
    """API body for joining a room."""
    room_id: str
