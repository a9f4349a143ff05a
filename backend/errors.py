"""Error types shared by the relay connection and the transfer pipeline."""

from config import CLOSED_FALLBACK_REASON, NOT_CONNECTED_REASON


class HoloError(Exception):
    """Base class for every error raised by the transfer core."""


class NotConnected(HoloError):
    """A send was attempted while the room connection is not open."""

    def __init__(self, message: str = NOT_CONNECTED_REASON) -> None:
        super().__init__(message)


class DecodeError(HoloError, ValueError):
    """An inbound frame could not be parsed into a protocol message."""


class TransportClosed(HoloError):
    """The room connection ended; carries the user-facing reason."""

    def __init__(self, reason: str | None = None) -> None:
        self.reason = reason or CLOSED_FALLBACK_REASON
        super().__init__(self.reason)


class ConstructionFailure(HoloError):
    """The transport could not be created at all (bad URL, bad room id)."""
