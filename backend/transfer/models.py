"""Pydantic models for file transfer."""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator

from config import DEFAULT_MIME_TYPE


class TransferState(str, Enum):
    """All possible states for a file transfer."""
    ANNOUNCED = "announced"
    TRANSFERRING = "transferring"
    COMPLETE = "complete"
    ABANDONED = "abandoned"


FINISHED_STATES = (TransferState.COMPLETE, TransferState.ABANDONED)


class TransferDirection(str, Enum):
    INCOMING = "incoming"
    OUTGOING = "outgoing"


class TransferInfo(BaseModel):
    """Full state of a single file transfer, exposed to the frontend."""
    transfer_id: str
    file_name: str
    file_size: int
    mime_type: str = DEFAULT_MIME_TYPE
    direction: TransferDirection
    state: TransferState = TransferState.ANNOUNCED
    transferred_bytes: int = 0
    progress_percent: int = 0
    artifact_url: str | None = None


class TransferUpdate(BaseModel):
    """Result of feeding one chunk to the reassembler."""
    transfer: TransferInfo
    completed: bool = False


class TransferRequest(BaseModel):
    """API body for sending local files into the room."""
    file_paths: list[str]


# --- Wire protocol message types ---

class MessageType:
    FILE_META = "file-meta"
    FILE_CHUNK = "file-chunk"


class FileMeta(BaseModel):
    """Announces a new transfer. Must precede every chunk for its id."""
    model_config = ConfigDict(populate_by_name=True)

    transfer_id: str = Field(alias="fileId", min_length=1)
    name: str
    size: int = Field(ge=0)
    mime_type: str = Field(default=DEFAULT_MIME_TYPE, alias="mime")

    @field_validator("mime_type", mode="before")
    @classmethod
    def _default_mime(cls, value):
        return value or DEFAULT_MIME_TYPE


class FileChunk(BaseModel):
    """One piece of a file. ``offset`` is the byte position of ``payload``."""
    model_config = ConfigDict(populate_by_name=True)

    transfer_id: str = Field(alias="fileId", min_length=1)
    payload: bytes = Field(alias="chunk")
    offset: int = Field(ge=0)
    is_final: bool = Field(alias="final")


Message = FileMeta | FileChunk


def compute_progress(done: int, size: int, complete: bool = False) -> int:
    """Whole-number percentage; only a complete transfer reports 100."""
    if complete:
        return 100
    if size <= 0:
        return 0
    percent = done * 100 // size
    return max(0, min(99, percent))


def format_size(size: int) -> str:
    """Human-readable byte count, e.g. ``136.7 KB``."""
    if not size:
        return "0 B"
    units = ["B", "KB", "MB", "GB"]
    idx = 0
    value = float(size)
    while value >= 1024 and idx < len(units) - 1:
        value /= 1024
        idx += 1
    if value >= 10 or idx == 0:
        return f"{value:.0f} {units[idx]}"
    return f"{value:.1f} {units[idx]}"
