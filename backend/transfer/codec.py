"""
Wire codec for relay frames.

Each frame is one UTF-8 JSON envelope ``{"type": ..., "payload": {...}}``.
Chunk payloads are carried base64-encoded since the envelope is text.

    {"type": "file-meta",  "payload": {"fileId", "name", "size", "mime"}}
    {"type": "file-chunk", "payload": {"fileId", "chunk", "offset", "final"}}
"""

import base64
import binascii
import json

from pydantic import ValidationError

from errors import DecodeError
from transfer.models import FileChunk, FileMeta, Message, MessageType


def encode(message: Message) -> bytes:
    """Serialize a protocol message into a single frame."""
    if isinstance(message, FileMeta):
        envelope = {
            "type": MessageType.FILE_META,
            "payload": {
                "fileId": message.transfer_id,
                "name": message.name,
                "size": message.size,
                "mime": message.mime_type,
            },
        }
    elif isinstance(message, FileChunk):
        envelope = {
            "type": MessageType.FILE_CHUNK,
            "payload": {
                "fileId": message.transfer_id,
                "chunk": base64.b64encode(message.payload).decode("ascii"),
                "offset": message.offset,
                "final": message.is_final,
            },
        }
    else:
        raise TypeError(f"Cannot encode {type(message).__name__}")
    return json.dumps(envelope, separators=(",", ":")).encode("utf-8")


def decode(frame: bytes | str) -> Message:
    """
    Parse a frame into a typed message.

    Raises:
        DecodeError: the frame is not valid UTF-8 JSON, has an unknown
            type, or its payload fails validation.
    """
    try:
        text = frame.decode("utf-8") if isinstance(frame, (bytes, bytearray)) else frame
        envelope = json.loads(text)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise DecodeError(f"Frame is not JSON: {e}") from e

    if not isinstance(envelope, dict):
        raise DecodeError("Frame envelope must be an object")
    msg_type = envelope.get("type")
    payload = envelope.get("payload")
    if not isinstance(payload, dict):
        raise DecodeError(f"Frame {msg_type!r} has no payload object")

    try:
        if msg_type == MessageType.FILE_META:
            return FileMeta.model_validate(payload)
        if msg_type == MessageType.FILE_CHUNK:
            return FileChunk.model_validate(
                {**payload, "chunk": _b64decode(payload.get("chunk"))}
            )
    except ValidationError as e:
        raise DecodeError(
            f"Invalid {msg_type} payload: {e.error_count()} error(s)"
        ) from e

    raise DecodeError(f"Unknown message type: {msg_type!r}")


def _b64decode(value) -> bytes:
    if not isinstance(value, str):
        raise DecodeError("Chunk data must be a base64 string")
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as e:
        raise DecodeError(f"Chunk data is not valid base64: {e}") from e
