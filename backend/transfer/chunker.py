"""
Chunker: the outgoing side of the transfer protocol.

A send announces the file with one ``file-meta`` frame, then streams
``file-chunk`` frames of at most ``CHUNK_SIZE`` bytes. Only one piece is
held in memory at a time, and the loop yields to the event loop between
pieces so inbound frames keep flowing during large sends.
"""

import asyncio
import logging
import mimetypes
import os
import uuid
from typing import Protocol

from config import CHUNK_SIZE, DEFAULT_MIME_TYPE, MAX_CHUNK_SIZE
from errors import NotConnected, TransportClosed
from relay.connection import RoomConnection
from transfer.codec import encode
from transfer.models import (
    FileChunk,
    FileMeta,
    TransferDirection,
    TransferInfo,
    TransferState,
    format_size,
)
from transfer.registry import TransferRegistry

logger = logging.getLogger(__name__)


class FileSource(Protocol):
    """Anything with a known size that can read a byte range."""

    @property
    def size(self) -> int: ...

    def read(self, offset: int, length: int) -> bytes: ...


class LocalFileSource:
    """A file on disk. Each read opens, seeks and reads one range."""

    def __init__(self, path: str) -> None:
        self.path = path
        self.name = os.path.basename(path)
        self._size = os.path.getsize(path)

    @property
    def size(self) -> int:
        return self._size

    def read(self, offset: int, length: int) -> bytes:
        with open(self.path, "rb") as f:
            f.seek(offset)
            return f.read(length)


class BytesSource:
    """An in-memory byte string."""

    def __init__(self, data: bytes) -> None:
        self._data = bytes(data)

    @property
    def size(self) -> int:
        return len(self._data)

    def read(self, offset: int, length: int) -> bytes:
        return self._data[offset:offset + length]


def guess_mime_type(name: str) -> str:
    mime_type, _ = mimetypes.guess_type(name)
    return mime_type or DEFAULT_MIME_TYPE


def piece_ranges(size: int, chunk_size: int = CHUNK_SIZE):
    """
    Yield ``(offset, length, is_final)`` for every piece of a file.

    A zero-byte file still yields one empty final piece.
    """
    if size == 0:
        yield 0, 0, True
        return
    offset = 0
    while offset < size:
        length = min(chunk_size, size - offset)
        yield offset, length, offset + length >= size
        offset += length


class Chunker:
    """Splits local files into pieces and sends them through the room."""

    def __init__(
        self,
        connection: RoomConnection,
        registry: TransferRegistry,
        chunk_size: int = CHUNK_SIZE,
        progress_callback=None,
        state_callback=None,
    ) -> None:
        if not 0 < chunk_size <= MAX_CHUNK_SIZE:
            raise ValueError(
                f"chunk_size must be between 1 and {MAX_CHUNK_SIZE}, got {chunk_size}"
            )
        self._connection = connection
        self._registry = registry
        self._chunk_size = chunk_size
        self._progress_callback = progress_callback  # async fn(TransferInfo)
        self._state_callback = state_callback  # async fn(TransferInfo)

    @property
    def chunk_size(self) -> int:
        return self._chunk_size

    async def send(
        self,
        source: FileSource,
        name: str,
        size: int | None = None,
        mime_type: str | None = None,
    ) -> str:
        """
        Send a whole file and return its transfer id.

        Raises:
            NotConnected: the room connection is not open; nothing is sent.
            TransportClosed: the connection closed before the last piece.
        """
        info = self.prepare(name, source.size if size is None else size, mime_type)
        await self.stream(info, source)
        return info.transfer_id

    def prepare(
        self, name: str, size: int, mime_type: str | None = None
    ) -> TransferInfo:
        """Register a new outgoing transfer without sending anything yet."""
        if not self._connection.is_connected:
            raise NotConnected()
        if size < 0:
            raise ValueError(f"File size cannot be negative: {size}")

        info = TransferInfo(
            transfer_id=str(uuid.uuid4()),
            file_name=name,
            file_size=size,
            mime_type=mime_type or guess_mime_type(name),
            direction=TransferDirection.OUTGOING,
            state=TransferState.ANNOUNCED,
        )
        return self._registry.upsert(info)

    async def stream(self, info: TransferInfo, source: FileSource) -> None:
        """Emit the meta frame, then every piece of ``source`` in order."""
        transfer_id = info.transfer_id
        await self._send_frame(info, encode(FileMeta(
            transfer_id=transfer_id,
            name=info.file_name,
            size=info.file_size,
            mime_type=info.mime_type,
        )))
        await self._notify(self._state_callback, info)
        logger.info(
            f"Sending '{info.file_name}' ({format_size(info.file_size)}) "
            f"as {transfer_id}"
        )

        for offset, length, is_final in piece_ranges(info.file_size, self._chunk_size):
            payload = b""
            if length:
                try:
                    payload = await asyncio.to_thread(source.read, offset, length)
                except OSError as e:
                    logger.error(f"Reading '{info.file_name}' failed at offset {offset}: {e}")
                    await self._abandon(info)
                    raise
            if len(payload) != length:
                await self._abandon(info)
                raise OSError(
                    f"Short read from '{info.file_name}' at offset {offset}: "
                    f"expected {length} bytes, got {len(payload)}"
                )

            await self._send_frame(info, encode(FileChunk(
                transfer_id=transfer_id,
                payload=payload,
                offset=offset,
                is_final=is_final,
            )))

            info = self._registry.record_progress(transfer_id, length, final=is_final) or info
            if info.state == TransferState.ABANDONED:
                # the room closed while this piece was in flight
                raise TransportClosed(self._connection.reason)
            if info.state == TransferState.COMPLETE:
                await self._notify(self._state_callback, info)
                logger.info(f"Sent '{info.file_name}' ({transfer_id})")
            else:
                await self._notify(self._progress_callback, info)
                await asyncio.sleep(0)

    async def _send_frame(self, info: TransferInfo, frame: bytes) -> None:
        """Send one frame; abandon the transfer if the room went away."""
        try:
            await self._connection.send(frame)
        except NotConnected as e:
            await self._abandon(info)
            raise TransportClosed(self._connection.reason) from e

    async def _abandon(self, info: TransferInfo) -> None:
        if self._registry.mark_abandoned(info.transfer_id) is not None:
            await self._notify(self._state_callback, info)

    @staticmethod
    async def _notify(callback, info: TransferInfo) -> None:
        if callback is not None:
            await callback(info)
