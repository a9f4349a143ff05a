"""
Transfer Manager — routes relay frames and orchestrates sends for one room.

Decodes inbound frames and hands them to the Reassembler, runs outgoing
sends as background tasks through the Chunker, abandons unfinished
transfers when the connection closes, and reports everything through
the event callback system.
"""

import asyncio
import logging

from config import CHUNK_SIZE
from errors import DecodeError, TransportClosed
from relay.connection import RoomConnection
from relay.models import ConnectionStatus
from transfer.artifacts import Artifact, MemoryArtifactSink
from transfer.chunker import Chunker, FileSource, LocalFileSource
from transfer.codec import decode
from transfer.models import (
    FileMeta,
    TransferDirection,
    TransferInfo,
    TransferState,
)
from transfer.reassembler import Reassembler
from transfer.registry import TransferRegistry

logger = logging.getLogger(__name__)


class TransferManager:
    """Manages all incoming and outgoing transfers of one room connection."""

    def __init__(
        self,
        connection: RoomConnection,
        chunk_size: int = CHUNK_SIZE,
        sink: MemoryArtifactSink | None = None,
    ) -> None:
        self._connection = connection
        self._registry = TransferRegistry()
        self._reassembler = Reassembler(self._registry, sink)
        self._chunker = Chunker(
            connection,
            self._registry,
            chunk_size=chunk_size,
            progress_callback=self._on_progress,
            state_callback=self._on_state_change,
        )
        self._tasks: dict[str, asyncio.Task] = {}
        self._event_callbacks: list = []  # async fn(event_type, data)
        self._started = False

    def on_event(self, callback) -> None:
        """Register callback: async fn(event_type: str, data: dict)."""
        self._event_callbacks.append(callback)

    async def _emit(self, event_type: str, data: dict) -> None:
        """Emit an event to all registered callbacks."""
        for cb in self._event_callbacks:
            try:
                await cb(event_type, data)
            except Exception as e:
                logger.error(f"Event callback error: {e}")

    def start(self) -> None:
        """Subscribe to the connection's frames and status changes."""
        if self._started:
            return
        self._connection.on_frame(self.handle_frame)
        self._connection.on_status(self._on_connection_status)
        self._started = True

    async def stop(self) -> None:
        """Cancel outgoing sends still in flight."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        logger.info("Transfer manager stopped")

    def get_transfers(self) -> list[TransferInfo]:
        """Return all transfers in presentation order."""
        return self._registry.all()

    def get_transfer(self, transfer_id: str) -> TransferInfo | None:
        return self._registry.get(transfer_id)

    def get_artifact(self, transfer_id: str) -> Artifact | None:
        return self._reassembler.sink.get(transfer_id)

    async def send_file(
        self,
        source: FileSource,
        name: str,
        size: int | None = None,
        mime_type: str | None = None,
    ) -> str:
        """Send one file to the room and wait until the last piece is out."""
        return await self._chunker.send(source, name, size, mime_type)

    async def queue_send(self, file_paths: list[str]) -> list[TransferInfo]:
        """
        Queue local files to send to the room, one background task each.

        Raises NotConnected before anything is queued if the room is not open.
        """
        sources = [LocalFileSource(path) for path in file_paths]
        infos = [self._chunker.prepare(s.name, s.size) for s in sources]

        for source, info in zip(sources, infos):
            task = asyncio.create_task(self._send_file_task(source, info))
            self._tasks[info.transfer_id] = task

        return infos

    async def _send_file_task(self, source: FileSource, info: TransferInfo) -> None:
        """Task wrapper for sending a single file."""
        try:
            await self._chunker.stream(info, source)
        except TransportClosed as e:
            logger.warning(f"Send of '{info.file_name}' stopped: {e.reason}")
        except OSError as e:
            logger.error(f"Send error for {info.file_name}: {e}")
        finally:
            self._tasks.pop(info.transfer_id, None)

    async def handle_frame(self, frame: bytes | str) -> None:
        """Route one inbound frame. Malformed frames are dropped."""
        try:
            message = decode(frame)
        except DecodeError as e:
            logger.debug(f"Ignoring malformed frame: {e}")
            return

        if isinstance(message, FileMeta):
            if self._reassembler.on_meta(message) is not None:
                await self._on_state_change(self._registry.get(message.transfer_id))
            return

        update = self._reassembler.on_chunk(message)
        if update is None:
            return
        if update.completed:
            await self._on_state_change(update.transfer)
        else:
            await self._on_progress(update.transfer)

    async def _on_connection_status(self, status: ConnectionStatus, reason: str | None) -> None:
        if status is not ConnectionStatus.CLOSED:
            return
        for info in self._registry.abandon_unfinished():
            self._reassembler.discard(info.transfer_id)
            await self._on_state_change(info, reason)

    async def _on_progress(self, info: TransferInfo) -> None:
        """Called by the pipelines on progress updates."""
        await self._emit("transfer_progress", info.model_dump())

    async def _on_state_change(self, info: TransferInfo, reason: str | None = None) -> None:
        """Called by the pipelines on state changes."""
        await self._emit("transfer_state", info.model_dump())

        # Generate user-facing notifications
        notification = None
        if info.state == TransferState.COMPLETE:
            direction = "sent" if info.direction == TransferDirection.OUTGOING else "received"
            notification = {
                "type": "success",
                "message": f"'{info.file_name}' {direction} successfully!",
            }
        elif info.state == TransferState.ABANDONED:
            message = f"Transfer of '{info.file_name}' was interrupted."
            if reason:
                message = f"{message} {reason}"
            notification = {"type": "error", "message": message}

        if notification:
            await self._emit("notification", notification)
