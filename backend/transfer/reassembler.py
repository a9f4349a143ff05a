"""
Reassembler: accumulates incoming pieces per transfer and materializes
the finished file.

Pieces are appended in arrival order. The relay connection delivers frames
in order, so offsets are only checked for logging; a mismatch is reported
but the piece is still appended.
"""

import logging

from transfer.artifacts import Artifact, MemoryArtifactSink
from transfer.models import (
    FINISHED_STATES,
    FileChunk,
    FileMeta,
    TransferDirection,
    TransferInfo,
    TransferState,
    TransferUpdate,
    format_size,
)
from transfer.registry import TransferRegistry

logger = logging.getLogger(__name__)


class Reassembler:
    """Incoming side of the transfer protocol."""

    def __init__(
        self,
        registry: TransferRegistry,
        sink: MemoryArtifactSink | None = None,
    ) -> None:
        self._registry = registry
        self._sink = sink or MemoryArtifactSink()
        self._buffers: dict[str, list[bytes]] = {}

    @property
    def sink(self) -> MemoryArtifactSink:
        return self._sink

    def on_meta(self, meta: FileMeta) -> str | None:
        """
        Register a newly announced incoming transfer.

        Returns the transfer id, or None when the id is already known
        (a repeated announcement never creates a second entry).
        """
        if meta.transfer_id in self._registry:
            logger.debug(f"Ignoring repeated meta for {meta.transfer_id}")
            return None

        self._registry.upsert(TransferInfo(
            transfer_id=meta.transfer_id,
            file_name=meta.name,
            file_size=meta.size,
            mime_type=meta.mime_type,
            direction=TransferDirection.INCOMING,
            state=TransferState.ANNOUNCED,
        ))
        self._buffers[meta.transfer_id] = []
        logger.info(
            f"Incoming transfer {meta.transfer_id}: '{meta.name}' "
            f"({format_size(meta.size)}, {meta.mime_type})"
        )
        return meta.transfer_id

    def on_chunk(self, chunk: FileChunk) -> TransferUpdate | None:
        """
        Append one piece. Returns None when the chunk was dropped.

        Chunks for unknown, outgoing or finished transfers are dropped
        without touching the registry.
        """
        buffer = self._buffers.get(chunk.transfer_id)
        info = self._registry.get(chunk.transfer_id)
        if buffer is None or info is None or info.state in FINISHED_STATES:
            logger.debug(f"Dropping chunk for unknown transfer {chunk.transfer_id}")
            return None

        if chunk.offset != info.transferred_bytes:
            logger.warning(
                f"Transfer {chunk.transfer_id}: chunk offset {chunk.offset} "
                f"does not match {info.transferred_bytes} bytes received"
            )

        buffer.append(chunk.payload)
        info = self._registry.record_progress(
            chunk.transfer_id, len(chunk.payload), final=chunk.is_final
        )
        if not chunk.is_final:
            return TransferUpdate(transfer=info)

        self._materialize(info)
        return TransferUpdate(transfer=info, completed=True)

    def discard(self, transfer_id: str) -> None:
        """Release the buffer of a transfer that will never finish."""
        self._buffers.pop(transfer_id, None)

    def _materialize(self, info: TransferInfo) -> None:
        parts = self._buffers.pop(info.transfer_id)
        data = b"".join(parts)
        if len(data) != info.file_size:
            logger.warning(
                f"Transfer {info.transfer_id}: reassembled {len(data)} bytes, "
                f"announced {info.file_size}"
            )

        url = self._sink.store(Artifact(
            transfer_id=info.transfer_id,
            name=info.file_name,
            mime_type=info.mime_type,
            data=data,
        ))
        self._registry.set_artifact_url(info.transfer_id, url)
        logger.info(f"Transfer {info.transfer_id} complete: '{info.file_name}'")
