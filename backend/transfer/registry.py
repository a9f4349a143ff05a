"""
Transfer Registry: the single record of every transfer in a room session.

Both the outgoing and incoming pipelines mutate entries through the methods
here, so anything observing the registry always sees current progress.
All access happens on the event loop; there is no locking.
"""

import logging

from transfer.models import (
    FINISHED_STATES,
    TransferInfo,
    TransferState,
    compute_progress,
)

logger = logging.getLogger(__name__)


class TransferRegistry:
    """Transfers keyed by id, for the lifetime of one connection."""

    def __init__(self) -> None:
        self._transfers: dict[str, TransferInfo] = {}

    def __contains__(self, transfer_id: str) -> bool:
        return transfer_id in self._transfers

    def __len__(self) -> int:
        return len(self._transfers)

    def get(self, transfer_id: str) -> TransferInfo | None:
        return self._transfers.get(transfer_id)

    def upsert(self, info: TransferInfo) -> TransferInfo:
        self._transfers[info.transfer_id] = info
        return info

    def all(self) -> list[TransferInfo]:
        """All transfers ordered by file name, then id."""
        return sorted(
            self._transfers.values(),
            key=lambda t: (t.file_name, t.transfer_id),
        )

    def record_progress(
        self, transfer_id: str, byte_count: int, final: bool = False
    ) -> TransferInfo | None:
        """
        Count ``byte_count`` more bytes moved for a transfer.

        ``final`` moves the transfer to COMPLETE. Finished transfers are
        left untouched. Returns the updated record, or None if unknown.
        """
        info = self._transfers.get(transfer_id)
        if info is None:
            return None
        if info.state in FINISHED_STATES:
            return info

        info.transferred_bytes = min(
            info.file_size, info.transferred_bytes + max(0, byte_count)
        )
        info.state = TransferState.COMPLETE if final else TransferState.TRANSFERRING
        info.progress_percent = max(
            info.progress_percent,
            compute_progress(info.transferred_bytes, info.file_size, final),
        )
        return info

    def set_artifact_url(self, transfer_id: str, url: str) -> None:
        info = self._transfers.get(transfer_id)
        if info is not None:
            info.artifact_url = url

    def mark_abandoned(self, transfer_id: str) -> TransferInfo | None:
        info = self._transfers.get(transfer_id)
        if info is None or info.state in FINISHED_STATES:
            return None
        info.state = TransferState.ABANDONED
        logger.warning(
            f"Transfer {transfer_id} ({info.file_name}) abandoned at "
            f"{info.transferred_bytes}/{info.file_size} bytes"
        )
        return info

    def abandon_unfinished(self) -> list[TransferInfo]:
        """Abandon every transfer that has not completed. Returns them."""
        abandoned = []
        for transfer_id in list(self._transfers):
            info = self.mark_abandoned(transfer_id)
            if info is not None:
                abandoned.append(info)
        return abandoned
