"""REST API routes for the room session."""

import logging
import os
from urllib.parse import quote

from fastapi import APIRouter, HTTPException, Response

from errors import ConstructionFailure, NotConnected, TransportClosed
from relay.models import JoinRoomRequest
from transfer.models import TransferRequest, format_size

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")

# Injected by main.py at startup
_session = None


def init_routes(session) -> None:
    """Inject the room session into the routes module."""
    global _session
    _session = session


# --- Room ---

@router.get("/room")
async def get_room():
    """Return the current room connection status."""
    return _session.status().model_dump()


@router.put("/room")
async def join_room(body: JoinRoomRequest):
    """Leave the current room and join ``room_id``."""
    try:
        status = await _session.join(body.room_id.strip())
    except ConstructionFailure as e:
        raise HTTPException(status_code=400, detail=str(e))
    except TransportClosed as e:
        raise HTTPException(status_code=502, detail=e.reason)
    return status.model_dump()


@router.delete("/room")
async def leave_room():
    await _session.leave()
    return _session.status().model_dump()


# --- Transfers ---

@router.get("/transfers")
async def list_transfers():
    """Return all transfers of the current session, ordered by name."""
    manager = _session.manager
    transfers = manager.get_transfers() if manager else []
    return {"transfers": [t.model_dump() for t in transfers]}


@router.post("/transfers")
async def create_transfer(body: TransferRequest):
    """Send local files into the room, read straight from disk."""
    manager = _session.manager
    if manager is None:
        raise HTTPException(status_code=409, detail=str(NotConnected()))

    valid_paths = []
    for path in body.file_paths:
        if os.path.isfile(path):
            valid_paths.append(path)
        else:
            logger.warning(f"Skipping invalid file path: {path}")

    if not valid_paths:
        raise HTTPException(status_code=400, detail="No valid files selected")

    try:
        infos = await manager.queue_send(valid_paths)
    except NotConnected as e:
        raise HTTPException(status_code=409, detail=str(e))

    total = sum(i.file_size for i in infos)
    return {
        "transfers": [i.model_dump() for i in infos],
        "message": f"Queued {len(infos)} file(s) for transfer ({format_size(total)})",
    }


@router.get("/transfers/{transfer_id}/artifact")
async def download_artifact(transfer_id: str):
    """Serve a fully received file back to the user."""
    manager = _session.manager
    artifact = manager.get_artifact(transfer_id) if manager else None
    if artifact is None:
        raise HTTPException(status_code=404, detail="No completed file with that id")

    return Response(
        content=artifact.data,
        media_type=artifact.mime_type,
        headers={"Content-Disposition": f"attachment; filename*=UTF-8''{quote(artifact.name)}"},
    )
