"""
Holo Transfer — FastAPI application entry point.

Owns the room session, serves the local REST API and the status
WebSocket endpoint, and joins HOLO_ROOM_ID on startup when it is set.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, WebSocket
from fastapi.middleware.cors import CORSMiddleware

from api.routes import init_routes, router
from api.websocket import EventBroadcaster
from config import API_HOST, API_PORT, RELAY_URL, ROOM_ID
from errors import HoloError
from relay.session import RoomSession

# --- Logging ---
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# --- Service singletons ---
room_session = RoomSession()
ws_manager = EventBroadcaster(room_session)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Join the configured room on startup, leave it on shutdown."""
    logger.info(f"Starting Holo Transfer (relay: {RELAY_URL})")

    try:
        if ROOM_ID:
            try:
                await room_session.join(ROOM_ID)
            except HoloError as e:
                logger.error(f"Could not join room {ROOM_ID}: {e}")

        logger.info(f"Holo Transfer ready — API: {API_HOST}:{API_PORT}")
        yield
    finally:
        logger.info("Shutting down Holo Transfer...")
        await room_session.leave()


# --- FastAPI app ---
app = FastAPI(
    title="Holo Transfer",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000", "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Inject services into routes
init_routes(room_session)
app.include_router(router)


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    await ws_manager.serve(websocket)


def run() -> None:
    import uvicorn

    uvicorn.run(
        app,
        host=API_HOST,
        port=API_PORT,
        log_level="info",
    )


if __name__ == "__main__":
    run()
