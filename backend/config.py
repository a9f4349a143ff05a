"""Application-wide configuration constants."""

import os

# --- Relay ---
RELAY_URL = os.getenv("HOLO_WS_URL", "ws://localhost:8080/ws")
ROOM_ID = os.getenv("HOLO_ROOM_ID", "")  # auto-join on startup when set
OPEN_TIMEOUT = 10  # seconds
PING_INTERVAL = 20  # seconds
PING_TIMEOUT = 20  # seconds
MAX_FRAME_SIZE = 2 * 1024 * 1024  # relay drops any single frame above 2 MiB

# --- Local API ---
API_HOST = os.getenv("HOLO_API_HOST", "127.0.0.1")
API_PORT = int(os.getenv("HOLO_API_PORT", "8765"))

# --- Transfer ---
CHUNK_SIZE = int(os.getenv("HOLO_CHUNK_SIZE", str(64 * 1024)))  # 64 KiB
# base64 inflates by 4/3 and the JSON envelope adds a little on top
MAX_CHUNK_SIZE = MAX_FRAME_SIZE // 4 * 3 - 4096
DEFAULT_MIME_TYPE = "application/octet-stream"

# --- User-facing messages ---
CLOSED_FALLBACK_REASON = (
    "Connection closed. The relay may be offline, unreachable, "
    "or refused the handshake."
)
TRANSPORT_ERROR_REASON = (
    "A connection error occurred. Check that the relay is reachable."
)
CONSTRUCTION_FAILED_REASON = (
    "Could not open a connection to the relay. "
    "Check that the relay is running and HOLO_WS_URL is correct."
)
NOT_CONNECTED_REASON = (
    "Unable to send data because the room connection is not open."
)
LEFT_ROOM_REASON = "You left the room."
