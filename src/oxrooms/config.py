"""Runtime configuration read from ``OXROOMS_*`` environment variables."""

from __future__ import annotations

import os

HOST = os.environ.get("OXROOMS_HOST", "0.0.0.0")
PORT = int(os.environ.get("OXROOMS_PORT", "8000"))

LOG_LEVEL = os.environ.get("OXROOMS_LOG_LEVEL", "INFO")
LOG_FILE = os.environ.get("OXROOMS_LOG_FILE") or None

# Registry
MAX_ROOMS = int(os.environ.get("OXROOMS_MAX_ROOMS", "1000"))
ROOM_LIST_PAGE_SIZE = int(os.environ.get("OXROOMS_ROOM_LIST_PAGE_SIZE", "10"))

# Idle eviction
ROOM_IDLE_SECONDS = float(os.environ.get("OXROOMS_ROOM_IDLE_SECONDS", str(60 * 30)))
SWEEP_INTERVAL_SECONDS = float(os.environ.get("OXROOMS_SWEEP_INTERVAL_SECONDS", "60"))

# Liveness probing is done by uvicorn's websocket ping frames
WS_PING_INTERVAL = float(os.environ.get("OXROOMS_WS_PING_INTERVAL", "20"))
WS_PING_TIMEOUT = float(os.environ.get("OXROOMS_WS_PING_TIMEOUT", "20"))
