"""FastAPI app: the room websocket plus a small read-only REST surface."""

from __future__ import annotations

import asyncio
import json
import uuid
from contextlib import asynccontextmanager, suppress
from typing import AsyncIterator, Dict, Iterable

import anyio
from fastapi import FastAPI, HTTPException, Query, WebSocket, WebSocketDisconnect

from . import config, errors
from .logging_config import get_logger
from .registry import RoomRegistry
from .session import Delivery, SessionHandler

logger = get_logger(__name__)

REGISTRY = RoomRegistry()
SESSIONS = SessionHandler(REGISTRY)
CONNECTIONS: Dict[str, WebSocket] = {}
# Serializes every room transition; nothing awaits while holding it
STATE_LOCK = asyncio.Lock()


async def _deliver(deliveries: Iterable[Delivery]) -> None:
    for delivery in deliveries:
        websocket = CONNECTIONS.get(delivery.connection_id)
        if websocket is None:
            continue
        try:
            await websocket.send_json(delivery.payload)
        except (RuntimeError, WebSocketDisconnect):
            # Socket already closing; its own handler runs the disconnect
            logger.debug("Could not deliver to %s", delivery.connection_id)


async def _sweep_idle_rooms() -> None:
    while True:
        await asyncio.sleep(config.SWEEP_INTERVAL_SECONDS)
        async with STATE_LOCK:
            deliveries = SESSIONS.sweep(config.ROOM_IDLE_SECONDS)
        await _deliver(deliveries)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    sweeper = asyncio.create_task(_sweep_idle_rooms())
    logger.info("OXRooms server started")
    try:
        yield
    finally:
        sweeper.cancel()
        with suppress(asyncio.CancelledError):
            await sweeper


app = FastAPI(
    title="OXRooms",
    description="Room server for tic-tac-toe and Othello matches",
    lifespan=lifespan,
)


@app.get("/health")
async def health() -> Dict[str, object]:
    return {"status": "ok", "rooms": len(REGISTRY), "connections": len(CONNECTIONS)}


@app.get("/api/rooms")
async def list_rooms(page: int = Query(default=1, ge=1)) -> Dict[str, object]:
    return REGISTRY.public_rooms(page)


@app.get("/api/rooms/{room_code}")
async def inspect_room(room_code: str) -> Dict[str, object]:
    try:
        room = REGISTRY.get(room_code)
    except errors.RoomNotFound as exc:
        raise HTTPException(status_code=404, detail="Room not found") from exc
    return room.summary()


@app.websocket("/ws")
async def room_socket(websocket: WebSocket) -> None:
    await websocket.accept()
    connection_id = uuid.uuid4().hex
    CONNECTIONS[connection_id] = websocket
    logger.debug("Connection %s opened", connection_id)

    try:
        while True:
            frame = await websocket.receive()
            if frame["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(frame.get("code", 1000))
            text = frame.get("text")
            if text is None:
                continue
            try:
                message = json.loads(text)
            except ValueError:
                logger.debug("Ignoring non-JSON frame from %s", connection_id)
                continue
            async with STATE_LOCK:
                deliveries = SESSIONS.handle(connection_id, message)
            await _deliver(deliveries)
    except WebSocketDisconnect:
        pass
    finally:
        CONNECTIONS.pop(connection_id, None)
        # The task may already be cancelled; the room must still be told
        with anyio.CancelScope(shield=True):
            async with STATE_LOCK:
                deliveries = SESSIONS.disconnect(connection_id)
            await _deliver(deliveries)
        logger.debug("Connection %s closed", connection_id)
