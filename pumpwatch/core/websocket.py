"""
WebSocket endpoint + Redis PubSub bridge for incident transitions.

WS /ws/incidents     - open-incident snapshot on connect, then live transitions
incidents_to_ws_bridge - background task: Redis PubSub → ConnectionManager.broadcast
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from redis.asyncio import Redis

from pumpwatch.services.incident_publisher import incident_to_dict
from pumpwatch.services.incident_store import IncidentStore

logger = logging.getLogger("pumpwatch.websocket")

router = APIRouter()


# ---------------------------------------------------------------------------
# Connection Manager
# ---------------------------------------------------------------------------

class ConnectionManager:
    """Manages active WebSocket connections and broadcasts messages."""

    def __init__(self) -> None:
        self.connections: list[WebSocket] = []

    async def connect(self, ws: WebSocket) -> None:
        await ws.accept()
        self.connections.append(ws)
        logger.info("WS client connected (%d total)", len(self.connections))

    def disconnect(self, ws: WebSocket) -> None:
        if ws in self.connections:
            self.connections.remove(ws)
        logger.info("WS client disconnected (%d remaining)", len(self.connections))

    async def broadcast(self, message: str) -> None:
        dead: list[WebSocket] = []
        for ws in self.connections:
            try:
                await ws.send_text(message)
            except Exception:
                dead.append(ws)
        for ws in dead:
            if ws in self.connections:
                self.connections.remove(ws)
        if dead:
            logger.debug("Removed %d dead WS connections", len(dead))


manager = ConnectionManager()


async def open_incidents_snapshot(store: IncidentStore) -> list[dict]:
    async with store.transaction() as tx:
        incidents = await tx.list_open_incidents()
    return [incident_to_dict(i) for i in incidents]


# ---------------------------------------------------------------------------
# WebSocket Endpoint
# ---------------------------------------------------------------------------

@router.websocket("/ws/incidents")
async def ws_incidents(websocket: WebSocket) -> None:
    await manager.connect(websocket)
    try:
        snapshot = await open_incidents_snapshot(websocket.app.state.store)
        await websocket.send_json({"type": "snapshot", "data": snapshot})

        while True:
            data = await websocket.receive_text()
            if data == "ping":
                await websocket.send_text("pong")
    except WebSocketDisconnect:
        manager.disconnect(websocket)
    except Exception as exc:
        logger.debug("WS error: %s", exc)
        manager.disconnect(websocket)


# ---------------------------------------------------------------------------
# Redis → WebSocket Bridge (background task)
# ---------------------------------------------------------------------------

async def incidents_to_ws_bridge(redis: Redis, channel: str) -> None:
    """Subscribe to the incidents channel and broadcast to all WS clients."""
    logger.info("Redis→WS bridge started, subscribing to %s", channel)
    pubsub = redis.pubsub()
    await pubsub.subscribe(channel)

    try:
        async for message in pubsub.listen():
            if message["type"] == "message":
                payload = message["data"]
                if isinstance(payload, bytes):
                    payload = payload.decode("utf-8")
                await manager.broadcast(payload)
    except Exception as exc:
        logger.error("Redis→WS bridge error: %s", exc)
    finally:
        await pubsub.unsubscribe(channel)
        await pubsub.close()
