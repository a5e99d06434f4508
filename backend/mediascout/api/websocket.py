from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from typing import Set
import asyncio
import json
import logging

from .session import MediaSession, session
from ..scanner.models import DiscoveryEvent

logger = logging.getLogger(__name__)

router = APIRouter()


class ConnectionManager:
    """Manages WebSocket connections for real-time updates."""

    def __init__(self):
        self.active_connections: Set[WebSocket] = set()

    async def connect(self, websocket: WebSocket):
        """Accept and track a new WebSocket connection."""
        await websocket.accept()
        self.active_connections.add(websocket)

    def disconnect(self, websocket: WebSocket):
        """Remove a WebSocket connection."""
        self.active_connections.discard(websocket)

    async def broadcast(self, event_type: str, data: dict):
        """Broadcast a message to all connected clients."""
        message = json.dumps({
            "type": event_type,
            "data": data
        }, default=str)

        disconnected = set()
        for connection in self.active_connections:
            try:
                await connection.send_text(message)
            except Exception:
                disconnected.add(connection)

        # Clean up disconnected clients
        self.active_connections -= disconnected

    async def send_personal(self, websocket: WebSocket, event_type: str, data: dict):
        """Send a message to a specific client."""
        message = json.dumps({
            "type": event_type,
            "data": data
        }, default=str)
        await websocket.send_text(message)


# Global connection manager
manager = ConnectionManager()


async def relay_event(event: DiscoveryEvent, media_session: MediaSession = session):
    """Apply a discovery event to the session and broadcast it to clients."""
    media_session.apply(event)
    await manager.broadcast(event.type.value, event.payload())


async def event_pump(media_session: MediaSession = session):
    """Drain the session's discovery queue in order, forever."""
    while True:
        event = await media_session.events.get()
        try:
            await relay_event(event, media_session)
        except Exception:
            logger.exception(f"Failed to relay {event.type.value} event")
        finally:
            media_session.events.task_done()


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """WebSocket endpoint for real-time discovery events."""
    await manager.connect(websocket)

    try:
        # Send initial connection confirmation with what is already known
        await manager.send_personal(websocket, "connected", {
            "message": "Connected to MediaScout WebSocket",
            "discovering": session.discovering,
            "devices": [d.to_dict() for d in session.devices],
        })

        # Keep connection alive and handle incoming messages
        while True:
            try:
                data = await asyncio.wait_for(
                    websocket.receive_text(),
                    timeout=30.0
                )

                try:
                    message = json.loads(data)
                    if message.get("type") == "ping":
                        await manager.send_personal(websocket, "pong", {})
                except json.JSONDecodeError:
                    pass

            except asyncio.TimeoutError:
                # Send keepalive ping
                try:
                    await manager.send_personal(websocket, "ping", {})
                except Exception:
                    break

    except WebSocketDisconnect:
        pass
    finally:
        manager.disconnect(websocket)
