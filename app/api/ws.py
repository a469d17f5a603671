"""
WebSocket rooms pushing live reservation and check-in updates to organizer consoles
"""

import json
import logging
from typing import Dict, List
from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from app.core.db import get_db
from app.services.repositories import EventRepo
from app.utils.security import get_websocket_identity

logger = logging.getLogger(__name__)

class WebSocketManager:
    """Tracks one room of console connections per event"""

    def __init__(self):
        # event_id -> connected consoles
        self.rooms: Dict[str, List[WebSocket]] = {}

    async def connect(self, websocket: WebSocket, event_id: str):
        await websocket.accept()
        self.rooms.setdefault(event_id, []).append(websocket)
        logger.info(f"Console joined event {event_id} ({len(self.rooms[event_id])} connected)")

    def disconnect(self, websocket: WebSocket, event_id: str):
        room = self.rooms.get(event_id)
        if not room or websocket not in room:
            return
        room.remove(websocket)
        logger.info(f"Console left event {event_id} ({len(room)} connected)")
        if not room:
            del self.rooms[event_id]

    async def send_personal_message(self, message: dict, websocket: WebSocket):
        try:
            await websocket.send_text(json.dumps(message))
        except Exception as e:
            logger.error(f"Error sending message to console: {e}")

    async def broadcast_to_event(self, event_id: str, message: dict):
        """Send a message to every console watching the event; drop dead sockets"""
        room = self.rooms.get(event_id)
        if not room:
            logger.debug(f"No consoles connected for event {event_id}")
            return

        stale = []
        for websocket in list(room):
            try:
                await websocket.send_text(json.dumps(message))
            except Exception as e:
                logger.error(f"Error broadcasting to console: {e}")
                stale.append(websocket)

        for websocket in stale:
            self.disconnect(websocket, event_id)

    def get_connection_count(self, event_id: str) -> int:
        return len(self.rooms.get(event_id, []))

    def get_all_connection_counts(self) -> Dict[str, int]:
        return {event_id: len(room) for event_id, room in self.rooms.items()}

# Global WebSocket manager instance
websocket_manager = WebSocketManager()

router = APIRouter()

@router.websocket("/events/{event_id}")
async def event_updates(
    websocket: WebSocket,
    event_id: str,
    db: Session = Depends(get_db),
):
    """Live check-in and reservation updates for one event, for its organizer only"""
    try:
        identity = await run_in_threadpool(get_websocket_identity, websocket)
    except HTTPException:
        await websocket.close(code=4401, reason="Not authenticated")
        return

    event = EventRepo.get_policy(event_id, db)
    if not event:
        await websocket.close(code=4004, reason="Event not found")
        return
    if event.organizer_id != identity.user_id:
        logger.warning(f"User {identity.user_id} refused live updates for event {event_id}")
        await websocket.close(code=4403, reason="Not the event organizer")
        return

    await websocket_manager.connect(websocket, event_id)
    try:
        await websocket_manager.send_personal_message({
            "type": "connection",
            "message": f"Connected to event: {event.title or event_id}",
            "event_id": event_id,
            "connection_count": websocket_manager.get_connection_count(event_id),
        }, websocket)

        while True:
            data = await websocket.receive_text()
            try:
                client_message = json.loads(data)
            except json.JSONDecodeError:
                logger.warning(f"Invalid JSON received from console: {data[:200]}")
                continue

            # heartbeat
            if isinstance(client_message, dict) and client_message.get("type") == "ping":
                await websocket_manager.send_personal_message({
                    "type": "pong",
                    "timestamp": client_message.get("timestamp"),
                }, websocket)

    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.error(f"WebSocket error: {e}")
    finally:
        websocket_manager.disconnect(websocket, event_id)

@router.get("/stats")
async def websocket_stats():
    """Connection counts per event (for debugging)"""
    counts = websocket_manager.get_all_connection_counts()
    return {
        "total_events_with_connections": len(counts),
        "connection_counts": counts,
        "total_connections": sum(counts.values()),
    }
