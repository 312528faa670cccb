import asyncio
import logging
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any

from fastapi import WebSocket

logger = logging.getLogger(__name__)

def user_room(user_id: int) -> str:
    return f"user:{user_id}"

def page_room(page_id: int | str) -> str:
    return f"page:{page_id}"

class ConnectionManager:
    """Manage WebSocket connections grouped into rooms."""

    def __init__(self):
        self.active_connections: list[WebSocket] = []
        self.rooms: dict[str, set[WebSocket]] = defaultdict(set)
        self.loop: asyncio.AbstractEventLoop | None = None

    async def connect(self, websocket: WebSocket):
        await websocket.accept()
        self.active_connections.append(websocket)
        self.loop = asyncio.get_running_loop()

    def disconnect(self, websocket: WebSocket):
        if websocket in self.active_connections:
            self.active_connections.remove(websocket)
        for room in list(self.rooms):
            self.rooms[room].discard(websocket)
            if not self.rooms[room]:
                del self.rooms[room]

    def join(self, websocket: WebSocket, room: str):
        self.rooms[room].add(websocket)

    def room_size(self, room: str) -> int:
        return len(self.rooms.get(room, ()))

    async def _send_many(self, connections, message: dict[str, Any]):
        disconnected = []
        for connection in list(connections):
            try:
                await connection.send_json(message)
            except Exception as exc:
                logger.warning("Failed to send websocket message: %s", exc)
                disconnected.append(connection)

        for conn in disconnected:
            self.disconnect(conn)

    async def send_to_room(self, room: str, message: dict[str, Any]):
        await self._send_many(self.rooms.get(room, ()), message)

    async def broadcast(self, message: dict[str, Any]):
        await self._send_many(self.active_connections, message)

    def publish(self, room: str | None, event: str, data: Any = None) -> bool:
        """
        Schedules delivery of an event from any thread. Returns False when no
        client could receive it.
        """
        if self.loop is None or self.loop.is_closed() or not self.active_connections:
            return False
        if room is not None and not self.room_size(room):
            return False

        message = {"type": event, "data": data, "timestamp": datetime.now(timezone.utc).isoformat()}
        coro = self.broadcast(message) if room is None else self.send_to_room(room, message)

        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is self.loop:
            self.loop.create_task(coro)
        else:
            asyncio.run_coroutine_threadsafe(coro, self.loop)
        return True

manager = ConnectionManager()

def send_alert(user_id: int, alert: dict[str, Any]) -> bool:
    return manager.publish(user_room(user_id), "alert", alert)

def send_metrics_update(user_id: int, metrics: dict[str, Any]) -> bool:
    return manager.publish(user_room(user_id), "metrics-update", metrics)

def send_restriction_alert(page_id: int | str, alert: dict[str, Any]) -> bool:
    return manager.publish(page_room(page_id), "restriction-alert", alert)

def send_ai_recommendation(user_id: int, recommendation: dict[str, Any]) -> bool:
    return manager.publish(user_room(user_id), "ai-recommendation", recommendation)
