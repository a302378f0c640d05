"""
Push channel for session notifications.

WebSocket subscribers join one room per client ID; every status transition
of that session is published to the room. Publishing never waits on
subscribers.
"""

import asyncio
from collections import defaultdict
from typing import Any

from starlette.websockets import WebSocket

from wagate.logger import get_logger
from wagate.models import NotificationMessage

logger = get_logger(__name__)


class NotificationHub:
    """Room-based fan-out of session events to WebSocket subscribers."""

    def __init__(self):
        self.rooms: dict[str, set[WebSocket]] = defaultdict(set)
        self._tasks: set[asyncio.Task] = set()

    def join(self, websocket: WebSocket, topic: str) -> None:
        self.rooms[topic].add(websocket)
        logger.debug(f"Subscriber joined room {topic} ({len(self.rooms[topic])} total)")

    def leave(self, websocket: WebSocket) -> None:
        """Remove a subscriber from every room."""
        for topic in list(self.rooms):
            members = self.rooms[topic]
            members.discard(websocket)
            if not members:
                del self.rooms[topic]

    def subscriber_count(self, topic: str) -> int:
        return len(self.rooms.get(topic, ()))

    def publish(self, topic: str, event: str, payload: dict[str, Any]) -> None:
        """Fire-and-forget delivery of one event to a room."""
        members = self.rooms.get(topic)
        if not members:
            return

        try:
            asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(f"Dropping {event} for {topic}: no running event loop")
            return

        message = NotificationMessage(event=event, data=payload).model_dump()
        for websocket in list(members):
            task = asyncio.create_task(self._deliver(websocket, topic, message))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def send(self, websocket: WebSocket, event: str, payload: dict[str, Any]) -> None:
        """Send one event directly to a single subscriber."""
        message = NotificationMessage(event=event, data=payload).model_dump()
        await websocket.send_json(message)

    async def close(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()
        self.rooms.clear()

    async def _deliver(self, websocket: WebSocket, topic: str, message: dict) -> None:
        try:
            await websocket.send_json(message)
        except Exception as e:
            logger.debug(f"Dropping subscriber of {topic}: {e}")
            self.leave(websocket)
