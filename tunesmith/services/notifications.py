"""
Tunesmith Notification Hub
Per-user generation notifications over WebSocket with a short history
"""

import asyncio
import json
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Deque, Dict, List, Optional, Set

from fastapi import WebSocket, WebSocketDisconnect

from ..core.logging import websocket_logger
from ..core.timeutils import utcnow

# Notification kinds
DISPATCH_SUCCEEDED = "dispatch_succeeded"
DISPATCH_FAILED = "dispatch_failed"
RATE_LIMITED = "rate_limited"
PROGRESS = "progress"
GENERATION_COMPLETED = "generation_completed"
GENERATION_FAILED = "generation_failed"
GENERATION_TIMEOUT = "generation_timeout"


@dataclass
class Notification:
    """One user-facing message"""
    user_id: str
    kind: str
    title: str
    message: str
    level: str = "info"
    task_id: Optional[uuid.UUID] = None
    data: Dict[str, Any] = field(default_factory=dict)
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    created_at: datetime = field(default_factory=utcnow)

    def to_message(self) -> dict:
        return {
            "type": "notification",
            "data": {
                "id": str(self.id),
                "kind": self.kind,
                "title": self.title,
                "message": self.message,
                "level": self.level,
                "task_id": str(self.task_id) if self.task_id else None,
                "data": self.data,
                "created_at": self.created_at.isoformat(),
            }
        }


class NotificationHub:
    """Fans notifications out to a user's open connections"""

    def __init__(self, history_size: int = 50):
        self.history_size = history_size
        self.active_connections: Dict[str, WebSocket] = {}
        self.user_connections: Dict[str, Set[str]] = {}
        self._history: Dict[str, Deque[Notification]] = {}
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket, connection_id: str, user_id: str) -> None:
        """Accept new WebSocket connection"""
        await websocket.accept()

        async with self._lock:
            self.active_connections[connection_id] = websocket
            self.user_connections.setdefault(user_id, set()).add(connection_id)

        websocket_logger.log_connection(connection_id, user_id)

    async def disconnect(self, connection_id: str) -> None:
        async with self._lock:
            self.active_connections.pop(connection_id, None)
            for connections in self.user_connections.values():
                connections.discard(connection_id)

        websocket_logger.log_disconnection(connection_id)

    async def _send(self, connection_id: str, message: dict) -> bool:
        websocket = self.active_connections.get(connection_id)
        if websocket is None:
            return False

        try:
            await websocket.send_text(json.dumps(message))
            return True
        except (WebSocketDisconnect, RuntimeError):
            return False

    async def publish(
        self,
        user_id: Any,
        kind: str,
        title: str,
        message: str,
        level: str = "info",
        task_id: Optional[uuid.UUID] = None,
        data: Optional[Dict[str, Any]] = None
    ) -> Notification:
        """Record a notification and push it to the user's connections"""
        user_key = str(user_id)
        notification = Notification(
            user_id=user_key,
            kind=kind,
            title=title,
            message=message,
            level=level,
            task_id=task_id,
            data=data or {}
        )

        history = self._history.setdefault(user_key, deque(maxlen=self.history_size))
        history.append(notification)

        connections = list(self.user_connections.get(user_key, set()))
        failed = []
        for connection_id in connections:
            if not await self._send(connection_id, notification.to_message()):
                failed.append(connection_id)

        for connection_id in failed:
            await self.disconnect(connection_id)

        websocket_logger.log_notification(user_key, kind, len(connections) - len(failed))
        return notification

    def recent(self, user_id: Any, limit: int = 20) -> List[Notification]:
        """Most recent notifications for a user, newest first"""
        history = self._history.get(str(user_id))
        if not history:
            return []
        return list(reversed(history))[:limit]
