"""WebSocket manager for real-time range updates."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable
from typing import Any

from fastapi import WebSocket, WebSocketDisconnect

logger = logging.getLogger(__name__)


class ConnectionManager:
    """
    Manages WebSocket connections, broadcasts, and per-range subscriptions.

    When the last subscriber of a range goes away, on_orphaned(owner_id)
    is called so whoever tracks that range can stop.
    """

    def __init__(self):
        self.active_connections: list[WebSocket] = []
        self.subscriptions: dict[str, set[WebSocket]] = {}
        self.on_orphaned: Callable[[str], Any] | None = None
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket) -> None:
        """Accept a new WebSocket connection."""
        await websocket.accept()
        async with self._lock:
            self.active_connections.append(websocket)

    async def disconnect(self, websocket: WebSocket) -> None:
        """Remove a WebSocket connection and its subscriptions."""
        async with self._lock:
            if websocket in self.active_connections:
                self.active_connections.remove(websocket)
            orphaned = [
                owner_id
                for owner_id in list(self.subscriptions)
                if self._discard(owner_id, websocket)
            ]
        self._notify_orphaned(orphaned)

    async def subscribe(self, owner_id: str, websocket: WebSocket) -> None:
        """Send owner_id's operation updates to this client."""
        async with self._lock:
            self.subscriptions.setdefault(owner_id, set()).add(websocket)

    async def unsubscribe(self, owner_id: str, websocket: WebSocket) -> None:
        """Stop sending owner_id's operation updates to this client."""
        async with self._lock:
            orphaned = [owner_id] if self._discard(owner_id, websocket) else []
        self._notify_orphaned(orphaned)

    def _discard(self, owner_id: str, websocket: WebSocket) -> bool:
        """Remove one subscriber. True if that emptied the subscription."""
        subscribers = self.subscriptions.get(owner_id)
        if subscribers is None or websocket not in subscribers:
            return False
        subscribers.discard(websocket)
        if subscribers:
            return False
        del self.subscriptions[owner_id]
        return True

    def _notify_orphaned(self, owner_ids: list[str]) -> None:
        for owner_id in owner_ids:
            logger.debug("Last observer of %s left", owner_id)
            if self.on_orphaned:
                self.on_orphaned(owner_id)

    async def send_personal(self, message: dict[str, Any], websocket: WebSocket) -> None:
        """Send a message to a specific client."""
        try:
            await websocket.send_json(message)
        except Exception:
            await self.disconnect(websocket)

    async def broadcast(self, message: dict[str, Any], owner_id: str | None = None) -> None:
        """Broadcast to all clients, or only to subscribers of owner_id."""
        async with self._lock:
            if owner_id is None:
                targets = list(self.active_connections)
            else:
                targets = list(self.subscriptions.get(owner_id, ()))

        disconnected = []
        for connection in targets:
            try:
                await connection.send_json(message)
            except Exception:
                disconnected.append(connection)

        # Clean up disconnected clients
        for conn in disconnected:
            await self.disconnect(conn)

    @property
    def connection_count(self) -> int:
        """Return the number of active connections."""
        return len(self.active_connections)


# Singleton instance
ws_manager = ConnectionManager()


async def websocket_endpoint(websocket: WebSocket) -> None:
    """
    WebSocket endpoint handler.

    Client messages:
        {"type": "ping"}
        {"type": "subscribe", "owner_id": "JD"}    observe a range operation
        {"type": "unsubscribe", "owner_id": "JD"}  stop observing it
    """
    from rangewatch.polling.operations import operations

    await ws_manager.connect(websocket)
    await ws_manager.send_personal(
        {"type": "connected", "message": "Connected to Rangewatch"},
        websocket,
    )

    try:
        while True:
            data = await websocket.receive_text()
            try:
                message = json.loads(data)
            except json.JSONDecodeError:
                continue
            if not isinstance(message, dict):
                continue

            msg_type = message.get("type")
            owner_id = message.get("owner_id")

            if msg_type == "ping":
                await ws_manager.send_personal({"type": "pong"}, websocket)
            elif msg_type == "subscribe" and owner_id:
                await ws_manager.subscribe(owner_id, websocket)
                tracker = operations.track(owner_id)
                tracker.set_visible(True)
                await ws_manager.send_personal({
                    "type": "operation_snapshot",
                    "owner_id": owner_id,
                    "snapshot": tracker.snapshot().model_dump(mode="json"),
                }, websocket)
            elif msg_type == "unsubscribe" and owner_id:
                await ws_manager.unsubscribe(owner_id, websocket)
    except WebSocketDisconnect:
        await ws_manager.disconnect(websocket)
