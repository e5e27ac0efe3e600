"""
In-process realtime bus over WebSocket connections.

Connections join three kinds of rooms:
- ``user:<id>`` for every authenticated connection
- ``patient:<id>`` for patient accounts
- ``role:<role>`` for role broadcasts (admins)
"""

from typing import Any

import structlog
from fastapi import WebSocket

logger = structlog.get_logger(__name__)


class ConnectionManager:
    """Tracks live WebSocket connections and routes events to rooms."""

    def __init__(self):
        # room -> set of WebSocket connections
        self.rooms: dict[str, set[WebSocket]] = {}
        # websocket -> rooms it joined
        self.memberships: dict[WebSocket, set[str]] = {}

    async def connect(
        self,
        websocket: WebSocket,
        user_id: str,
        role: str,
        patient_id: str | None = None,
    ) -> None:
        """
        Accept a connection and register it in its rooms.

        Args:
            websocket: WebSocket connection
            user_id: Authenticated user ID
            role: User role
            patient_id: Patient record ID for patient accounts
        """
        await websocket.accept()

        rooms = {f"user:{user_id}", f"role:{role}"}
        if patient_id:
            rooms.add(f"patient:{patient_id}")

        for room in rooms:
            self.rooms.setdefault(room, set()).add(websocket)
        self.memberships[websocket] = rooms

        logger.info("websocket_connected", user_id=user_id, role=role, rooms=len(rooms))

    def disconnect(self, websocket: WebSocket) -> None:
        """Remove a connection from every room it joined."""
        rooms = self.memberships.pop(websocket, set())
        for room in rooms:
            members = self.rooms.get(room)
            if members is None:
                continue
            members.discard(websocket)
            if not members:
                del self.rooms[room]

        logger.info("websocket_disconnected", rooms=len(rooms))

    async def send_to_user(self, user_id: str, event: str, payload: dict[str, Any]) -> bool:
        """Send an event to every connection of a user."""
        return await self._send_to_room(f"user:{user_id}", event, payload)

    async def send_to_patient(self, patient_id: str, event: str, payload: dict[str, Any]) -> bool:
        """Send an event to the connections of a patient record."""
        return await self._send_to_room(f"patient:{patient_id}", event, payload)

    async def send_to_role(self, role: str, event: str, payload: dict[str, Any]) -> bool:
        """Broadcast an event to every connection with a role."""
        return await self._send_to_room(f"role:{role}", event, payload)

    async def _send_to_room(self, room: str, event: str, payload: dict[str, Any]) -> bool:
        """
        Deliver an event to a room.

        Returns:
            True if at least one connection received the event
        """
        members = list(self.rooms.get(room, ()))
        if not members:
            return False

        message = {"event": event, "data": payload}
        delivered = 0
        disconnected = []

        for websocket in members:
            try:
                await websocket.send_json(message)
                delivered += 1
            except Exception as e:
                logger.warning("websocket_send_failed", room=room, error=str(e))
                disconnected.append(websocket)

        for websocket in disconnected:
            self.disconnect(websocket)

        return delivered > 0


_connection_manager = ConnectionManager()


def get_connection_manager() -> ConnectionManager:
    """Get the process-wide connection manager."""
    return _connection_manager
