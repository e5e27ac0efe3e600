"""Realtime WebSocket endpoint."""

import structlog
from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect, status
from sqlalchemy import select

from clinic_api.core.realtime import get_connection_manager
from clinic_api.database import AsyncSessionLocal
from clinic_api.dependencies import resolve_caller, user_id_from_token
from clinic_api.models.users import users

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.websocket("/ws")
async def realtime_socket(websocket: WebSocket, token: str = Query(...)) -> None:
    """
    Receive appointment events as they happen.

    The connection is authenticated with the same bearer token as the REST
    API, passed as the ``token`` query parameter. Messages are
    ``{"event": <kind>, "data": {...}}``; client messages are ignored.
    """
    user_id = user_id_from_token(token)
    if user_id is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    async with AsyncSessionLocal() as db:
        result = await db.execute(select(users).where(users.c.id == user_id))
        user = result.fetchone()
        if not user or not user.is_active:
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            return
        caller = await resolve_caller(db, dict(user._mapping))

    manager = get_connection_manager()
    await manager.connect(
        websocket,
        user_id=str(caller.user_id),
        role=caller.role.value,
        patient_id=str(caller.patient_id) if caller.patient_id else None,
    )
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.debug("websocket_client_left", user_id=str(caller.user_id))
    finally:
        manager.disconnect(websocket)
