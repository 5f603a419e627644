from __future__ import annotations

import logging

from fastapi import APIRouter, Header, HTTPException

from quizroom.database_sessions import extract_bearer_token
from quizroom.runtime import runtime
from quizroom.schemas.rooms import MultiplayerStatsResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/multiplayer", tags=["multiplayer"])


@router.get("/room/{room_id}")
async def room_status(room_id: str) -> dict[str, object]:
    status = runtime.get_room_status(room_id)
    if status is None:
        raise HTTPException(status_code=404, detail="Room not found")
    return {"success": True, "room": status}


@router.get("/active-rooms")
async def active_rooms() -> dict[str, object]:
    rooms = runtime.list_waiting_rooms()
    return {"success": True, "rooms": rooms, "count": len(rooms)}


@router.get("/stats", response_model=MultiplayerStatsResponse)
async def multiplayer_stats(authorization: str | None = Header(default=None)) -> MultiplayerStatsResponse:
    token = extract_bearer_token(authorization)
    if not token:
        raise HTTPException(status_code=401, detail="Authorization required")

    try:
        identity = await runtime.identities.verify(token)
    except Exception:
        logger.exception("Identity verification failed")
        raise HTTPException(status_code=503, detail="Authentication service unavailable") from None
    if identity is None:
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    stats = await runtime.profiles.get_multiplayer_stats(str(identity["user_id"]))
    if stats is None:
        raise HTTPException(status_code=404, detail="User not found")
    return MultiplayerStatsResponse(**stats)
