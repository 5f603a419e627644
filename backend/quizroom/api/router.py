from __future__ import annotations

from fastapi import APIRouter

from quizroom.api.rooms import router as rooms_router
from quizroom.api.system import router as system_router
from quizroom.api.ws import router as ws_router

api_router = APIRouter()
api_router.include_router(system_router)
api_router.include_router(rooms_router)
api_router.include_router(ws_router)
