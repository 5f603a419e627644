from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable

from .config import settings
from .room_machine import build_room, room_summary
from .room_types import Quiz, Room, RoomSettings, UserProfile
from .room_utils import random_room_code, sanitize_room_id

logger = logging.getLogger(__name__)


class RoomRegistry:
    """Live rooms of one runtime, keyed by room code.

    Also tracks which room each user currently belongs to, so a socket can be
    resolved to its room and a user sits in at most one room at a time.
    """

    def __init__(
        self,
        code_length: int | None = None,
        code_factory: Callable[[int], str] = random_room_code,
    ) -> None:
        self.rooms: dict[str, Room] = {}
        self.members: dict[str, str] = {}
        self.lock = asyncio.Lock()
        self._code_length = code_length or settings.room_code_length
        self._code_factory = code_factory

    def __len__(self) -> int:
        return len(self.rooms)

    async def create_room(
        self,
        host: UserProfile,
        quiz: Quiz,
        room_settings: RoomSettings,
        now: int,
    ) -> Room:
        async with self.lock:
            for _ in range(24):
                code = self._code_factory(self._code_length)
                if code in self.rooms:
                    continue
                room = build_room(code, host, quiz, room_settings, now)
                self.rooms[code] = room
                self.members[host.id] = code
                logger.info("Room %s created for quiz %s", code, quiz.id)
                return room
        raise RuntimeError("Failed to allocate room code")

    def get_room(self, code: Any) -> Room | None:
        room_id = sanitize_room_id(code)
        if not room_id:
            return None
        return self.rooms.get(room_id)

    async def remove_room(self, code: Any) -> Room | None:
        room_id = sanitize_room_id(code)
        async with self.lock:
            room = self.rooms.pop(room_id, None)
            if room is None:
                return None
            for user_id, member_code in list(self.members.items()):
                if member_code == room_id:
                    self.members.pop(user_id, None)
        logger.info("Room %s removed", room_id)
        return room

    def list_waiting_rooms(self) -> list[dict[str, Any]]:
        return [room_summary(room) for room in self.rooms.values() if room.status == "waiting"]

    def bind_member(self, user_id: str, code: str) -> None:
        self.members[user_id] = code

    def unbind_member(self, user_id: str, code: str | None = None) -> None:
        if code is not None and self.members.get(user_id) != code:
            return
        self.members.pop(user_id, None)

    def room_for_member(self, user_id: str) -> Room | None:
        code = self.members.get(user_id)
        if code is None:
            return None
        room = self.rooms.get(code)
        if room is None or user_id not in room.players:
            self.members.pop(user_id, None)
            return None
        return room
