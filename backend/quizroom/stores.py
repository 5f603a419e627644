from __future__ import annotations

from typing import Any, Protocol

from . import database
from .redis_cache import get_cached_stats, invalidate_stats, set_cached_stats
from .room_types import MatchReward, Quiz, UserProfile


class QuizStore(Protocol):
    async def get_quiz(self, quiz_id: str) -> Quiz | None: ...


class IdentityVerifier(Protocol):
    async def verify(self, token: str) -> dict[str, Any] | None: ...


class ProfileStore(Protocol):
    async def get_profile(self, user_id: str) -> UserProfile | None: ...

    async def apply_match_reward(self, reward: MatchReward) -> dict[str, Any] | None: ...

    async def get_multiplayer_stats(self, user_id: str) -> dict[str, Any] | None: ...


class PostgresQuizStore:
    async def get_quiz(self, quiz_id: str) -> Quiz | None:
        return await database.get_quiz(quiz_id)


class SessionIdentityVerifier:
    async def verify(self, token: str) -> dict[str, Any] | None:
        return await database.get_auth_session_identity(token, touch=True)


class PostgresProfileStore:
    async def get_profile(self, user_id: str) -> UserProfile | None:
        return await database.get_profile(user_id)

    async def apply_match_reward(self, reward: MatchReward) -> dict[str, Any] | None:
        updated = await database.apply_match_reward(reward)
        if updated is not None:
            await invalidate_stats(reward.user_id)
        return updated

    async def get_multiplayer_stats(self, user_id: str) -> dict[str, Any] | None:
        cached = await get_cached_stats(user_id)
        if cached is not None:
            return cached
        stats = await database.get_multiplayer_stats(user_id)
        if stats is not None:
            await set_cached_stats(user_id, stats)
        return stats
