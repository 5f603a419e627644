from __future__ import annotations

import logging
from typing import Any

import asyncpg

from .config import settings
from .database_sessions import get_auth_session_identity as get_auth_session_identity_impl
from .profile_repository import (
    apply_match_reward as apply_match_reward_impl,
    get_multiplayer_stats as get_multiplayer_stats_impl,
    get_profile as get_profile_impl,
)
from .quiz_repository import get_quiz as get_quiz_impl
from .room_types import MatchReward, Quiz, UserProfile

logger = logging.getLogger(__name__)

_pool: asyncpg.Pool | None = None


def _normalized_database_url() -> str:
    url = settings.database_url.strip()
    if url.startswith("postgresql+asyncpg://"):
        return "postgresql://" + url[len("postgresql+asyncpg://") :]
    return url


async def _get_pool() -> asyncpg.Pool:
    global _pool
    if _pool is None:
        _pool = await asyncpg.create_pool(dsn=_normalized_database_url(), min_size=1, max_size=10)
    return _pool


async def init_db() -> None:
    pool = await _get_pool()
    async with pool.acquire() as conn:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS auth_users (
              id BIGSERIAL PRIMARY KEY,
              email VARCHAR(255) UNIQUE NOT NULL,
              display_name VARCHAR(64) NOT NULL,
              level INTEGER NOT NULL DEFAULT 1,
              xp INTEGER NOT NULL DEFAULT 0,
              multiplayer_games INTEGER NOT NULL DEFAULT 0,
              multiplayer_wins INTEGER NOT NULL DEFAULT 0,
              badges_json TEXT NOT NULL DEFAULT '[]',
              created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
              updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            )
            """
        )
        await conn.execute(
            "ALTER TABLE auth_users ADD COLUMN IF NOT EXISTS multiplayer_games INTEGER NOT NULL DEFAULT 0"
        )
        await conn.execute(
            "ALTER TABLE auth_users ADD COLUMN IF NOT EXISTS multiplayer_wins INTEGER NOT NULL DEFAULT 0"
        )
        await conn.execute(
            "ALTER TABLE auth_users ADD COLUMN IF NOT EXISTS badges_json TEXT NOT NULL DEFAULT '[]'"
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS auth_sessions (
              id BIGSERIAL PRIMARY KEY,
              user_id BIGINT NOT NULL REFERENCES auth_users(id) ON DELETE CASCADE,
              token_hash VARCHAR(64) UNIQUE NOT NULL,
              expires_at TIMESTAMPTZ NOT NULL,
              revoked_at TIMESTAMPTZ,
              last_seen_at TIMESTAMPTZ,
              created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS quizzes (
              id VARCHAR(64) PRIMARY KEY,
              title VARCHAR(200) NOT NULL,
              category VARCHAR(80),
              questions_json TEXT NOT NULL DEFAULT '[]',
              created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
              updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS xp_logs (
              id BIGSERIAL PRIMARY KEY,
              user_id BIGINT NOT NULL REFERENCES auth_users(id) ON DELETE CASCADE,
              xp INTEGER NOT NULL,
              source VARCHAR(32) NOT NULL,
              created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            )
            """
        )
        await conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_auth_sessions_user_id ON auth_sessions(user_id)"
        )
        await conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_xp_logs_user_created ON xp_logs(user_id, created_at DESC)"
        )
    logger.info("Database schema is ready")


async def close_db() -> None:
    global _pool
    if _pool is None:
        return
    await _pool.close()
    _pool = None


async def ping_db() -> bool:
    try:
        pool = await _get_pool()
        async with pool.acquire() as conn:
            await conn.fetchval("SELECT 1")
        return True
    except Exception:
        logger.exception("Database ping failed")
        return False


async def get_auth_session_identity(token: str | None, *, touch: bool = True) -> dict[str, Any] | None:
    pool = await _get_pool()
    return await get_auth_session_identity_impl(pool, token, touch=touch)


async def get_quiz(quiz_id: str) -> Quiz | None:
    pool = await _get_pool()
    return await get_quiz_impl(pool, quiz_id)


async def get_profile(user_id: str) -> UserProfile | None:
    pool = await _get_pool()
    return await get_profile_impl(pool, user_id)


async def apply_match_reward(reward: MatchReward) -> dict[str, Any] | None:
    pool = await _get_pool()
    return await apply_match_reward_impl(pool, reward)


async def get_multiplayer_stats(user_id: str) -> dict[str, Any] | None:
    pool = await _get_pool()
    return await get_multiplayer_stats_impl(pool, user_id)
