from __future__ import annotations

import json
from typing import Any

import asyncpg

from .room_constants import CHAMPION_BADGE, XP_LOG_SOURCE
from .room_types import MatchReward, UserProfile
from .room_utils import sanitize_player_name
from .scoring import level_for_xp


PROFILE_SELECT = """
SELECT
  id,
  display_name,
  level,
  xp,
  multiplayer_games,
  multiplayer_wins,
  badges_json
FROM auth_users
"""


def _db_user_id(user_id: str) -> int | None:
    raw = str(user_id or "").strip()
    if not raw.isdigit():
        return None
    return int(raw)


def _parse_badges(raw: str | None) -> list[str]:
    try:
        payload = json.loads(raw or "[]")
    except json.JSONDecodeError:
        return []
    if not isinstance(payload, list):
        return []
    return [str(item) for item in payload]


def win_rate(games: int, wins: int) -> int:
    if games <= 0:
        return 0
    return round(wins / games * 100)


def merge_match_reward(
    xp: int,
    level: int,
    badges: list[str],
    reward: MatchReward,
) -> tuple[int, int, list[str]]:
    """Return ``(xp, level, badges)`` after one match reward.

    The level is recomputed from the new XP but never lowered, and the
    champion badge is appended at most once.
    """
    xp_after = int(xp) + int(reward.xp_awarded)
    level_after = max(int(level), level_for_xp(xp_after))
    badges_after = list(badges)
    if reward.is_winner and CHAMPION_BADGE not in badges_after:
        badges_after.append(CHAMPION_BADGE)
    return xp_after, level_after, badges_after


async def get_profile(pool: asyncpg.Pool, user_id: str) -> UserProfile | None:
    db_user_id = _db_user_id(user_id)
    if db_user_id is None:
        return None

    async with pool.acquire() as conn:
        row = await conn.fetchrow(PROFILE_SELECT + " WHERE id = $1", db_user_id)
    if row is None:
        return None

    return UserProfile(
        id=str(row["id"]),
        name=sanitize_player_name(row["display_name"]),
        level=int(row["level"] or 1),
        xp=int(row["xp"] or 0),
        badges=tuple(_parse_badges(row["badges_json"])),
    )


async def apply_match_reward(pool: asyncpg.Pool, reward: MatchReward) -> dict[str, Any] | None:
    """Apply one participant's end-of-match reward in a single transaction.

    Returns the updated counters, or ``None`` when the user does not exist.
    The champion badge is added at most once and the level never decreases.
    """
    db_user_id = _db_user_id(reward.user_id)
    if db_user_id is None:
        return None

    async with pool.acquire() as conn:
        async with conn.transaction():
            row = await conn.fetchrow(PROFILE_SELECT + " WHERE id = $1 FOR UPDATE", db_user_id)
            if row is None:
                return None

            xp_after, level_after, badges = merge_match_reward(
                int(row["xp"] or 0),
                int(row["level"] or 1),
                _parse_badges(row["badges_json"]),
                reward,
            )

            updated = await conn.fetchrow(
                """
                UPDATE auth_users
                SET xp = $2,
                    level = $3,
                    multiplayer_games = multiplayer_games + 1,
                    multiplayer_wins = multiplayer_wins + $4,
                    badges_json = $5,
                    updated_at = NOW()
                WHERE id = $1
                RETURNING multiplayer_games, multiplayer_wins
                """,
                db_user_id,
                xp_after,
                level_after,
                1 if reward.is_winner else 0,
                json.dumps(badges, ensure_ascii=False),
            )
            await conn.execute(
                """
                INSERT INTO xp_logs (user_id, xp, source)
                VALUES ($1, $2, $3)
                """,
                db_user_id,
                int(reward.xp_awarded),
                XP_LOG_SOURCE,
            )

    return {
        "userId": str(db_user_id),
        "xp": xp_after,
        "level": level_after,
        "multiplayerGames": int(updated["multiplayer_games"]),
        "multiplayerWins": int(updated["multiplayer_wins"]),
        "badges": badges,
    }


async def get_multiplayer_stats(pool: asyncpg.Pool, user_id: str) -> dict[str, Any] | None:
    db_user_id = _db_user_id(user_id)
    if db_user_id is None:
        return None

    async with pool.acquire() as conn:
        row = await conn.fetchrow(PROFILE_SELECT + " WHERE id = $1", db_user_id)
    if row is None:
        return None

    games = int(row["multiplayer_games"] or 0)
    wins = int(row["multiplayer_wins"] or 0)
    return {
        "multiplayerGames": games,
        "multiplayerWins": wins,
        "winRate": win_rate(games, wins),
        "level": int(row["level"] or 1),
        "xp": int(row["xp"] or 0),
        "badges": _parse_badges(row["badges_json"]),
    }
