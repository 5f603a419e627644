from __future__ import annotations

import hashlib
from typing import Any

import asyncpg


def hash_session_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def extract_bearer_token(value: str | None) -> str | None:
    if value is None:
        return None
    raw = value.strip()
    if raw.lower().startswith("bearer "):
        raw = raw[7:].strip()
    return raw or None


async def get_auth_session_identity(
    pool: asyncpg.Pool,
    token: str | None,
    *,
    touch: bool = True,
) -> dict[str, Any] | None:
    raw = (token or "").strip()
    if not raw:
        return None

    token_hash = hash_session_token(raw)
    async with pool.acquire() as conn:
        row = await conn.fetchrow(
            """
            SELECT
              s.id AS session_id,
              s.user_id,
              u.email
            FROM auth_sessions s
            JOIN auth_users u ON u.id = s.user_id
            WHERE s.token_hash = $1
              AND s.revoked_at IS NULL
              AND s.expires_at > NOW()
            """,
            token_hash,
        )
        if row is None:
            return None

        if touch:
            await conn.execute(
                """
                UPDATE auth_sessions
                SET last_seen_at = NOW()
                WHERE id = $1
                """,
                row["session_id"],
            )

    return {
        "session_id": int(row["session_id"]),
        "user_id": str(row["user_id"]),
        "email": str(row["email"]),
    }
