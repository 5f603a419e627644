from __future__ import annotations

import json
import logging
from typing import Any

from redis.asyncio import Redis
from redis.asyncio import from_url as redis_from_url

from .config import settings

logger = logging.getLogger(__name__)

_redis: Redis | None = None


def is_redis_configured() -> bool:
    return bool(settings.redis_url)


def _stats_key(user_id: str) -> str:
    return f"qr:stats:{str(user_id)[:64]}"


async def init_redis() -> bool:
    global _redis
    if _redis is not None:
        return True

    if not settings.redis_url:
        logger.info("Redis URL is not configured, cache disabled")
        return False

    client = redis_from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
    )
    try:
        await client.ping()
    except Exception:
        logger.exception("Failed to connect to Redis %s", settings.redis_url)
        await client.aclose()
        return False

    _redis = client
    logger.info("Redis cache connected")
    return True


async def close_redis() -> None:
    global _redis
    if _redis is None:
        return
    try:
        await _redis.aclose()
    finally:
        _redis = None


async def ping_redis() -> bool:
    if _redis is None:
        return False
    try:
        await _redis.ping()
        return True
    except Exception:
        logger.exception("Redis ping failed")
        return False


async def get_cached_stats(user_id: str) -> dict[str, Any] | None:
    if _redis is None:
        return None
    key = _stats_key(user_id)
    try:
        raw = await _redis.get(key)
    except Exception:
        logger.exception("Redis get failed for key %s", key)
        return None
    if not raw:
        return None
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError:
        return None
    if not isinstance(payload, dict):
        return None
    return payload


async def set_cached_stats(user_id: str, stats: dict[str, Any]) -> None:
    if _redis is None:
        return
    key = _stats_key(user_id)
    try:
        await _redis.set(
            key,
            json.dumps(stats, ensure_ascii=False),
            ex=settings.redis_stats_ttl_seconds,
        )
    except Exception:
        logger.exception("Redis set failed for key %s", key)


async def invalidate_stats(user_id: str) -> None:
    if _redis is None:
        return
    key = _stats_key(user_id)
    try:
        await _redis.delete(key)
    except Exception:
        logger.exception("Redis delete failed for key %s", key)
