from __future__ import annotations

import hashlib
import random
import time
from typing import Any

from .room_constants import ROOM_CODE_CHARS


def now_ms() -> int:
    return int(time.time() * 1000)


def random_room_code(length: int = 6) -> str:
    return "".join(random.choice(ROOM_CODE_CHARS) for _ in range(max(4, length)))


def sanitize_room_id(raw: Any) -> str:
    value = str(raw or "").upper()
    filtered = "".join(ch for ch in value if ch.isalnum())
    return filtered[:8]


def sanitize_player_name(raw: Any) -> str:
    value = " ".join(str(raw or "").split())[:40].strip()
    return value or "Player"


def mask_identity(user_id: str | None) -> str:
    if not user_id:
        return "none"
    return hashlib.sha256(str(user_id).encode("utf-8")).hexdigest()[:10]


def clamp_int(value: Any, *, minimum: int, maximum: int, default: int) -> int:
    try:
        num = int(value)
    except (TypeError, ValueError):
        return default
    return max(minimum, min(maximum, num))


def elapsed_seconds(started_at_ms: int | None, now_value_ms: int) -> float:
    if started_at_ms is None:
        return 0.0
    return max(0.0, (now_value_ms - started_at_ms) / 1000)
