from __future__ import annotations

from dataclasses import dataclass

from fastapi import WebSocket

from .config import Settings, settings
from .room_types import UserProfile


@dataclass
class ClientConnection:
    user_id: str
    profile: UserProfile
    websocket: WebSocket
    connected_at: int


@dataclass(frozen=True)
class RoundTiming:
    auth_timeout: float
    all_answered_grace: float
    results_delay: float
    finish_delay: float
    cleanup_delay: float

    @classmethod
    def from_settings(cls, source: Settings = settings) -> "RoundTiming":
        return cls(
            auth_timeout=source.auth_timeout_seconds,
            all_answered_grace=source.all_answered_grace_seconds,
            results_delay=source.results_delay_seconds,
            finish_delay=source.finish_delay_seconds,
            cleanup_delay=source.room_cleanup_delay_seconds,
        )
