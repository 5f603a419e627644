from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, field_validator


class RoomSettingsPayload(BaseModel):
    maxPlayers: int | None = Field(default=None)
    timePerQuestion: int | None = Field(default=None)
    questionCount: int | None = Field(default=None)


class CreateRoomMessage(BaseModel):
    quizId: str = Field(min_length=1, max_length=64)
    settings: RoomSettingsPayload = Field(default_factory=RoomSettingsPayload)

    @field_validator("quizId", mode="before")
    @classmethod
    def coerce_quiz_id(cls, value: Any) -> Any:
        # Quiz ids may arrive as numbers from older clients.
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value


class JoinRoomMessage(BaseModel):
    roomId: str = Field(min_length=1, max_length=16)


class SubmitAnswerMessage(BaseModel):
    answer: int | str | None = Field(default=None)
    timeSpent: float | None = Field(default=None, ge=0)


class ChatMessageRequest(BaseModel):
    message: str = Field(default="", max_length=4000)


class MultiplayerStatsResponse(BaseModel):
    multiplayerGames: int = 0
    multiplayerWins: int = 0
    winRate: int = 0
    level: int = 1
    xp: int = 0
    badges: list[str] = Field(default_factory=list)
