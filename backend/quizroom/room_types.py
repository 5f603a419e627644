from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Literal

RoomStatus = Literal["waiting", "in_progress", "finished"]
RoundState = Literal["idle", "answering", "reviewing"]


@dataclass(frozen=True)
class UserProfile:
    id: str
    name: str
    level: int = 1
    xp: int = 0
    badges: tuple[str, ...] = ()

    @property
    def avatar(self) -> str:
        return (self.name.strip()[:1] or "?").upper()

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "level": self.level,
            "xp": self.xp,
            "avatar": self.avatar,
        }


@dataclass(frozen=True)
class Question:
    question: str
    options: tuple[str, ...]
    correct_answer: Any
    explanation: str | None = None
    difficulty: str = "medium"


@dataclass(frozen=True)
class Quiz:
    id: str
    title: str
    category: str | None
    questions: tuple[Question, ...]

    def summary(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "category": self.category,
            "questionCount": len(self.questions),
        }


@dataclass
class RoomSettings:
    max_players: int
    time_per_question: int
    question_count: int

    def to_payload(self) -> dict[str, int]:
        return {
            "maxPlayers": self.max_players,
            "timePerQuestion": self.time_per_question,
            "questionCount": self.question_count,
        }


@dataclass
class Answer:
    # Canonical zero-based option index; None when the submitted value could not be read.
    value: int | None
    raw_value: Any
    time_spent: float
    submitted_at: int


@dataclass
class RoomPlayer:
    id: str
    name: str
    level: int
    xp: int
    avatar: str
    joined_at: int
    answers: dict[int, Answer] = field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "level": self.level,
            "xp": self.xp,
            "avatar": self.avatar,
            "joinedAt": self.joined_at,
            "answeredCount": len(self.answers),
        }


@dataclass
class Outgoing:
    event: str
    payload: dict[str, Any]
    # None means every member of the room.
    to: str | None = None


@dataclass
class MatchReward:
    user_id: str
    player_name: str
    rank: int
    score: int
    xp_awarded: int
    is_winner: bool


@dataclass
class Room:
    id: str
    host_id: str
    settings: RoomSettings
    quiz: Quiz | None
    created_at: int
    status: RoomStatus = "waiting"
    current_question_index: int = 0
    question_started_at: int | None = None
    started_at: int | None = None
    finished_at: int | None = None
    round_state: RoundState = "idle"
    players: dict[str, RoomPlayer] = field(default_factory=dict)
    answers_by_question: dict[int, dict[str, Answer]] = field(default_factory=dict)
    scores: dict[str, int] = field(default_factory=dict)
    timers: dict[str, asyncio.Task[None] | None] = field(default_factory=dict)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    @property
    def questions(self) -> tuple[Question, ...]:
        if self.quiz is None:
            return ()
        return self.quiz.questions

    @property
    def current_question(self) -> Question | None:
        if 0 <= self.current_question_index < len(self.questions):
            return self.questions[self.current_question_index]
        return None

    @property
    def host(self) -> RoomPlayer | None:
        return self.players.get(self.host_id)
