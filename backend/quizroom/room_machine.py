"""State transitions for one quiz room.

Each function takes a :class:`Room`, applies one event and returns the
messages the event produces. Nothing here touches sockets, timers or stores,
so the whole state machine can be exercised without a network layer. Failed
preconditions raise before any field is modified.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any

from .answers import normalize_answer, option_letter
from .errors import NotFoundError, PreconditionError
from .room_constants import (
    DEFAULT_MAX_PLAYERS,
    DEFAULT_TIME_PER_QUESTION,
    MAX_CHAT_LENGTH,
    MAX_PLAYERS_LIMIT,
    MAX_TIME_PER_QUESTION,
    MIN_PLAYERS_TO_START,
    MIN_TIME_PER_QUESTION,
)
from .room_types import (
    Answer,
    MatchReward,
    Outgoing,
    Quiz,
    Room,
    RoomPlayer,
    RoomSettings,
    UserProfile,
)
from .room_utils import clamp_int, elapsed_seconds
from .scoring import build_leaderboard, build_match_rewards, settle_question


@dataclass
class LeaveResult:
    messages: list[Outgoing] = field(default_factory=list)
    room_empty: bool = False
    new_host_id: str | None = None


def normalize_settings(raw: dict[str, Any] | None, quiz: Quiz) -> RoomSettings:
    raw = raw or {}
    total_questions = len(quiz.questions)
    return RoomSettings(
        max_players=clamp_int(
            raw.get("maxPlayers"),
            minimum=MIN_PLAYERS_TO_START,
            maximum=MAX_PLAYERS_LIMIT,
            default=DEFAULT_MAX_PLAYERS,
        ),
        time_per_question=clamp_int(
            raw.get("timePerQuestion"),
            minimum=MIN_TIME_PER_QUESTION,
            maximum=MAX_TIME_PER_QUESTION,
            default=DEFAULT_TIME_PER_QUESTION,
        ),
        question_count=clamp_int(
            raw.get("questionCount"),
            minimum=1,
            maximum=max(1, total_questions),
            default=total_questions,
        ),
    )


def build_room(
    code: str,
    host: UserProfile,
    quiz: Quiz,
    settings: RoomSettings,
    now: int,
) -> Room:
    if not quiz.questions:
        raise PreconditionError("Quiz has no questions", code="QUIZ_EMPTY")

    # The room keeps its own question list, trimmed to the configured count.
    room_quiz = replace(quiz, questions=tuple(quiz.questions[: settings.question_count]))
    room = Room(
        id=code,
        host_id=host.id,
        settings=settings,
        quiz=room_quiz,
        created_at=now,
    )
    _add_player(room, host, now)
    return room


def _add_player(room: Room, profile: UserProfile, now: int) -> RoomPlayer:
    player = RoomPlayer(
        id=profile.id,
        name=profile.name,
        level=profile.level,
        xp=profile.xp,
        avatar=profile.avatar,
        joined_at=now,
    )
    room.players[profile.id] = player
    return player


def players_payload(room: Room) -> list[dict[str, Any]]:
    return [player.to_payload() for player in room.players.values()]


def room_payload(room: Room) -> dict[str, Any]:
    return {
        "id": room.id,
        "hostId": room.host_id,
        "players": players_payload(room),
        "playerCount": len(room.players),
        "settings": room.settings.to_payload(),
        "status": room.status,
        "currentQuestion": room.current_question_index,
        "quiz": room.quiz.summary() if room.quiz is not None else None,
        "createdAt": room.created_at,
    }


def room_status(room: Room) -> dict[str, Any]:
    payload = room_payload(room)
    payload.update(
        {
            "totalQuestions": len(room.questions),
            "canStart": can_start(room),
            "startedAt": room.started_at,
            "finishedAt": room.finished_at,
        }
    )
    return payload


def room_summary(room: Room) -> dict[str, Any]:
    host = room.host
    return {
        "id": room.id,
        "hostName": host.name if host is not None else "Unknown",
        "playerCount": len(room.players),
        "maxPlayers": room.settings.max_players,
        "quizTitle": room.quiz.title if room.quiz is not None else "Unknown Quiz",
        "createdAt": room.created_at,
    }


def join(room: Room, profile: UserProfile, now: int) -> list[Outgoing]:
    if room.status != "waiting":
        raise PreconditionError("Room is not accepting new players", code="ROOM_NOT_WAITING")
    if profile.id in room.players:
        raise PreconditionError("Already in this room", code="ALREADY_IN_ROOM")
    if len(room.players) >= room.settings.max_players:
        raise PreconditionError("Room is full", code="ROOM_FULL")

    _add_player(room, profile, now)
    return [
        Outgoing(
            "player_joined",
            {
                "player": profile.to_payload(),
                "players": players_payload(room),
                "playerCount": len(room.players),
            },
        ),
        Outgoing("room_joined", {"room": room_payload(room)}, to=profile.id),
    ]


def leave(room: Room, user_id: str) -> LeaveResult:
    removed = room.players.pop(user_id, None)
    if removed is None:
        return LeaveResult()

    result = LeaveResult(room_empty=not room.players)
    if result.room_empty:
        return result

    result.messages.append(
        Outgoing(
            "player_left",
            {
                "playerId": removed.id,
                "playerName": removed.name,
                "players": players_payload(room),
                "playerCount": len(room.players),
            },
        )
    )

    if room.host_id == user_id:
        # Earliest remaining joiner; dict order is join order.
        new_host = next(iter(room.players.values()))
        room.host_id = new_host.id
        result.new_host_id = new_host.id
        result.messages.append(
            Outgoing("host_changed", {"newHostId": new_host.id, "newHostName": new_host.name})
        )
    return result


def start_blockers(room: Room) -> list[str]:
    reasons: list[str] = []
    if len(room.players) < MIN_PLAYERS_TO_START:
        reasons.append(f"Need at least {MIN_PLAYERS_TO_START} players")
    if room.quiz is None or not room.quiz.questions:
        reasons.append("No quiz selected")
    if room.status != "waiting":
        reasons.append(f"Room status is {room.status}, should be waiting")
    return reasons


def can_start(room: Room) -> bool:
    return not start_blockers(room)


def start(room: Room, user_id: str, now: int) -> list[Outgoing]:
    if user_id not in room.players:
        raise PreconditionError("You are not in this room", code="NOT_IN_ROOM")
    if room.host_id != user_id:
        raise PreconditionError("Only the host can start the quiz", code="NOT_HOST")
    reasons = start_blockers(room)
    if reasons:
        raise PreconditionError(f"Cannot start quiz: {', '.join(reasons)}", code="NOT_STARTABLE")

    room.status = "in_progress"
    room.current_question_index = 0
    room.started_at = now
    room.answers_by_question = {}
    room.scores = {player_id: 0 for player_id in room.players}
    for player in room.players.values():
        player.answers = {}
    return begin_round(room, now)


def begin_round(room: Room, now: int) -> list[Outgoing]:
    question = room.current_question
    if question is None:
        return []

    room.round_state = "answering"
    room.question_started_at = now
    return [
        Outgoing(
            "new_question",
            {
                "questionIndex": room.current_question_index,
                "question": {
                    "question": question.question,
                    "options": list(question.options),
                    "questionNumber": room.current_question_index + 1,
                    "totalQuestions": len(room.questions),
                },
                "timeLimit": room.settings.time_per_question,
            },
        )
    ]


def answered_count(room: Room) -> int:
    answers = room.answers_by_question.get(room.current_question_index, {})
    return sum(1 for player_id in answers if player_id in room.players)


def all_answered(room: Room) -> bool:
    return bool(room.players) and answered_count(room) >= len(room.players)


def submit_answer(
    room: Room,
    user_id: str,
    raw_answer: Any,
    time_spent: float | None,
    now: int,
) -> list[Outgoing]:
    player = room.players.get(user_id)
    if player is None:
        raise NotFoundError("You are not in this room", code="NOT_IN_ROOM")
    if room.status != "in_progress":
        raise PreconditionError("Quiz is not in progress", code="NOT_IN_PROGRESS")
    question = room.current_question
    if room.round_state != "answering" or question is None:
        raise PreconditionError("Answers are closed for this question", code="ROUND_CLOSED")

    question_index = room.current_question_index
    answers = room.answers_by_question.get(question_index, {})
    if user_id in answers:
        raise PreconditionError("Answer already submitted for this question", code="DUPLICATE_ANSWER")

    limit = float(room.settings.time_per_question)
    if time_spent is None:
        time_spent = elapsed_seconds(room.question_started_at, now)
    answer = Answer(
        value=normalize_answer(raw_answer, question.options),
        raw_value=raw_answer,
        time_spent=min(limit, max(0.0, float(time_spent))),
        submitted_at=now,
    )
    room.answers_by_question.setdefault(question_index, {})[user_id] = answer
    player.answers[question_index] = answer

    return [
        Outgoing(
            "answer_submitted",
            {
                "playerId": player.id,
                "playerName": player.name,
                "answeredCount": answered_count(room),
                "totalPlayers": len(room.players),
            },
        )
    ]


def close_round(room: Room, question_index: int) -> list[Outgoing]:
    """Settle the given question once; later calls for it return nothing."""
    if room.status != "in_progress" or room.round_state != "answering":
        return []
    if question_index != room.current_question_index:
        return []
    question = room.current_question
    if question is None:
        return []

    settlement = settle_question(
        question,
        question_index,
        room.players.values(),
        room.answers_by_question.get(question_index, {}),
        room.settings.time_per_question,
        room.scores,
    )
    room.round_state = "reviewing"
    for player_id, points in settlement.points_by_player.items():
        room.scores[player_id] = int(room.scores.get(player_id, 0)) + points

    return [
        Outgoing(
            "question_results",
            {
                "questionIndex": question_index,
                "correctAnswer": settlement.correct_answer,
                "correctAnswerLetter": option_letter(settlement.correct_answer),
                "explanation": question.explanation,
                "results": settlement.results,
                "leaderboard": build_leaderboard(room),
            },
        )
    ]


def has_next_question(room: Room) -> bool:
    return room.current_question_index + 1 < len(room.questions)


def advance(room: Room, now: int) -> list[Outgoing]:
    if room.status != "in_progress" or room.round_state != "reviewing":
        return []
    if not has_next_question(room):
        return []
    room.current_question_index += 1
    return begin_round(room, now)


def finish(room: Room, now: int) -> tuple[list[Outgoing], list[MatchReward]]:
    if room.status != "in_progress":
        return [], []

    room.status = "finished"
    room.round_state = "idle"
    room.finished_at = now
    leaderboard = build_leaderboard(room)
    duration = round((now - (room.started_at or now)) / 1000)
    messages = [
        Outgoing(
            "quiz_finished",
            {
                "leaderboard": leaderboard,
                "totalQuestions": len(room.questions),
                "duration": duration,
            },
        )
    ]
    return messages, build_match_rewards(leaderboard)


def chat(room: Room, user_id: str, message: Any, now: int) -> list[Outgoing]:
    player = room.players.get(user_id)
    if player is None:
        raise NotFoundError("You are not in this room", code="NOT_IN_ROOM")
    text = str(message or "").strip()[:MAX_CHAT_LENGTH]
    if not text:
        return []
    return [
        Outgoing(
            "chat_message",
            {
                "playerId": player.id,
                "playerName": player.name,
                "message": text,
                "timestamp": now,
            },
        )
    ]
