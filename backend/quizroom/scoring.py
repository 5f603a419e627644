from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable

from .answers import is_correct_answer, normalize_answer
from .room_constants import (
    MAX_POINTS,
    MIN_XP_REWARD,
    WINNER_XP,
    XP_PER_LEVEL,
    XP_STEP_PER_RANK,
)
from .room_types import Answer, MatchReward, Question, Room, RoomPlayer


@dataclass
class QuestionSettlement:
    question_index: int
    correct_answer: int | None
    results: list[dict[str, Any]] = field(default_factory=list)
    points_by_player: dict[str, int] = field(default_factory=dict)


def calculate_points(is_correct: bool, time_spent: float, time_limit: float) -> int:
    if not is_correct:
        return 0
    safe_limit = max(1.0, float(time_limit))
    safe_spent = min(safe_limit, max(0.0, float(time_spent)))
    time_bonus = max(0.0, (safe_limit - safe_spent) / safe_limit)
    return round(MAX_POINTS * (0.5 + 0.5 * time_bonus))


def settle_question(
    question: Question,
    question_index: int,
    players: Iterable[RoomPlayer],
    answers: dict[str, Answer],
    time_limit: float,
    scores: dict[str, int],
) -> QuestionSettlement:
    """Score one question for every listed player without touching room state.

    ``scores`` holds the totals before this question; the returned results
    carry the totals after it. Players without an answer are incorrect with
    zero points.
    """
    settlement = QuestionSettlement(
        question_index=question_index,
        correct_answer=normalize_answer(question.correct_answer, question.options),
    )
    for player in players:
        answer = answers.get(player.id)
        is_correct = False
        points = 0
        if answer is not None and settlement.correct_answer is not None:
            is_correct = is_correct_answer(answer.value, question.correct_answer, question.options)
            points = calculate_points(is_correct, answer.time_spent, time_limit)

        settlement.points_by_player[player.id] = points
        settlement.results.append(
            {
                "playerId": player.id,
                "playerName": player.name,
                "answer": answer.value if answer is not None else None,
                "isCorrect": is_correct,
                "points": points,
                "totalScore": int(scores.get(player.id, 0)) + points,
            }
        )
    return settlement


def build_leaderboard(room: Room) -> list[dict[str, Any]]:
    rows = [
        {
            "playerId": player.id,
            "playerName": player.name,
            "score": int(room.scores.get(player.id, 0)),
            "avatar": player.avatar,
            "level": player.level,
        }
        for player in room.players.values()
    ]
    # sorted() is stable, so equal scores keep join order.
    return sorted(rows, key=lambda row: row["score"], reverse=True)


def xp_for_rank(rank: int) -> int:
    return max(MIN_XP_REWARD, WINNER_XP - max(0, rank) * XP_STEP_PER_RANK)


def level_for_xp(xp: int) -> int:
    return max(0, int(xp)) // XP_PER_LEVEL + 1


def build_match_rewards(leaderboard: list[dict[str, Any]]) -> list[MatchReward]:
    return [
        MatchReward(
            user_id=str(row["playerId"]),
            player_name=str(row["playerName"]),
            rank=rank,
            score=int(row["score"]),
            xp_awarded=xp_for_rank(rank),
            is_winner=rank == 0,
        )
        for rank, row in enumerate(leaderboard)
    ]
