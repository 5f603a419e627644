from __future__ import annotations

import json
import logging
from typing import Any

import asyncpg

from .room_types import Question, Quiz

logger = logging.getLogger(__name__)


def parse_question(raw: Any) -> Question | None:
    if not isinstance(raw, dict):
        return None
    text = str(raw.get("question") or "").strip()
    options = raw.get("options")
    if not text or not isinstance(options, list) or len(options) < 2:
        return None
    explanation = raw.get("explanation")
    return Question(
        question=text,
        options=tuple(str(option) for option in options),
        correct_answer=raw.get("correctAnswer", raw.get("correct_answer")),
        explanation=str(explanation) if explanation else None,
        difficulty=str(raw.get("difficulty") or "medium"),
    )


def parse_questions(raw_json: str | None) -> tuple[Question, ...]:
    try:
        payload = json.loads(raw_json or "[]")
    except json.JSONDecodeError:
        return ()
    if not isinstance(payload, list):
        return ()
    parsed = [parse_question(item) for item in payload]
    return tuple(question for question in parsed if question is not None)


async def get_quiz(pool: asyncpg.Pool, quiz_id: str) -> Quiz | None:
    quiz_id_value = str(quiz_id or "").strip()[:64]
    if not quiz_id_value:
        return None

    async with pool.acquire() as conn:
        row = await conn.fetchrow(
            """
            SELECT id, title, category, questions_json
            FROM quizzes
            WHERE id = $1
            """,
            quiz_id_value,
        )
    if row is None:
        return None

    questions = parse_questions(row["questions_json"])
    if not questions:
        logger.warning("Quiz %s has no readable questions", quiz_id_value)
    return Quiz(
        id=str(row["id"]),
        title=str(row["title"]),
        category=row["category"],
        questions=questions,
    )
