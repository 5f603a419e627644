from __future__ import annotations

import asyncio
import json
from typing import Any

import pytest
from fastapi import WebSocketDisconnect

from quizroom.profile_repository import merge_match_reward
from quizroom.registry import RoomRegistry
from quizroom.room_constants import XP_LOG_SOURCE
from quizroom.room_types import MatchReward, Question, Quiz, UserProfile
from quizroom.runtime import QuizRuntime
from quizroom.runtime_types import RoundTiming

_DISCONNECT = object()


class FakeQuizStore:
    def __init__(self, quizzes: list[Quiz] | None = None) -> None:
        self.quizzes = {quiz.id: quiz for quiz in quizzes or []}

    async def get_quiz(self, quiz_id: str) -> Quiz | None:
        return self.quizzes.get(quiz_id)


class FakeIdentityVerifier:
    def __init__(self, tokens: dict[str, str] | None = None) -> None:
        self.tokens = dict(tokens or {})
        self.broken = False

    async def verify(self, token: str) -> dict[str, Any] | None:
        if self.broken:
            raise ConnectionError("session store unavailable")
        user_id = self.tokens.get(token)
        if user_id is None:
            return None
        return {"session_id": 1, "user_id": user_id, "email": f"{user_id}@example.com"}


class FakeProfileStore:
    def __init__(self, profiles: list[UserProfile] | None = None) -> None:
        self.profiles = {profile.id: profile for profile in profiles or []}
        self.games: dict[str, int] = {}
        self.wins: dict[str, int] = {}
        self.xp_logs: list[dict[str, Any]] = []
        self.failing_users: set[str] = set()
        self.rewards: list[MatchReward] = []

    async def get_profile(self, user_id: str) -> UserProfile | None:
        return self.profiles.get(user_id)

    async def apply_match_reward(self, reward: MatchReward) -> dict[str, Any] | None:
        self.rewards.append(reward)
        if reward.user_id in self.failing_users:
            raise ConnectionError("profile write failed")
        profile = self.profiles.get(reward.user_id)
        if profile is None:
            return None

        xp_after, level_after, badges = merge_match_reward(
            profile.xp, profile.level, list(profile.badges), reward
        )
        self.profiles[reward.user_id] = UserProfile(
            id=profile.id,
            name=profile.name,
            level=level_after,
            xp=xp_after,
            badges=tuple(badges),
        )
        self.games[reward.user_id] = self.games.get(reward.user_id, 0) + 1
        if reward.is_winner:
            self.wins[reward.user_id] = self.wins.get(reward.user_id, 0) + 1
        self.xp_logs.append(
            {"user": reward.user_id, "xp": reward.xp_awarded, "source": XP_LOG_SOURCE}
        )
        return {"userId": reward.user_id, "xp": xp_after}

    async def get_multiplayer_stats(self, user_id: str) -> dict[str, Any] | None:
        profile = self.profiles.get(user_id)
        if profile is None:
            return None
        games = self.games.get(user_id, 0)
        wins = self.wins.get(user_id, 0)
        return {
            "multiplayerGames": games,
            "multiplayerWins": wins,
            "winRate": round(wins / games * 100) if games else 0,
            "level": profile.level,
            "xp": profile.xp,
            "badges": list(profile.badges),
        }


class FakeWebSocket:
    def __init__(
        self,
        query_params: dict[str, str] | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        self.query_params = dict(query_params or {})
        self.headers = dict(headers or {})
        self.accepted = False
        self.closed_code: int | None = None
        self.sent: list[dict[str, Any]] = []
        self._incoming: asyncio.Queue[Any] = asyncio.Queue()
        self._outgoing: asyncio.Queue[dict[str, Any]] = asyncio.Queue()

    async def accept(self) -> None:
        self.accepted = True

    async def receive_text(self) -> str:
        item = await self._incoming.get()
        if item is _DISCONNECT:
            raise WebSocketDisconnect(code=1000)
        return item

    async def send_json(self, data: dict[str, Any]) -> None:
        if self.closed_code is not None:
            raise RuntimeError("socket closed")
        self.sent.append(data)
        self._outgoing.put_nowait(data)

    async def close(self, code: int = 1000) -> None:
        self.closed_code = code

    def push_text(self, raw: str) -> None:
        self._incoming.put_nowait(raw)

    def push_disconnect(self) -> None:
        self._incoming.put_nowait(_DISCONNECT)

    async def next_frame(self, timeout: float = 2.0) -> dict[str, Any]:
        return await asyncio.wait_for(self._outgoing.get(), timeout=timeout)

    def events(self, event_type: str) -> list[dict[str, Any]]:
        return [frame for frame in self.sent if frame.get("type") == event_type]


class Client:
    """A connected test socket driving ``QuizRuntime.handle_websocket``."""

    def __init__(self, runtime: QuizRuntime, websocket: FakeWebSocket) -> None:
        self.runtime = runtime
        self.ws = websocket
        self.task: asyncio.Task[None] | None = None

    def send(self, message: dict[str, Any]) -> None:
        self.ws.push_text(json.dumps(message))

    async def expect(self, event_type: str, timeout: float = 2.0) -> dict[str, Any]:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise AssertionError(f"no {event_type} frame received")
            try:
                frame = await self.ws.next_frame(timeout=remaining)
            except asyncio.TimeoutError:
                raise AssertionError(f"no {event_type} frame received") from None
            if frame.get("type") == event_type:
                return frame

    async def request(self, message: dict[str, Any], event_type: str) -> dict[str, Any]:
        self.send(message)
        return await self.expect(event_type)

    async def disconnect(self) -> None:
        self.ws.push_disconnect()
        if self.task is not None:
            await asyncio.wait_for(self.task, timeout=2.0)


def make_quiz(quiz_id: str = "quiz-1", question_count: int = 3) -> Quiz:
    questions = tuple(
        Question(
            question=f"Question {index + 1}?",
            options=("Alpha", "Beta", "Gamma", "Delta"),
            correct_answer=index % 4,
            explanation=f"Because of {index + 1}",
        )
        for index in range(question_count)
    )
    return Quiz(id=quiz_id, title="General Knowledge", category="trivia", questions=questions)


@pytest.fixture
def quiz() -> Quiz:
    return make_quiz()


@pytest.fixture
def profiles() -> list[UserProfile]:
    return [
        UserProfile(id="1", name="alice", level=1, xp=0),
        UserProfile(id="2", name="bob", level=2, xp=1500),
        UserProfile(id="3", name="carol", level=1, xp=950),
        UserProfile(id="4", name="dave", level=1, xp=0),
    ]


@pytest.fixture
def quiz_store(quiz: Quiz) -> FakeQuizStore:
    return FakeQuizStore([quiz, make_quiz("quiz-single", 1)])


@pytest.fixture
def identity_verifier(profiles: list[UserProfile]) -> FakeIdentityVerifier:
    return FakeIdentityVerifier({f"token-{profile.id}": profile.id for profile in profiles})


@pytest.fixture
def profile_store(profiles: list[UserProfile]) -> FakeProfileStore:
    return FakeProfileStore(profiles)


@pytest.fixture
def timing() -> RoundTiming:
    return RoundTiming(
        auth_timeout=0.2,
        all_answered_grace=0.01,
        results_delay=0.01,
        finish_delay=0.01,
        cleanup_delay=0.05,
    )


@pytest.fixture
async def runtime(
    quiz_store: FakeQuizStore,
    identity_verifier: FakeIdentityVerifier,
    profile_store: FakeProfileStore,
    timing: RoundTiming,
):
    quiz_runtime = QuizRuntime(
        registry=RoomRegistry(),
        quizzes=quiz_store,
        identities=identity_verifier,
        profiles=profile_store,
        timing=timing,
    )
    yield quiz_runtime
    await quiz_runtime.shutdown()


@pytest.fixture
async def connect(runtime: QuizRuntime):
    clients: list[Client] = []

    async def _connect(user_id: str) -> Client:
        websocket = FakeWebSocket(query_params={"token": f"token-{user_id}"})
        client = Client(runtime, websocket)
        client.task = asyncio.create_task(runtime.handle_websocket(websocket))
        await client.expect("authenticated")
        clients.append(client)
        return client

    yield _connect

    for client in clients:
        if client.task is not None and not client.task.done():
            client.ws.push_disconnect()
            await asyncio.wait_for(client.task, timeout=2.0)
