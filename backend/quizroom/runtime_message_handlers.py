from __future__ import annotations

from typing import TYPE_CHECKING, Any

from .errors import NotFoundError, PreconditionError
from .room_machine import chat, join, normalize_settings, room_payload, start, submit_answer
from .runtime_question_flow import handle_all_answered, open_round
from .schemas.rooms import (
    ChatMessageRequest,
    CreateRoomMessage,
    JoinRoomMessage,
    SubmitAnswerMessage,
)

if TYPE_CHECKING:
    from .room_types import Room
    from .runtime import QuizRuntime
    from .runtime_types import ClientConnection


def _payload(data: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in data.items() if key != "type"}


async def _release_finished_room(runtime: "QuizRuntime", user_id: str) -> None:
    current = runtime.registry.room_for_member(user_id)
    if current is None:
        return
    if current.status != "finished":
        raise PreconditionError("Leave your current room first", code="ALREADY_IN_ROOM")
    await runtime.leave_current_room(user_id, notify=False)


def _current_room(runtime: "QuizRuntime", user_id: str) -> "Room":
    room = runtime.registry.room_for_member(user_id)
    if room is None:
        raise NotFoundError("You are not in a room", code="NOT_IN_ROOM")
    return room


async def handle_message(
    runtime: "QuizRuntime",
    connection: "ClientConnection",
    data: dict[str, Any],
) -> None:
    message_type = data.get("type")
    user_id = connection.user_id

    if message_type == "ping":
        runtime._increment_stat("pingReceived")
        await runtime._send_to_user(user_id, {"type": "pong", "serverTime": runtime.clock()})
        return

    if message_type == "create_room":
        request = CreateRoomMessage.model_validate(_payload(data))
        current = runtime.registry.room_for_member(user_id)
        if current is not None and current.status != "finished":
            raise PreconditionError("Leave your current room first", code="ALREADY_IN_ROOM")

        quiz = await runtime.quizzes.get_quiz(request.quizId)
        if quiz is None:
            raise NotFoundError("Quiz not found", code="QUIZ_NOT_FOUND")

        await _release_finished_room(runtime, user_id)
        room_settings = normalize_settings(request.settings.model_dump(), quiz)
        room = await runtime.registry.create_room(
            connection.profile,
            quiz,
            room_settings,
            runtime.clock(),
        )
        runtime._increment_stat("roomsCreated")
        runtime._log_ws_event(
            "room_created",
            roomId=room.id,
            quizId=quiz.id,
            maxPlayers=room_settings.max_players,
        )
        async with room.lock:
            await runtime._send_to_user(
                user_id,
                {"type": "room_created", "room": room_payload(room)},
                room_id=room.id,
            )
        return

    if message_type == "join_room":
        request = JoinRoomMessage.model_validate(_payload(data))
        room = runtime.registry.get_room(request.roomId)
        if room is None:
            raise NotFoundError("Room not found", code="ROOM_NOT_FOUND")
        current = runtime.registry.room_for_member(user_id)
        if current is not None and current is not room:
            await _release_finished_room(runtime, user_id)

        async with room.lock:
            if runtime.registry.get_room(room.id) is not room:
                raise NotFoundError("Room not found", code="ROOM_NOT_FOUND")
            messages = join(room, connection.profile, runtime.clock())
            runtime.registry.bind_member(user_id, room.id)
            await runtime._dispatch(room, messages)
        return

    if message_type == "start_quiz":
        room = _current_room(runtime, user_id)
        async with room.lock:
            messages = start(room, user_id, runtime.clock())
            runtime._log_ws_event("match_started", roomId=room.id, players=len(room.players))
            await open_round(runtime, room, messages)
        return

    if message_type == "submit_answer":
        request = SubmitAnswerMessage.model_validate(_payload(data))
        room = _current_room(runtime, user_id)
        async with room.lock:
            messages = submit_answer(
                room,
                user_id,
                request.answer,
                request.timeSpent,
                runtime.clock(),
            )
            await runtime._dispatch(room, messages)
            handle_all_answered(runtime, room)
        return

    if message_type == "leave_room":
        await runtime.leave_current_room(user_id, notify=True)
        return

    if message_type == "chat_message":
        request = ChatMessageRequest.model_validate(_payload(data))
        room = _current_room(runtime, user_id)
        async with room.lock:
            await runtime._dispatch(room, chat(room, user_id, request.message, runtime.clock()))
        return

    raise PreconditionError(f"Unknown message type: {message_type}", code="UNKNOWN_MESSAGE")
