from __future__ import annotations

from typing import TYPE_CHECKING

from .room_machine import (
    advance,
    all_answered,
    close_round,
    finish,
    has_next_question,
)

if TYPE_CHECKING:
    from .room_types import Outgoing, Room
    from .runtime import QuizRuntime


# Every function here runs with room.lock held, either from a message handler
# or from a timer callback.


async def open_round(runtime: "QuizRuntime", room: "Room", messages: list["Outgoing"]) -> None:
    if not messages:
        return
    await runtime._dispatch(room, messages)
    question_index = room.current_question_index

    async def on_timeout(inner_room: "Room") -> None:
        await close_question(runtime, inner_room, question_index)

    runtime._schedule_timer(room, "question", room.settings.time_per_question, on_timeout)


def handle_all_answered(runtime: "QuizRuntime", room: "Room") -> None:
    if room.status != "in_progress" or room.round_state != "answering":
        return
    if not all_answered(room):
        return
    question_index = room.current_question_index

    async def on_grace_elapsed(inner_room: "Room") -> None:
        await close_question(runtime, inner_room, question_index)

    # Replaces the full-length question timer with the short grace delay.
    runtime._schedule_timer(room, "question", runtime.timing.all_answered_grace, on_grace_elapsed)


async def close_question(runtime: "QuizRuntime", room: "Room", question_index: int) -> None:
    messages = close_round(room, question_index)
    if not messages:
        return
    runtime._cancel_timer(room, "question")
    await runtime._dispatch(room, messages)

    if has_next_question(room):

        async def on_advance(inner_room: "Room") -> None:
            await next_question(runtime, inner_room)

        runtime._schedule_timer(room, "advance", runtime.timing.results_delay, on_advance)
        return

    async def on_finish(inner_room: "Room") -> None:
        await finish_match(runtime, inner_room)

    runtime._schedule_timer(room, "finish", runtime.timing.finish_delay, on_finish)


async def next_question(runtime: "QuizRuntime", room: "Room") -> None:
    await open_round(runtime, room, advance(room, runtime.clock()))


async def finish_match(runtime: "QuizRuntime", room: "Room") -> None:
    messages, rewards = finish(room, runtime.clock())
    if not messages:
        return
    await runtime._dispatch(room, messages)
    runtime._log_ws_event(
        "match_finished",
        roomId=room.id,
        players=len(room.players),
        questions=len(room.questions),
    )
    if rewards:
        runtime._start_settlement(room.id, rewards)

    async def on_cleanup(inner_room: "Room") -> None:
        await remove_finished_room(runtime, inner_room)

    runtime._schedule_timer(room, "cleanup", runtime.timing.cleanup_delay, on_cleanup)


async def remove_finished_room(runtime: "QuizRuntime", room: "Room") -> None:
    if room.status != "finished":
        return
    runtime._clear_timers(room)
    if runtime.registry.get_room(room.id) is room:
        await runtime.registry.remove_room(room.id)
        runtime._increment_stat("roomsRemoved")
        runtime._log_ws_event("room_cleanup", roomId=room.id)
