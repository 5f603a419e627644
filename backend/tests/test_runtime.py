from __future__ import annotations

import asyncio

from quizroom.room_constants import CHAMPION_BADGE


async def _open_room(connect, host_id: str, *guest_ids: str, quiz_id: str = "quiz-1"):
    host = await connect(host_id)
    created = await host.request(
        {"type": "create_room", "quizId": quiz_id, "settings": {"maxPlayers": 4}},
        "room_created",
    )
    room_id = created["room"]["id"]
    guests = []
    for guest_id in guest_ids:
        guest = await connect(guest_id)
        await guest.request({"type": "join_room", "roomId": room_id}, "room_joined")
        guests.append(guest)
    return room_id, host, guests


async def _expect_question(client, index: int) -> dict:
    frame = await client.expect("new_question")
    assert frame["questionIndex"] == index
    return frame


async def test_create_and_join_broadcasts_membership(connect, runtime):
    host = await connect("1")
    created = await host.request(
        {"type": "create_room", "quizId": "quiz-1", "settings": {"maxPlayers": 3, "timePerQuestion": 20}},
        "room_created",
    )
    room = created["room"]
    assert room["hostId"] == "1"
    assert room["settings"] == {"maxPlayers": 3, "timePerQuestion": 20, "questionCount": 3}
    assert room["quiz"] == {
        "id": "quiz-1",
        "title": "General Knowledge",
        "category": "trivia",
        "questionCount": 3,
    }

    guest = await connect("2")
    joined = await guest.request({"type": "join_room", "roomId": room["id"].lower()}, "room_joined")
    assert [player["id"] for player in joined["room"]["players"]] == ["1", "2"]

    notice = await host.expect("player_joined")
    assert notice["player"]["name"] == "bob"
    assert notice["playerCount"] == 2
    assert runtime.list_waiting_rooms()[0]["playerCount"] == 2


async def test_client_errors_go_only_to_sender(connect):
    room_id, host, (guest,) = await _open_room(connect, "1", "2")

    error = await guest.request({"type": "start_quiz"}, "error")
    assert error["code"] == "NOT_HOST"
    assert host.ws.events("error") == []


async def test_unknown_quiz_and_room(connect):
    client = await connect("1")
    error = await client.request({"type": "create_room", "quizId": "missing"}, "error")
    assert error == {"type": "error", "message": "Quiz not found", "code": "QUIZ_NOT_FOUND"}

    error = await client.request({"type": "join_room", "roomId": "NOPE22"}, "error")
    assert error["code"] == "ROOM_NOT_FOUND"
    assert error["message"] == "Room not found"


async def test_invalid_payloads_are_reported(connect):
    client = await connect("1")

    client.ws.push_text("not json")
    assert (await client.expect("error"))["code"] == "INVALID_PAYLOAD"

    client.ws.push_text("[1, 2]")
    assert (await client.expect("error"))["code"] == "INVALID_PAYLOAD"

    error = await client.request({"type": "join_room"}, "error")
    assert error["code"] == "INVALID_PAYLOAD"
    assert "roomId" in error["message"]

    error = await client.request({"type": "dance"}, "error")
    assert error["code"] == "UNKNOWN_MESSAGE"


async def test_ping_pong(connect):
    client = await connect("1")
    pong = await client.request({"type": "ping"}, "pong")
    assert isinstance(pong["serverTime"], int)


async def test_cannot_create_second_room_while_waiting(connect):
    room_id, host, _ = await _open_room(connect, "1")
    error = await host.request({"type": "create_room", "quizId": "quiz-1"}, "error")
    assert error["code"] == "ALREADY_IN_ROOM"


async def test_all_answered_closes_round_before_timer(connect, runtime, profile_store):
    room_id, host, (guest,) = await _open_room(connect, "1", "2", quiz_id="quiz-single")

    host.send({"type": "start_quiz"})
    first = await _expect_question(host, 0)
    await _expect_question(guest, 0)
    assert first["timeLimit"] == 30

    host.send({"type": "submit_answer", "answer": "A", "timeSpent": 5})
    guest.send({"type": "submit_answer", "answer": 3, "timeSpent": 30})

    # The 30 s question timer would blow the 2 s expectation window.
    results = await host.expect("question_results")
    by_player = {row["playerId"]: row for row in results["results"]}
    assert by_player["1"] == {
        "playerId": "1",
        "playerName": "alice",
        "answer": 0,
        "isCorrect": True,
        "points": 917,
        "totalScore": 917,
    }
    assert by_player["2"]["isCorrect"] is False
    assert by_player["2"]["points"] == 0

    finished = await host.expect("quiz_finished")
    assert [row["playerId"] for row in finished["leaderboard"]] == ["1", "2"]
    assert finished["totalQuestions"] == 1
    await guest.expect("quiz_finished")

    await runtime.wait_for_settlements()
    assert len(host.ws.events("question_results")) == 1
    assert len(guest.ws.events("question_results")) == 1
    assert profile_store.games == {"1": 1, "2": 1}
    assert profile_store.wins == {"1": 1}
    assert CHAMPION_BADGE in profile_store.profiles["1"].badges
    assert [reward.xp_awarded for reward in profile_store.rewards] == [200, 170]


async def test_timeout_closes_round_with_present_answers(connect, runtime):
    room_id, host, (guest,) = await _open_room(connect, "1", "2", quiz_id="quiz-single")
    runtime.registry.get_room(room_id).settings.time_per_question = 1

    host.send({"type": "start_quiz"})
    await _expect_question(guest, 0)
    host.send({"type": "submit_answer", "answer": 0, "timeSpent": 0.5})
    await guest.expect("answer_submitted")

    results = await guest.expect("question_results", timeout=3.0)
    by_player = {row["playerId"]: row for row in results["results"]}
    assert by_player["1"]["isCorrect"] is True
    assert by_player["2"] == {
        "playerId": "2",
        "playerName": "bob",
        "answer": None,
        "isCorrect": False,
        "points": 0,
        "totalScore": 0,
    }
    await guest.expect("quiz_finished")


async def test_three_questions_with_one_unanswered(connect, runtime):
    room_id, host, (guest,) = await _open_room(connect, "1", "2")
    room = runtime.registry.get_room(room_id)
    room.settings.time_per_question = 1

    host.send({"type": "start_quiz"})
    for index in range(3):
        await _expect_question(host, index)
        await _expect_question(guest, index)
        host.send({"type": "submit_answer", "answer": index, "timeSpent": 0})
        if index != 1:
            guest.send({"type": "submit_answer", "answer": (index + 1) % 4, "timeSpent": 0})
        results = await host.expect("question_results", timeout=3.0)
        assert results["questionIndex"] == index
        if index == 1:
            bob_row = next(row for row in results["results"] if row["playerId"] == "2")
            assert bob_row["answer"] is None
            assert bob_row["points"] == 0

    finished = await host.expect("quiz_finished")
    assert finished["leaderboard"][0] == {
        "playerId": "1",
        "playerName": "alice",
        "score": 3000,
        "avatar": "A",
        "level": 1,
    }
    assert room.status == "finished"
    assert [frame["questionIndex"] for frame in host.ws.events("question_results")] == [0, 1, 2]
    assert len(host.ws.events("new_question")) == 3


async def test_duplicate_answer_rejected(connect, runtime):
    room_id, host, (guest, _third) = await _open_room(connect, "1", "2", "3")
    host.send({"type": "start_quiz"})
    await _expect_question(guest, 0)

    guest.send({"type": "submit_answer", "answer": 0, "timeSpent": 4})
    await guest.expect("answer_submitted")
    error = await guest.request({"type": "submit_answer", "answer": 1, "timeSpent": 1}, "error")

    assert error["code"] == "DUPLICATE_ANSWER"
    answer = runtime.registry.get_room(room_id).answers_by_question[0]["2"]
    assert answer.value == 0
    assert answer.time_spent == 4


async def test_host_leaving_waiting_room_reassigns_host(connect, runtime):
    room_id, host, (bob, carol) = await _open_room(connect, "1", "2", "3")

    left = await host.request({"type": "leave_room"}, "room_left")
    assert left["roomId"] == room_id

    changed = await carol.expect("host_changed")
    assert changed["newHostId"] == "2"
    room = runtime.registry.get_room(room_id)
    assert room.status == "waiting"
    assert list(room.players) == ["2", "3"]
    assert runtime.registry.room_for_member("1") is None

    await bob.request({"type": "start_quiz"}, "new_question")


async def test_leaver_completes_round(connect):
    room_id, host, (bob, carol) = await _open_room(connect, "1", "2", "3")
    host.send({"type": "start_quiz"})
    await _expect_question(carol, 0)

    host.send({"type": "submit_answer", "answer": 0, "timeSpent": 1})
    carol.send({"type": "submit_answer", "answer": 0, "timeSpent": 1})
    await carol.expect("answer_submitted")
    await carol.expect("answer_submitted")
    await bob.disconnect()

    results = await carol.expect("question_results")
    assert {row["playerId"] for row in results["results"]} == {"1", "3"}


async def test_last_player_leaving_removes_room_and_timers(connect, runtime):
    room_id, host, (guest,) = await _open_room(connect, "1", "2")
    host.send({"type": "start_quiz"})
    await _expect_question(host, 0)
    room = runtime.registry.get_room(room_id)
    question_timer = room.timers["question"]

    await guest.disconnect()
    await host.request({"type": "leave_room"}, "room_left")
    await asyncio.sleep(0.05)

    assert runtime.registry.get_room(room_id) is None
    assert runtime.active_rooms_count == 0
    assert question_timer.done()
    assert all(task is None for task in room.timers.values())
    assert host.ws.events("question_results") == []


async def test_finished_room_is_cleaned_up(connect, runtime):
    room_id, host, (guest,) = await _open_room(connect, "1", "2", quiz_id="quiz-single")
    host.send({"type": "start_quiz"})
    await _expect_question(guest, 0)
    host.send({"type": "submit_answer", "answer": 0, "timeSpent": 1})
    guest.send({"type": "submit_answer", "answer": 0, "timeSpent": 1})
    await host.expect("quiz_finished")

    await asyncio.sleep(0.2)
    assert runtime.registry.get_room(room_id) is None
    assert runtime.registry.room_for_member("1") is None


async def test_player_in_finished_room_can_open_new_room(connect, runtime):
    room_id, host, (guest,) = await _open_room(connect, "1", "2", quiz_id="quiz-single")
    runtime.timing = type(runtime.timing)(
        auth_timeout=0.2,
        all_answered_grace=0.01,
        results_delay=0.01,
        finish_delay=0.01,
        cleanup_delay=30,
    )
    host.send({"type": "start_quiz"})
    await _expect_question(guest, 0)
    host.send({"type": "submit_answer", "answer": 0, "timeSpent": 1})
    guest.send({"type": "submit_answer", "answer": 1, "timeSpent": 1})
    await host.expect("quiz_finished")

    created = await host.request({"type": "create_room", "quizId": "quiz-1"}, "room_created")
    assert created["room"]["id"] != room_id
    assert runtime.registry.room_for_member("1").id == created["room"]["id"]


async def test_chat_is_broadcast(connect):
    room_id, host, (guest,) = await _open_room(connect, "1", "2")
    guest.send({"type": "chat_message", "message": "  good luck  "})
    frame = await host.expect("chat_message")
    assert frame["playerId"] == "2"
    assert frame["message"] == "good luck"


async def test_new_connection_replaces_old_one(connect, runtime):
    first = await connect("1")
    second = await connect("1")

    error = await first.expect("error")
    assert error["code"] == "SESSION_REPLACED"
    assert first.ws.closed_code == 1008

    await first.disconnect()
    assert runtime.connections["1"].websocket is second.ws
    pong = await second.request({"type": "ping"}, "pong")
    assert pong["type"] == "pong"

    stats = (await runtime.get_ws_stats())["stats"]
    assert stats["connectHandoff"] == 1
    assert stats["staleDisconnects"] == 1
    assert stats["activeConnections"] == 1


async def test_ws_stats_lists_rooms(connect, runtime):
    room_id, host, _ = await _open_room(connect, "1", "2")
    stats = await runtime.get_ws_stats()
    assert stats["activeRooms"] == 1
    assert stats["rooms"] == [
        {"roomId": room_id, "players": 2, "status": "waiting", "currentQuestion": 0}
    ]
    assert stats["stats"]["roomsCreated"] == 1
