from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable

from fastapi import WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from .errors import AuthenticationError, NotFoundError, QuizRoomError
from .gateway import authenticate_connection
from .registry import RoomRegistry
from .room_constants import TIMER_KEYS
from .room_machine import leave, room_status
from .room_types import MatchReward, Outgoing, Room
from .room_utils import mask_identity, now_ms
from .runtime_message_handlers import handle_message as handle_client_message
from .runtime_question_flow import handle_all_answered
from .runtime_types import ClientConnection, RoundTiming
from .settlement import SettlementReport, settle_match
from .stores import (
    IdentityVerifier,
    PostgresProfileStore,
    PostgresQuizStore,
    ProfileStore,
    QuizStore,
    SessionIdentityVerifier,
)

logger = logging.getLogger(__name__)

TimerCallback = Callable[[Room], Awaitable[None]]


class QuizRuntime:
    def __init__(
        self,
        registry: RoomRegistry | None = None,
        quizzes: QuizStore | None = None,
        identities: IdentityVerifier | None = None,
        profiles: ProfileStore | None = None,
        timing: RoundTiming | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.registry = registry or RoomRegistry()
        self.quizzes: QuizStore = quizzes or PostgresQuizStore()
        self.identities: IdentityVerifier = identities or SessionIdentityVerifier()
        self.profiles: ProfileStore = profiles or PostgresProfileStore()
        self.timing = timing or RoundTiming.from_settings()
        self.clock = clock
        self.connections: dict[str, ClientConnection] = {}
        self._settlement_tasks: set[asyncio.Task[SettlementReport]] = set()
        self._ws_stats: dict[str, int] = {
            "connectAttempts": 0,
            "connectSuccess": 0,
            "connectRejected": 0,
            "connectHandoff": 0,
            "disconnects": 0,
            "staleDisconnects": 0,
            "sendFailures": 0,
            "messageReceived": 0,
            "pingReceived": 0,
            "invalidPayloads": 0,
            "roomsCreated": 0,
            "roomsRemoved": 0,
            "hostReassigned": 0,
            "matchesFinished": 0,
            "settlementFailures": 0,
            "activeConnections": 0,
            "peakConnections": 0,
        }

    @property
    def active_rooms_count(self) -> int:
        return len(self.registry)

    def _increment_stat(self, key: str, amount: int = 1) -> None:
        self._ws_stats[key] = int(self._ws_stats.get(key, 0)) + amount

    def _on_connect(self) -> None:
        self._increment_stat("connectSuccess")
        active_connections = int(self._ws_stats.get("activeConnections", 0)) + 1
        self._ws_stats["activeConnections"] = active_connections
        if active_connections > int(self._ws_stats.get("peakConnections", 0)):
            self._ws_stats["peakConnections"] = active_connections

    def _on_disconnect(self) -> None:
        self._increment_stat("disconnects")
        active_connections = max(0, int(self._ws_stats.get("activeConnections", 0)) - 1)
        self._ws_stats["activeConnections"] = active_connections

    def _log_ws_event(self, event: str, level: int = logging.INFO, **fields: object) -> None:
        logger.log(
            level,
            "ws.%s %s",
            event,
            json.dumps(fields, ensure_ascii=False, separators=(",", ":")),
        )

    async def get_ws_stats(self) -> dict[str, Any]:
        async with self.registry.lock:
            room_summaries = [
                {
                    "roomId": room.id,
                    "players": len(room.players),
                    "status": room.status,
                    "currentQuestion": room.current_question_index,
                }
                for room in self.registry.rooms.values()
            ]

        room_summaries.sort(key=lambda item: int(item.get("players", 0)), reverse=True)

        return {
            "generatedAt": self.clock(),
            "activeRooms": len(room_summaries),
            "stats": dict(self._ws_stats),
            "rooms": room_summaries[:50],
        }

    def get_room_status(self, room_id: str) -> dict[str, Any] | None:
        room = self.registry.get_room(room_id)
        if room is None:
            return None
        return room_status(room)

    def list_waiting_rooms(self) -> list[dict[str, Any]]:
        return self.registry.list_waiting_rooms()

    async def shutdown(self) -> None:
        async with self.registry.lock:
            rooms = list(self.registry.rooms.values())
            self.registry.rooms.clear()
            self.registry.members.clear()

        for room in rooms:
            async with room.lock:
                self._clear_timers(room)

        await self.wait_for_settlements()
        self.connections.clear()
        self._ws_stats["activeConnections"] = 0

    async def wait_for_settlements(self) -> list[SettlementReport]:
        tasks = list(self._settlement_tasks)
        if not tasks:
            return []
        return list(await asyncio.gather(*tasks))

    async def handle_websocket(self, websocket: WebSocket) -> None:
        await websocket.accept()
        self._increment_stat("connectAttempts")

        try:
            profile = await authenticate_connection(
                websocket,
                self.identities,
                self.profiles,
                timeout=self.timing.auth_timeout,
            )
        except AuthenticationError as exc:
            self._increment_stat("connectRejected")
            if exc.code != "AUTH_DISCONNECTED":
                await self._send_safe(websocket, {"type": "error", **exc.to_payload()})
                await self._close_safe(websocket, code=1008)
            self._log_ws_event("connect_rejected", level=logging.WARNING, code=exc.code)
            return

        user_id = profile.id
        connection = ClientConnection(
            user_id=user_id,
            profile=profile,
            websocket=websocket,
            connected_at=self.clock(),
        )
        previous = self.connections.get(user_id)
        self.connections[user_id] = connection
        self._on_connect()
        if previous is not None:
            # Newest socket wins; the old one is closed and its cleanup becomes a no-op.
            self._increment_stat("connectHandoff")
            self._on_disconnect()
            await self._send_safe(
                previous.websocket,
                {
                    "type": "error",
                    "message": "Session opened from another connection",
                    "code": "SESSION_REPLACED",
                },
                user_id=user_id,
            )
            await self._close_safe(previous.websocket, code=1008)

        await self._send_safe(
            websocket,
            {"type": "authenticated", "profile": profile.to_payload()},
            user_id=user_id,
        )
        self._log_ws_event(
            "connect_success",
            identity=mask_identity(user_id),
            handoff=previous is not None,
        )

        disconnect_code: int | None = None
        disconnect_reason = "unknown"

        try:
            while True:
                raw = await websocket.receive_text()
                try:
                    data = json.loads(raw)
                except json.JSONDecodeError:
                    data = None
                if not isinstance(data, dict):
                    self._increment_stat("invalidPayloads")
                    await self._send_error(
                        connection,
                        {"message": "Message must be a JSON object", "code": "INVALID_PAYLOAD"},
                    )
                    continue
                self._increment_stat("messageReceived")
                await self._handle_message(connection, data)
        except WebSocketDisconnect as exc:
            disconnect_code = exc.code
            disconnect_reason = "websocket_disconnect"
        except Exception:
            disconnect_reason = "server_error"
            logger.exception("Unexpected websocket error for user %s", mask_identity(user_id))
        finally:
            await self._cleanup_connection(
                connection,
                reason=disconnect_reason,
                close_code=disconnect_code,
            )

    async def _handle_message(self, connection: ClientConnection, data: dict[str, Any]) -> None:
        try:
            await handle_client_message(self, connection, data)
        except ValidationError as exc:
            self._increment_stat("invalidPayloads")
            first_error = exc.errors()[0] if exc.errors() else {}
            location = ".".join(str(part) for part in first_error.get("loc", ()))
            message = f"Invalid {data.get('type')} payload"
            if location:
                message = f"{message}: {location}"
            await self._send_error(connection, {"message": message, "code": "INVALID_PAYLOAD"})
        except QuizRoomError as exc:
            await self._send_error(connection, exc.to_payload())
        except Exception:
            logger.exception(
                "Message handler failed type=%s user=%s",
                data.get("type"),
                mask_identity(connection.user_id),
            )
            await self._send_error(
                connection,
                {"message": "Internal server error", "code": "INTERNAL_ERROR"},
            )

    async def _cleanup_connection(
        self,
        connection: ClientConnection,
        reason: str = "unknown",
        close_code: int | None = None,
    ) -> None:
        user_id = connection.user_id
        if self.connections.get(user_id) is not connection:
            self._increment_stat("staleDisconnects")
            self._log_ws_event(
                "disconnect_stale_ignored",
                identity=mask_identity(user_id),
                reason=reason,
                closeCode=close_code,
            )
            return

        self.connections.pop(user_id, None)
        self._on_disconnect()
        room_id = await self.leave_current_room(user_id, notify=False)
        self._log_ws_event(
            "disconnect",
            identity=mask_identity(user_id),
            roomId=room_id or "-",
            reason=reason,
            closeCode=close_code,
        )

    async def leave_current_room(self, user_id: str, *, notify: bool) -> str | None:
        room = self.registry.room_for_member(user_id)
        if room is None:
            if notify:
                raise NotFoundError("You are not in a room", code="NOT_IN_ROOM")
            return None

        async with room.lock:
            result = leave(room, user_id)
            self.registry.unbind_member(user_id, room.id)
            if notify:
                await self._send_to_user(user_id, {"type": "room_left", "roomId": room.id})

            if result.room_empty:
                self._clear_timers(room)
                await self.registry.remove_room(room.id)
                self._increment_stat("roomsRemoved")
                self._log_ws_event("room_empty", roomId=room.id)
                return room.id

            await self._dispatch(room, result.messages)
            if result.new_host_id is not None:
                self._increment_stat("hostReassigned")
                self._log_ws_event(
                    "host_reassigned",
                    roomId=room.id,
                    identity=mask_identity(result.new_host_id),
                )
            # The leaver may have been the last one the round was waiting for.
            handle_all_answered(self, room)
        return room.id

    async def _send_safe(
        self,
        websocket: WebSocket,
        data: dict[str, Any],
        room_id: str | None = None,
        user_id: str | None = None,
    ) -> None:
        try:
            await websocket.send_json(data)
        except Exception as exc:
            # Connection may already be closed.
            self._increment_stat("sendFailures")
            logger.debug(
                "[SEND_FAIL] room=%s user=%s reason=%s",
                room_id or "-",
                mask_identity(user_id),
                repr(exc),
            )

    async def _close_safe(self, websocket: WebSocket, code: int) -> None:
        try:
            await websocket.close(code=code)
        except Exception as exc:
            logger.debug("[CLOSE_FAIL] reason=%s", repr(exc))

    async def _send_error(self, connection: ClientConnection, payload: dict[str, str]) -> None:
        await self._send_safe(
            connection.websocket,
            {"type": "error", **payload},
            user_id=connection.user_id,
        )

    async def _send_to_user(self, user_id: str, data: dict[str, Any], room_id: str | None = None) -> None:
        connection = self.connections.get(user_id)
        if connection is None:
            return
        await self._send_safe(connection.websocket, data, room_id=room_id, user_id=user_id)

    async def _dispatch(self, room: Room, messages: list[Outgoing]) -> None:
        for message in messages:
            frame = {"type": message.event, **message.payload}
            if message.to is not None:
                await self._send_to_user(message.to, frame, room_id=room.id)
                continue
            for player_id in list(room.players):
                await self._send_to_user(player_id, frame, room_id=room.id)

    def _start_settlement(self, room_id: str, rewards: list[MatchReward]) -> None:
        self._increment_stat("matchesFinished")
        task = asyncio.create_task(self._settle(room_id, rewards), name=f"{room_id}:settlement")
        self._settlement_tasks.add(task)
        task.add_done_callback(self._settlement_tasks.discard)

    async def _settle(self, room_id: str, rewards: list[MatchReward]) -> SettlementReport:
        report = await settle_match(self.profiles, room_id, rewards)
        if report.failed:
            self._increment_stat("settlementFailures", len(report.failed))
        return report

    def _cancel_timer(self, room: Room, key: str) -> None:
        task = room.timers.get(key)
        # A timer callback may cancel its own key; it must not interrupt itself.
        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()
        room.timers[key] = None

    def _clear_timers(self, room: Room) -> None:
        for key in TIMER_KEYS:
            self._cancel_timer(room, key)

    def _schedule_timer(
        self,
        room: Room,
        key: str,
        delay_s: float,
        callback: TimerCallback,
    ) -> None:
        self._cancel_timer(room, key)
        delay = max(0.0, float(delay_s or 0))

        async def runner() -> None:
            try:
                await asyncio.sleep(delay)
            except asyncio.CancelledError:
                return
            async with room.lock:
                try:
                    await callback(room)
                except Exception:
                    logger.exception("Timer %s failed for room %s", key, room.id)

        room.timers[key] = asyncio.create_task(runner(), name=f"{room.id}:{key}")


runtime = QuizRuntime()
