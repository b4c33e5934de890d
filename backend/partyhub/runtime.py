from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Callable

from fastapi import WebSocket, WebSocketDisconnect

from .errors import InternalFailure, PartyError
from .runtime_connections import ConnectionDirectory
from .runtime_constants import RECONNECT_GRACE_MS, ROOM_IDLE_EXPIRY_MS, SWEEP_INTERVAL_MS
from .runtime_message_handlers import handle_message as handle_room_message
from .runtime_reconnect import handle_disconnect, teardown_room
from .runtime_rooms import RoomRegistry
from .runtime_sessions import SessionRegistry
from .runtime_types import ConnectionEntry, Participant, Room
from .runtime_utils import now_ms

logger = logging.getLogger(__name__)


class PartyRuntime:
    def __init__(self, *, grace_ms: int = RECONNECT_GRACE_MS) -> None:
        self.rooms = RoomRegistry()
        self.sessions = SessionRegistry(grace_ms)
        self.connections = ConnectionDirectory()
        self.rooms_lock = asyncio.Lock()
        self._sweeper: asyncio.Task[None] | None = None
        self._ws_stats: dict[str, int] = {
            "connectAttempts": 0,
            "connectSuccess": 0,
            "disconnects": 0,
            "staleDisconnects": 0,
            "sendFailures": 0,
            "messageReceived": 0,
            "messageRejected": 0,
            "messageFailed": 0,
            "invalidJson": 0,
            "pingReceived": 0,
            "roomsCreated": 0,
            "roomsJoined": 0,
            "roomsClosed": 0,
            "roomsExpired": 0,
            "reconnectSuccess": 0,
            "reconnectFailed": 0,
            "connectHandoff": 0,
            "departures": 0,
            "hostReassigned": 0,
            "gamesStarted": 0,
            "gamesFinished": 0,
            "gameStartFailures": 0,
            "activeConnections": 0,
            "peakConnections": 0,
        }

    @property
    def active_rooms_count(self) -> int:
        return len(self.rooms)

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

    def _mark_state_changed(self, room: Room) -> None:
        room.state_version = max(1, int(room.state_version or 1) + 1)
        room.last_activity_ms = now_ms()

    def _log_ws_event(self, event: str, level: int = logging.INFO, **fields: object) -> None:
        logger.log(
            level,
            "ws.%s %s",
            event,
            json.dumps(fields, ensure_ascii=False, separators=(",", ":"), default=str),
        )

    async def get_ws_stats(self) -> dict[str, Any]:
        async with self.rooms_lock:
            room_summaries = [
                {
                    "roomCode": room.code,
                    "participants": len(room.participants),
                    "connected": len(room.connected_participants()),
                    "phase": room.phase,
                    "gameType": room.game.game_type if room.game is not None else None,
                }
                for room in self.rooms.rooms()
            ]

        room_summaries.sort(key=lambda item: int(item.get("participants", 0)), reverse=True)

        return {
            "generatedAt": now_ms(),
            "activeRooms": len(room_summaries),
            "sessions": len(self.sessions),
            "boundConnections": self.connections.bound_count(),
            "stats": dict(self._ws_stats),
            "rooms": room_summaries[:50],
        }

    # Outbound

    async def _send_safe(
        self,
        websocket: WebSocket,
        data: dict[str, Any],
        room_code: str | None = None,
        participant_id: str | None = None,
    ) -> None:
        try:
            await websocket.send_json(data)
        except Exception as exc:
            # Connection may already be closed.
            self._increment_stat("sendFailures")
            logger.debug(
                "[SEND_FAIL] room=%s participant=%s reason=%s ws_client_state=%s",
                room_code or "-",
                participant_id or "-",
                repr(exc),
                getattr(websocket, "client_state", None),
            )

    async def send_to_connection(self, connection_id: str | None, data: dict[str, Any]) -> None:
        entry = self.connections.get(connection_id)
        if entry is None:
            return
        await self._send_safe(
            entry.websocket,
            data,
            room_code=entry.room_code,
            participant_id=entry.participant_id,
        )

    async def send_to_participant(self, room: Room, participant_id: str, data: dict[str, Any]) -> None:
        participant = room.participant(participant_id)
        if participant is None or not participant.is_connected:
            return
        websocket = self.connections.websocket_for(participant.connection_id)
        if websocket is None:
            return
        await self._send_safe(websocket, data, room_code=room.code, participant_id=participant_id)

    async def broadcast(self, room: Room, data: dict[str, Any]) -> None:
        for participant in list(room.participants):
            await self.send_to_participant(room, participant.participant_id, data)

    async def broadcast_each(
        self,
        room: Room,
        build: Callable[[Participant], dict[str, Any]],
    ) -> None:
        for participant in list(room.participants):
            if participant.is_connected:
                await self.send_to_participant(room, participant.participant_id, build(participant))

    async def close_connection(self, connection_id: str, code: int = 1000) -> None:
        websocket = self.connections.websocket_for(connection_id)
        if websocket is None:
            return
        try:
            await websocket.close(code=code)
        except Exception as exc:
            logger.debug("[CLOSE_FAIL] connection=%s reason=%r", connection_id, exc)

    # Inbound

    async def connect(self, websocket: WebSocket) -> ConnectionEntry:
        self._increment_stat("connectAttempts")
        entry = self.connections.open(websocket)
        self._on_connect()
        await self._send_safe(
            websocket,
            {
                "type": "connected",
                "connectionId": entry.connection_id,
                "serverTime": now_ms(),
                "reconnectGraceMs": self.sessions.grace_ms,
            },
        )
        self._log_ws_event("connect", connectionId=entry.connection_id)
        return entry

    async def dispatch(self, entry: ConnectionEntry, data: dict[str, Any]) -> None:
        self._increment_stat("messageReceived")
        try:
            await handle_room_message(self, entry, data)
        except PartyError as exc:
            self._increment_stat("messageRejected")
            self._log_ws_event(
                "message_rejected",
                level=logging.WARNING,
                connectionId=entry.connection_id,
                roomCode=entry.room_code,
                type=data.get("type"),
                code=exc.code,
                reason=exc.message,
            )
            await self.send_to_connection(entry.connection_id, exc.to_payload())
        except Exception:
            self._increment_stat("messageFailed")
            logger.exception(
                "Unhandled error for message %s on connection %s",
                data.get("type"),
                entry.connection_id,
            )
            await self.send_to_connection(entry.connection_id, InternalFailure().to_payload())

    async def disconnect(self, connection_id: str, reason: str = "unknown") -> None:
        entry = self.connections.close(connection_id)
        if entry is None:
            return
        self._on_disconnect()
        self._log_ws_event("disconnect", connectionId=connection_id, roomCode=entry.room_code, reason=reason)
        if not entry.room_code or not entry.participant_id:
            return
        room = self.rooms.get(entry.room_code)
        if room is None:
            return
        async with room.lock:
            await handle_disconnect(self, room, connection_id, entry.participant_id, reason=reason)

    async def handle_websocket(self, websocket: WebSocket) -> None:
        await websocket.accept()
        entry = await self.connect(websocket)
        disconnect_reason = "unknown"

        try:
            while True:
                raw = await websocket.receive_text()
                try:
                    data = json.loads(raw)
                except json.JSONDecodeError:
                    self._increment_stat("invalidJson")
                    continue
                if not isinstance(data, dict):
                    continue
                await self.dispatch(entry, data)
        except WebSocketDisconnect as exc:
            disconnect_reason = f"websocket_disconnect:{exc.code}"
        except Exception:
            disconnect_reason = "server_error"
            logger.exception("Unexpected websocket error for connection %s", entry.connection_id)
        finally:
            await self.disconnect(entry.connection_id, reason=disconnect_reason)

    # Background maintenance

    async def sweep(self, now: int | None = None) -> None:
        current = now_ms() if now is None else now
        self.sessions.purge_expired(current)
        for room in self.rooms.idle_rooms(ROOM_IDLE_EXPIRY_MS, current):
            self._increment_stat("roomsExpired")
            async with room.lock:
                await teardown_room(self, room, reason="idle")

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(SWEEP_INTERVAL_MS / 1000)
            try:
                await self.sweep()
            except Exception:
                logger.exception("Room sweep failed")

    def start(self) -> None:
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.create_task(self._sweep_loop(), name="partyhub-sweeper")

    async def shutdown(self) -> None:
        if self._sweeper is not None:
            self._sweeper.cancel()
            try:
                await self._sweeper
            except asyncio.CancelledError:
                pass
            self._sweeper = None

        async with self.rooms_lock:
            rooms = self.rooms.rooms()

        for room in rooms:
            async with room.lock:
                await teardown_room(self, room, reason="shutdown")

        self._ws_stats["activeConnections"] = 0


runtime = PartyRuntime()
