"""
Inbound message routing.

Each message type maps to exactly one handler. Connection-level messages
work on an unbound socket; room-level messages need the socket to represent
a participant; game actions go to the room's active mini-game and are only
accepted while the room is in-game.
"""
from __future__ import annotations

from typing import TYPE_CHECKING, Any, Awaitable, Callable

from pydantic import ValidationError

from .errors import InvalidInput, InvalidState, NotFound
from .games import GAME_CLASSES
from .runtime_lobby import (
    cast_game_vote,
    create_room,
    end_voting_early,
    join_room,
    room_snapshot,
    start_game_directly,
    start_voting,
)
from .runtime_reconnect import leave_room, reconnect, reconnect_failed
from .runtime_utils import normalize_persistent_id, now_ms, sanitize_player_name
from .schemas.messages import InboundMessage, parse_message

if TYPE_CHECKING:
    from .runtime import PartyRuntime
    from .runtime_types import ConnectionEntry, Participant, Room

ConnectionHandler = Callable[["PartyRuntime", "ConnectionEntry", Any], Awaitable[None]]
RoomHandler = Callable[["PartyRuntime", "Room", "Participant", "ConnectionEntry", Any], Awaitable[None]]

GAME_ACTIONS: frozenset[str] = frozenset(
    action for game_class in GAME_CLASSES.values() for action in game_class.actions
)


def _require_unbound(entry: "ConnectionEntry") -> None:
    if entry.participant_id:
        raise InvalidState("Leave your current room first")


async def _handle_create_room(runtime: "PartyRuntime", entry: "ConnectionEntry", message: Any) -> None:
    _require_unbound(entry)
    sanitize_player_name(message.displayName)
    async with runtime.rooms_lock:
        room = runtime.rooms.create()
    async with room.lock:
        await create_room(runtime, room, entry, message.displayName, message.persistentId)


async def _handle_join_room(runtime: "PartyRuntime", entry: "ConnectionEntry", message: Any) -> None:
    _require_unbound(entry)
    room = runtime.rooms.require(message.roomCode)
    async with room.lock:
        await join_room(runtime, room, entry, message.displayName, message.persistentId)


async def _handle_reconnect(runtime: "PartyRuntime", entry: "ConnectionEntry", message: Any) -> None:
    _require_unbound(entry)
    persistent_id = normalize_persistent_id(message.persistentId)
    session = runtime.sessions.get(persistent_id)
    if session is None:
        reason = "session_expired" if persistent_id in runtime.sessions else "unknown_session"
        await reconnect_failed(runtime, entry, persistent_id, reason)
        return
    room = runtime.rooms.get(session.room_code)
    if room is None:
        await reconnect_failed(runtime, entry, persistent_id, "room_closed")
        return
    async with room.lock:
        participant = await reconnect(runtime, room, entry, session.persistent_id)
    if participant is None:
        await reconnect_failed(runtime, entry, persistent_id, "slot_unavailable")


CONNECTION_HANDLERS: dict[str, ConnectionHandler] = {
    "create-room": _handle_create_room,
    "join-room": _handle_join_room,
    "request-reconnect": _handle_reconnect,
}


async def _handle_start_voting(
    runtime: "PartyRuntime",
    room: "Room",
    participant: "Participant",
    entry: "ConnectionEntry",
    message: Any,
) -> None:
    await start_voting(runtime, room, participant)


async def _handle_vote_for_game(
    runtime: "PartyRuntime",
    room: "Room",
    participant: "Participant",
    entry: "ConnectionEntry",
    message: Any,
) -> None:
    await cast_game_vote(runtime, room, participant, message.gameChoice)


async def _handle_end_voting_early(
    runtime: "PartyRuntime",
    room: "Room",
    participant: "Participant",
    entry: "ConnectionEntry",
    message: Any,
) -> None:
    await end_voting_early(runtime, room, participant)


async def _handle_start_game_direct(
    runtime: "PartyRuntime",
    room: "Room",
    participant: "Participant",
    entry: "ConnectionEntry",
    message: Any,
) -> None:
    await start_game_directly(runtime, room, participant, message.gameChoice)


async def _handle_leave_room(
    runtime: "PartyRuntime",
    room: "Room",
    participant: "Participant",
    entry: "ConnectionEntry",
    message: Any,
) -> None:
    await leave_room(runtime, room, participant, entry.connection_id)


async def _handle_request_state(
    runtime: "PartyRuntime",
    room: "Room",
    participant: "Participant",
    entry: "ConnectionEntry",
    message: Any,
) -> None:
    await runtime.send_to_connection(
        entry.connection_id,
        {
            "type": "room-state",
            "roomCode": room.code,
            "participantId": participant.participant_id,
            "room": room_snapshot(room, participant.participant_id),
        },
    )
    if room.game is not None:
        await room.game.send_state(participant.participant_id)


ROOM_HANDLERS: dict[str, RoomHandler] = {
    "start-voting": _handle_start_voting,
    "vote-for-game": _handle_vote_for_game,
    "end-voting-early": _handle_end_voting_early,
    "start-game-direct": _handle_start_game_direct,
    "leave-room": _handle_leave_room,
    "request-state": _handle_request_state,
    "request-role": _handle_request_state,
}


async def _handle_game_action(
    runtime: "PartyRuntime",
    room: "Room",
    participant: "Participant",
    entry: "ConnectionEntry",
    message: InboundMessage,
) -> None:
    game = room.game
    if room.phase != "in-game" or game is None:
        raise InvalidState("No game is running in this room")
    if message.type not in game.actions:
        raise InvalidState(f"{message.type} is not part of the current game")
    await game.on_participant_action(participant, message.type, message)


def _parse(data: dict[str, Any]) -> InboundMessage:
    try:
        return parse_message(data)
    except ValidationError as exc:
        errors = exc.errors()
        if errors:
            first = errors[0]
            field = ".".join(str(part) for part in first.get("loc", ())) or "message"
            raise InvalidInput(f"Invalid {field}: {first.get('msg', 'bad value')}") from exc
        raise InvalidInput() from exc


async def _run_room_handler(
    runtime: "PartyRuntime",
    entry: "ConnectionEntry",
    message: InboundMessage,
    handler: RoomHandler,
) -> None:
    if not entry.room_code or not entry.participant_id:
        raise InvalidState("Join a room first")
    room = runtime.rooms.get(entry.room_code)
    if room is None:
        runtime.connections.unbind(entry.connection_id)
        raise NotFound("Room not found")
    async with room.lock:
        participant = room.participant(entry.participant_id)
        if participant is None or participant.connection_id != entry.connection_id:
            raise InvalidState("This connection no longer represents a participant")
        await handler(runtime, room, participant, entry, message)


async def handle_message(runtime: "PartyRuntime", entry: "ConnectionEntry", data: dict[str, Any]) -> None:
    message_type = str(data.get("type") or "")

    if message_type == "ping":
        runtime._increment_stat("pingReceived")
        await runtime.send_to_connection(entry.connection_id, {"type": "pong", "serverTime": now_ms()})
        return

    connection_handler = CONNECTION_HANDLERS.get(message_type)
    if connection_handler is not None:
        await connection_handler(runtime, entry, _parse(data))
        return

    room_handler = ROOM_HANDLERS.get(message_type)
    if room_handler is None and message_type in GAME_ACTIONS:
        room_handler = _handle_game_action
    if room_handler is None:
        raise InvalidInput(f"Unknown message type: {message_type or '-'}")

    await _run_room_handler(runtime, entry, _parse(data), room_handler)
