"""
Disconnect/reconnect reconciliation.

A dropped connection leaves its participant "away" for the reconnect grace
window. Reconnecting with the persistent id inside the window restores the
same participant (same id, roles and scores). When the window lapses, or the
participant leaves on purpose, they are departed: removed from the room and
from the active game.
"""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .runtime_constants import EMPTY_ROOM_GRACE_MS
from .runtime_lobby import (
    announce_host,
    available_games,
    broadcast_roster,
    broadcast_voting_state,
    cancel_voting,
    make_host,
    maybe_resolve_voting,
    participant_view,
    reset_room,
    room_snapshot,
)
from .runtime_timers import cancel_timer, schedule_timer
from .runtime_utils import mask_identity, normalize_persistent_id, now_ms

if TYPE_CHECKING:
    from .runtime import PartyRuntime
    from .runtime_types import ConnectionEntry, Participant, Room

logger = logging.getLogger(__name__)

TEARDOWN_TIMER_KEY = "roomTeardown"


def grace_timer_key(participant_id: str) -> str:
    return f"grace:{participant_id}"


def assign_new_host(
    runtime: "PartyRuntime",
    room: "Room",
    previous: "Participant | None" = None,
) -> "Participant | None":
    candidates = [p for p in room.connected_participants() if p is not previous]
    if not candidates:
        candidates = [p for p in room.participants if p is not previous]
    if not candidates:
        return None
    return make_host(runtime, room, candidates[0], previous)


async def _after_roster_shrink(runtime: "PartyRuntime", room: "Room") -> None:
    if room.phase != "voting" or room.vote is None or room.vote.resolved:
        return
    if not available_games(room):
        await cancel_voting(runtime, room, reason="insufficient_players")
        return
    if not await maybe_resolve_voting(runtime, room):
        await broadcast_voting_state(runtime, room)


async def handle_disconnect(
    runtime: "PartyRuntime",
    room: "Room",
    connection_id: str,
    participant_id: str,
    reason: str = "unknown",
) -> None:
    participant = room.participant(participant_id)
    if participant is None or participant.connection_id != connection_id:
        runtime._increment_stat("staleDisconnects")
        runtime._log_ws_event(
            "disconnect_stale_ignored",
            roomCode=room.code,
            participantId=participant_id,
            reason=reason,
        )
        return

    participant.status = "away"
    participant.connection_id = None
    participant.disconnected_at_ms = now_ms()
    runtime.sessions.mark_disconnected(participant.persistent_id, participant.disconnected_at_ms)
    logger.info(
        "[DISCONNECT] room=%s participant=%s identity=%s reason=%s",
        room.code,
        participant_id,
        mask_identity(participant.persistent_id),
        reason,
    )

    schedule_timer(
        room,
        grace_timer_key(participant_id),
        runtime.sessions.grace_ms,
        lambda r: expire_participant(runtime, r, participant_id),
    )

    new_host = None
    if participant.is_host and room.connected_participants():
        new_host = assign_new_host(runtime, room, participant)

    await runtime.broadcast(
        room,
        {
            "type": "participant-disconnected",
            "roomCode": room.code,
            "participant": participant_view(participant),
            "graceMs": runtime.sessions.grace_ms,
            "message": f"{participant.name} lost connection",
        },
    )
    if new_host is not None:
        await announce_host(runtime, room, new_host)
    await broadcast_roster(runtime, room)

    game = room.game
    if game is not None and not game.finished:
        await game.on_presence_change(participant_id)
    await _after_roster_shrink(runtime, room)

    if not room.connected_participants():
        schedule_timer(
            room,
            TEARDOWN_TIMER_KEY,
            EMPTY_ROOM_GRACE_MS,
            lambda r: teardown_if_empty(runtime, r),
        )


async def reconnect(
    runtime: "PartyRuntime",
    room: "Room",
    entry: "ConnectionEntry",
    persistent_id: str,
) -> "Participant | None":
    """Caller holds ``room.lock``; returns ``None`` when the slot is gone."""
    session = runtime.sessions.get(persistent_id)
    if session is None or session.room_code != room.code:
        return None
    participant = room.participant(session.participant_id)
    if participant is None or participant.persistent_id != persistent_id:
        return None

    previous_connection = participant.connection_id
    if previous_connection and previous_connection != entry.connection_id:
        # the same identity opened a second socket; the old one loses its binding
        runtime._increment_stat("connectHandoff")
        runtime.connections.unbind(previous_connection)
        await runtime.close_connection(previous_connection, code=4000)

    was_away = participant.status != "connected"
    participant.status = "connected"
    participant.connection_id = entry.connection_id
    participant.disconnected_at_ms = None
    runtime.sessions.mark_connected(persistent_id)
    runtime.connections.bind(entry.connection_id, room.code, participant.participant_id)
    cancel_timer(room, grace_timer_key(participant.participant_id))
    cancel_timer(room, TEARDOWN_TIMER_KEY)

    new_host = None
    current_host = room.host()
    if current_host is None or not current_host.is_connected:
        new_host = make_host(runtime, room, participant, current_host)
    runtime.sessions.sync(participant)

    runtime._increment_stat("reconnectSuccess")
    runtime._log_ws_event(
        "session_resumed",
        roomCode=room.code,
        participantId=participant.participant_id,
        identity=mask_identity(persistent_id),
        wasAway=was_away,
    )

    game = room.game
    await runtime.send_to_connection(
        entry.connection_id,
        {
            "type": "reconnect-success",
            "roomCode": room.code,
            "participantId": participant.participant_id,
            "persistentId": participant.persistent_id,
            "participant": participant_view(participant),
            "room": room_snapshot(room, participant.participant_id),
            "game": game.state_payload(participant.participant_id) if game is not None else None,
        },
    )
    await runtime.broadcast(
        room,
        {
            "type": "participant-reconnected",
            "roomCode": room.code,
            "participant": participant_view(participant),
            "message": f"{participant.name} is back",
        },
    )
    if new_host is not None:
        await announce_host(runtime, room, new_host)
    await broadcast_roster(runtime, room)

    if game is not None and not game.finished:
        await game.on_participant_reconnect(participant.participant_id)
    elif room.phase == "voting":
        await broadcast_voting_state(runtime, room)
    return participant


async def reconnect_failed(runtime: "PartyRuntime", entry: "ConnectionEntry", raw_id: str | None, reason: str) -> None:
    runtime._increment_stat("reconnectFailed")
    runtime._log_ws_event(
        "reconnect_failed",
        level=logging.WARNING,
        identity=mask_identity(normalize_persistent_id(raw_id)),
        reason=reason,
    )
    await runtime.send_to_connection(
        entry.connection_id,
        {"type": "reconnect-failed", "reason": reason},
    )


async def expire_participant(runtime: "PartyRuntime", room: "Room", participant_id: str) -> None:
    participant = room.participant(participant_id)
    if participant is None or participant.is_connected:
        return
    await depart(runtime, room, participant, reason="grace_expired")


async def depart(
    runtime: "PartyRuntime",
    room: "Room",
    participant: "Participant",
    reason: str,
) -> None:
    participant_id = participant.participant_id
    cancel_timer(room, grace_timer_key(participant_id))

    game = room.game
    if game is not None and not game.finished:
        await game.on_participant_departure(participant_id)

    was_host = participant.is_host
    participant.status = "departed"
    participant.is_host = False
    room.participants = [p for p in room.participants if p is not participant]
    runtime.sessions.remove(participant.persistent_id)
    if participant.connection_id:
        runtime.connections.unbind(participant.connection_id)
        participant.connection_id = None
    if room.vote is not None:
        room.vote.ballots.pop(participant_id, None)

    runtime._increment_stat("departures")
    runtime._log_ws_event(
        "participant_departed",
        roomCode=room.code,
        participantId=participant_id,
        reason=reason,
    )

    if not room.participants:
        await teardown_room(runtime, room, reason="empty")
        return

    new_host = assign_new_host(runtime, room, participant) if was_host else None
    await runtime.broadcast(
        room,
        {
            "type": "participant-left",
            "roomCode": room.code,
            "participant": participant_view(participant),
            "reason": reason,
            "message": f"{participant.name} left the room",
        },
    )
    if new_host is not None:
        await announce_host(runtime, room, new_host)
    await broadcast_roster(runtime, room)
    await _after_roster_shrink(runtime, room)

    if not room.connected_participants():
        schedule_timer(
            room,
            TEARDOWN_TIMER_KEY,
            EMPTY_ROOM_GRACE_MS,
            lambda r: teardown_if_empty(runtime, r),
        )


async def leave_room(runtime: "PartyRuntime", room: "Room", participant: "Participant", connection_id: str) -> None:
    await depart(runtime, room, participant, reason="left")
    await runtime.send_to_connection(connection_id, {"type": "left-room", "roomCode": room.code})


async def teardown_if_empty(runtime: "PartyRuntime", room: "Room") -> None:
    if room.connected_participants():
        return
    await teardown_room(runtime, room, reason="empty")


async def teardown_room(runtime: "PartyRuntime", room: "Room", reason: str) -> None:
    if room.connected_participants():
        await runtime.broadcast(room, {"type": "room-closed", "roomCode": room.code, "reason": reason})
    reset_room(room)
    for participant in room.participants:
        if participant.connection_id:
            runtime.connections.unbind(participant.connection_id)
        participant.status = "departed"
    runtime.sessions.drop_room(room.code)
    removed = runtime.rooms.remove(room)
    if removed:
        runtime._increment_stat("roomsClosed")
        runtime._log_ws_event("room_closed", roomCode=room.code, reason=reason)
