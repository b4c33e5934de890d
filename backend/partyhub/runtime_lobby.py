"""
Room-level state machine: waiting -> voting -> in-game -> waiting.

Every function here runs with ``room.lock`` held, either from the message
dispatcher or from a timer runner.
"""
from __future__ import annotations

import logging
import random
from typing import TYPE_CHECKING, Any

from .errors import (
    Forbidden,
    InsufficientPlayers,
    InternalFailure,
    InvalidInput,
    InvalidState,
    NameConflict,
    PartyError,
)
from .games import GAME_CLASSES
from .runtime_channel import RoomChannel
from .runtime_constants import (
    GAME_LABELS,
    GAME_LAUNCH_DELAY_MS,
    GAME_MIN_PLAYERS,
    GAME_TYPES,
    GAME_VOTE_TIME_MS,
    MAX_PARTICIPANTS,
)
from .runtime_timers import cancel_timer, clear_timers, schedule_timer, timer_remaining_ms
from .runtime_types import GameType, GameVote, Participant, Room
from .runtime_utils import (
    generate_secret,
    normalize_game_type,
    normalize_persistent_id,
    normalize_player_name,
    now_ms,
    random_id,
    sanitize_player_name,
    tally,
)

if TYPE_CHECKING:
    from .games.base import MiniGame
    from .runtime import PartyRuntime
    from .runtime_types import ConnectionEntry

logger = logging.getLogger(__name__)

VOTE_TIMER_KEY = "gameVote"
LAUNCH_TIMER_KEY = "gameLaunch"
RETURN_TIMER_KEY = "returnToLobby"


# Views


def participant_view(participant: Participant) -> dict[str, Any]:
    return {
        "id": participant.participant_id,
        "name": participant.name,
        "isHost": participant.is_host,
        "status": participant.status,
        "connected": participant.is_connected,
    }


def available_games(room: Room) -> list[GameType]:
    count = len(room.connected_participants())
    return [game for game in GAME_TYPES if count >= GAME_MIN_PLAYERS[game]]


def games_catalog(room: Room) -> list[dict[str, Any]]:
    unlocked = set(available_games(room))
    return [
        {
            "id": game,
            "label": GAME_LABELS[game],
            "minPlayers": GAME_MIN_PLAYERS[game],
            "available": game in unlocked,
        }
        for game in GAME_TYPES
    ]


def roster_payload(room: Room) -> dict[str, Any]:
    host = room.host()
    return {
        "type": "roster-update",
        "roomCode": room.code,
        "participants": [participant_view(p) for p in room.participants],
        "hostId": host.participant_id if host else None,
        "games": games_catalog(room),
    }


def voting_view(room: Room, viewer_id: str | None) -> dict[str, Any] | None:
    vote = room.vote
    if vote is None:
        return None
    counts = tally(dict(vote.ballots))
    return {
        "available": [
            {"id": game, "label": GAME_LABELS[game], "votes": counts.get(game, 0)}
            for game in vote.available
        ],
        "tally": {game: counts.get(game, 0) for game in vote.available},
        "votesCast": len(vote.ballots),
        "totalVoters": len(room.connected_participants()),
        "endsAt": vote.ends_at,
        "timeRemainingMs": timer_remaining_ms(room, VOTE_TIMER_KEY),
        "myVote": vote.ballots.get(viewer_id or ""),
        "resolved": vote.resolved,
        "winner": vote.winner,
        "tieBreak": vote.tie_break,
    }


def room_snapshot(room: Room, viewer_id: str | None) -> dict[str, Any]:
    host = room.host()
    game = room.game
    return {
        "code": room.code,
        "phase": room.phase,
        "participants": [participant_view(p) for p in room.participants],
        "hostId": host.participant_id if host else None,
        "games": games_catalog(room),
        "voting": voting_view(room, viewer_id),
        "gameType": game.game_type if game is not None else None,
        "lastResult": room.last_result,
        "stateVersion": room.state_version,
    }


async def broadcast_roster(runtime: "PartyRuntime", room: Room) -> None:
    runtime._mark_state_changed(room)
    await runtime.broadcast(room, roster_payload(room))


async def broadcast_voting_state(runtime: "PartyRuntime", room: Room) -> None:
    await runtime.broadcast_each(
        room,
        lambda participant: {
            "type": "voting-state",
            "roomCode": room.code,
            "voting": voting_view(room, participant.participant_id),
        },
    )


async def broadcast_phase(runtime: "PartyRuntime", room: Room, **extra: Any) -> None:
    runtime._mark_state_changed(room)
    game = room.game
    await runtime.broadcast(
        room,
        {
            "type": "room-phase-change",
            "roomCode": room.code,
            "phase": room.phase,
            "gameType": game.game_type if game is not None else None,
            **extra,
        },
    )


# Membership


def _require_host(participant: Participant) -> None:
    if not participant.is_host:
        raise Forbidden()


def make_host(
    runtime: "PartyRuntime",
    room: Room,
    next_host: Participant,
    previous: Participant | None = None,
) -> Participant:
    for participant in room.participants:
        participant.is_host = participant is next_host
        runtime.sessions.sync(participant)
    runtime._increment_stat("hostReassigned")
    runtime._log_ws_event(
        "host_reassigned",
        roomCode=room.code,
        previousHostId=previous.participant_id if previous else None,
        hostId=next_host.participant_id,
    )
    return next_host


async def announce_host(runtime: "PartyRuntime", room: Room, host: Participant) -> None:
    await runtime.broadcast(
        room,
        {
            "type": "host-changed",
            "roomCode": room.code,
            "host": participant_view(host),
            "message": f"{host.name} is now the host",
        },
    )


def _ensure_unique_name(room: Room, name: str) -> None:
    normalized = normalize_player_name(name)
    for existing in room.participants:
        if existing.status == "departed":
            continue
        if normalize_player_name(existing.name) == normalized:
            raise NameConflict(f"The name {name} is already taken in this room")


def _claim_identity(runtime: "PartyRuntime", requested: str | None) -> str:
    """Client-supplied identity when it is well formed and unused, else a fresh one."""
    persistent_id = normalize_persistent_id(requested)
    if persistent_id is None or persistent_id in runtime.sessions:
        return generate_secret()
    return persistent_id


def _add_participant(
    runtime: "PartyRuntime",
    room: Room,
    entry: "ConnectionEntry",
    name: str,
    *,
    is_host: bool,
    requested_identity: str | None = None,
) -> Participant:
    participant = Participant(
        participant_id=random_id(),
        persistent_id=_claim_identity(runtime, requested_identity),
        name=name,
        room_code=room.code,
        is_host=is_host,
        connection_id=entry.connection_id,
        joined_at_ms=now_ms(),
    )
    room.participants.append(participant)
    runtime.sessions.register(participant)
    runtime.connections.bind(entry.connection_id, room.code, participant.participant_id)
    return participant


def _welcome_payload(message_type: str, room: Room, participant: Participant) -> dict[str, Any]:
    return {
        "type": message_type,
        "roomCode": room.code,
        "participantId": participant.participant_id,
        "persistentId": participant.persistent_id,
        "participant": participant_view(participant),
        "room": room_snapshot(room, participant.participant_id),
    }


async def create_room(
    runtime: "PartyRuntime",
    room: Room,
    entry: "ConnectionEntry",
    display_name: str,
    persistent_id: str | None = None,
) -> Participant:
    name = sanitize_player_name(display_name)
    participant = _add_participant(runtime, room, entry, name, is_host=True, requested_identity=persistent_id)
    runtime._increment_stat("roomsCreated")
    runtime._log_ws_event("room_created", roomCode=room.code, participantId=participant.participant_id)
    await runtime.send_to_connection(entry.connection_id, _welcome_payload("room-created", room, participant))
    await broadcast_roster(runtime, room)
    return participant


async def join_room(
    runtime: "PartyRuntime",
    room: Room,
    entry: "ConnectionEntry",
    display_name: str,
    persistent_id: str | None = None,
) -> Participant:
    name = sanitize_player_name(display_name)
    if room.phase == "in-game":
        raise InvalidState("A game is already in progress in this room")
    if len(room.participants) >= MAX_PARTICIPANTS:
        raise InvalidState("This room is full")
    _ensure_unique_name(room, name)

    participant = _add_participant(
        runtime,
        room,
        entry,
        name,
        is_host=room.host() is None,
        requested_identity=persistent_id,
    )
    # the host must be someone who is connected
    current_host = room.host()
    new_host = None
    if current_host is not participant and (current_host is None or not current_host.is_connected):
        new_host = make_host(runtime, room, participant, current_host)
    runtime._increment_stat("roomsJoined")
    runtime._log_ws_event("room_joined", roomCode=room.code, participantId=participant.participant_id)
    await runtime.send_to_connection(entry.connection_id, _welcome_payload("room-joined", room, participant))
    if new_host is not None:
        await announce_host(runtime, room, new_host)
    await broadcast_roster(runtime, room)
    if room.phase == "voting":
        await broadcast_voting_state(runtime, room)
    return participant


# Game vote


async def start_voting(runtime: "PartyRuntime", room: Room, participant: Participant) -> list[GameType]:
    _require_host(participant)
    if room.phase != "waiting":
        raise InvalidState("Voting can only start from the lobby")
    games = available_games(room)
    if not games:
        raise InsufficientPlayers("At least 3 connected players are needed to play")

    room.vote = GameVote(available=games, ends_at=now_ms() + GAME_VOTE_TIME_MS)
    room.phase = "voting"
    room.last_result = None
    schedule_timer(room, VOTE_TIMER_KEY, GAME_VOTE_TIME_MS, lambda r: resolve_voting(runtime, r))
    runtime._log_ws_event("voting_started", roomCode=room.code, games=games)
    await broadcast_phase(runtime, room)
    await broadcast_voting_state(runtime, room)
    return games


async def cast_game_vote(runtime: "PartyRuntime", room: Room, participant: Participant, choice: str) -> None:
    vote = room.vote
    if room.phase != "voting" or vote is None or vote.resolved:
        raise InvalidState("Game voting is not open")
    game = normalize_game_type(choice)
    if game not in vote.available:
        raise InvalidInput("That game is not available for this vote")

    vote.ballots[participant.participant_id] = game
    runtime._mark_state_changed(room)
    if await maybe_resolve_voting(runtime, room):
        return
    await broadcast_voting_state(runtime, room)


async def maybe_resolve_voting(runtime: "PartyRuntime", room: Room) -> bool:
    vote = room.vote
    if room.phase != "voting" or vote is None or vote.resolved:
        return False
    connected = room.connected_participants()
    if not connected:
        return False
    if all(p.participant_id in vote.ballots for p in connected):
        await resolve_voting(runtime, room)
        return True
    return False


async def end_voting_early(runtime: "PartyRuntime", room: Room, participant: Participant) -> None:
    _require_host(participant)
    if room.phase != "voting" or room.vote is None or room.vote.resolved:
        raise InvalidState("Game voting is not open")
    await resolve_voting(runtime, room)


def pick_game(available: list[GameType], counts: dict[str, int]) -> tuple[GameType, list[GameType]]:
    """Most-voted game; ties and empty ballots are broken uniformly at random."""
    if not counts:
        leaders = list(available)
    else:
        top = max(counts.get(game, 0) for game in available)
        leaders = [game for game in available if counts.get(game, 0) == top]
    return random.choice(leaders), leaders


async def resolve_voting(runtime: "PartyRuntime", room: Room) -> None:
    vote = room.vote
    if room.phase != "voting" or vote is None or vote.resolved:
        return
    cancel_timer(room, VOTE_TIMER_KEY)

    counts = tally(dict(vote.ballots))
    winner, leaders = pick_game(vote.available, counts)
    no_votes = not counts

    vote.resolved = True
    vote.winner = winner
    vote.tie_break = not no_votes and len(leaders) > 1
    runtime._log_ws_event(
        "voting_resolved",
        roomCode=room.code,
        winner=winner,
        tieBreak=vote.tie_break,
        noVotes=no_votes,
    )
    runtime._mark_state_changed(room)
    await runtime.broadcast(
        room,
        {
            "type": "voting-resolved",
            "roomCode": room.code,
            "winner": winner,
            "label": GAME_LABELS[winner],
            "tally": {game: counts.get(game, 0) for game in vote.available},
            "tieBreak": vote.tie_break,
            "tiedGames": leaders if vote.tie_break else [],
            "noVotes": no_votes,
            "launchInMs": GAME_LAUNCH_DELAY_MS,
        },
    )
    schedule_timer(
        room,
        LAUNCH_TIMER_KEY,
        GAME_LAUNCH_DELAY_MS,
        lambda r: _launch_after_vote(runtime, r, winner),
    )


async def _launch_after_vote(runtime: "PartyRuntime", room: Room, game_type: GameType) -> None:
    if room.phase != "voting":
        return
    try:
        await launch_game(runtime, room, game_type)
    except PartyError as exc:
        await runtime.broadcast(room, exc.to_payload())


async def cancel_voting(runtime: "PartyRuntime", room: Room, reason: str) -> None:
    if room.phase != "voting":
        return
    cancel_timer(room, VOTE_TIMER_KEY)
    cancel_timer(room, LAUNCH_TIMER_KEY)
    room.vote = None
    room.phase = "waiting"
    runtime._log_ws_event("voting_cancelled", roomCode=room.code, reason=reason)
    await broadcast_phase(runtime, room, reason=reason)


async def start_game_directly(
    runtime: "PartyRuntime",
    room: Room,
    participant: Participant,
    choice: str,
) -> "MiniGame":
    _require_host(participant)
    if room.phase != "waiting":
        raise InvalidState("A game can only be started from the lobby")
    game_type = normalize_game_type(choice)
    return await launch_game(runtime, room, game_type)


# Game lifecycle


async def launch_game(runtime: "PartyRuntime", room: Room, game_type: GameType) -> "MiniGame":
    players = [p.participant_id for p in room.connected_participants()]
    minimum = GAME_MIN_PLAYERS[game_type]
    if len(players) < minimum:
        if room.phase == "voting":
            await cancel_voting(runtime, room, reason="insufficient_players")
        raise InsufficientPlayers(f"{GAME_LABELS[game_type]} needs at least {minimum} connected players")

    cancel_timer(room, VOTE_TIMER_KEY)
    cancel_timer(room, LAUNCH_TIMER_KEY)
    room.vote = None
    room.last_result = None
    try:
        game_class = GAME_CLASSES[game_type]
        game = game_class(room, RoomChannel(runtime, room), players)
        room.game = game
        room.phase = "in-game"
        await broadcast_phase(runtime, room)
        await game.start()
    except Exception as exc:
        logger.exception("Failed to start %s in room %s", game_type, room.code)
        _drop_game(room)
        room.phase = "waiting"
        runtime._increment_stat("gameStartFailures")
        await broadcast_phase(runtime, room, reason="start_failed")
        raise InternalFailure("The game could not be started") from exc

    runtime._increment_stat("gamesStarted")
    runtime._log_ws_event("game_started", roomCode=room.code, game=game_type, players=len(players))
    return game


def _drop_game(room: Room) -> None:
    room.game = None
    for key in list(room.timers.keys()):
        if key.startswith("game:"):
            cancel_timer(room, key)


async def on_game_finished(
    runtime: "PartyRuntime",
    room: Room,
    game: "MiniGame",
    result: dict[str, Any],
) -> None:
    room.last_result = result
    runtime._increment_stat("gamesFinished")
    runtime._log_ws_event(
        "game_finished",
        roomCode=room.code,
        game=game.game_type,
        winner=str(result.get("winner")),
        reason=result.get("reason"),
    )
    schedule_timer(
        room,
        RETURN_TIMER_KEY,
        game.result_display_ms,
        lambda r: finish_game(runtime, r, game),
    )


async def finish_game(runtime: "PartyRuntime", room: Room, game: "MiniGame | None" = None) -> None:
    if room.game is None or (game is not None and room.game is not game):
        return
    cancel_timer(room, RETURN_TIMER_KEY)
    _drop_game(room)
    room.phase = "waiting"
    await broadcast_phase(runtime, room, lastResult=room.last_result)
    await broadcast_roster(runtime, room)


def reset_room(room: Room) -> None:
    """Drop every timer and any game state; used on room teardown."""
    clear_timers(room)
    room.game = None
    room.vote = None
