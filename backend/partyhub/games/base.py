"""
Shared lifecycle for every mini-game.

A game borrows the room's participant roster and talks to the outside world
only through its ``GameChannel``: broadcast to the room, unicast to one
participant, and a single cancellable phase timer. It never touches the room
registry. Subclasses implement ``start``, ``on_timer_expire``,
``on_participant_departure``, ``build_view`` and ``build_reveal`` and declare
their actions in ``actions``.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, ClassVar, Protocol

from pydantic import BaseModel

from ..errors import InvalidInput, InvalidState
from ..runtime_types import GameType, Participant, Room
from ..runtime_utils import now_ms

logger = logging.getLogger(__name__)

PHASE_TIMER_KEY = "game"


class GameChannel(Protocol):
    async def broadcast(self, payload: dict[str, Any]) -> None: ...

    async def send_to(self, participant_id: str, payload: dict[str, Any]) -> None: ...

    def schedule(self, key: str, delay_ms: int, callback: Callable[[], Awaitable[None]]) -> None: ...

    def cancel(self, key: str) -> None: ...

    async def game_finished(self, game: "MiniGame", result: dict[str, Any]) -> None: ...


class MiniGame(ABC):
    game_type: ClassVar[GameType]
    result_display_ms: ClassVar[int]
    actions: ClassVar[dict[str, str]] = {}

    def __init__(self, room: Room, channel: GameChannel, player_ids: list[str]) -> None:
        self.room = room
        self.channel = channel
        self.player_ids = list(player_ids)
        # names survive departure so reveals can still label everyone
        self.names: dict[str, str] = {}
        for participant_id in self.player_ids:
            participant = room.participant(participant_id)
            if participant is not None:
                self.names[participant_id] = participant.name
        self.phase = "setup"
        self.finished = False
        self.outcome: dict[str, Any] | None = None
        self.started_at_ms = now_ms()
        self.phase_ends_at: int | None = None
        self.history: list[dict[str, Any]] = []

    # Roster helpers; the room owns the participants.

    def participant(self, participant_id: str | None) -> Participant | None:
        return self.room.participant(participant_id)

    def name_of(self, participant_id: str | None) -> str:
        participant = self.participant(participant_id)
        if participant is not None:
            return participant.name
        return self.names.get(participant_id or "", "Unknown")

    def is_connected(self, participant_id: str) -> bool:
        participant = self.participant(participant_id)
        return participant is not None and participant.is_connected

    def is_player(self, participant_id: str) -> bool:
        return participant_id in self.player_ids

    def describe(self, participant_id: str | None) -> dict[str, Any] | None:
        if not participant_id:
            return None
        participant = self.participant(participant_id)
        return {
            "id": participant_id,
            "name": self.name_of(participant_id),
            "connected": participant is not None and participant.is_connected,
        }

    def add_history(self, event: str) -> None:
        self.history.append(
            {
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "event": event,
            }
        )

    # Phase timer

    def enter_phase(self, phase: str, duration_ms: int | None) -> None:
        self.phase = phase
        if duration_ms is None:
            self.phase_ends_at = None
            self.channel.cancel(PHASE_TIMER_KEY)
            return
        self.phase_ends_at = now_ms() + duration_ms
        self.channel.schedule(PHASE_TIMER_KEY, duration_ms, self._on_phase_timer)

    def time_remaining_ms(self) -> int | None:
        if self.phase_ends_at is None:
            return None
        return max(0, self.phase_ends_at - now_ms())

    async def _on_phase_timer(self) -> None:
        if self.finished:
            return
        await self.on_timer_expire()

    # Lifecycle contract

    @abstractmethod
    async def start(self) -> None: ...

    @abstractmethod
    async def on_timer_expire(self) -> None: ...

    @abstractmethod
    async def on_participant_departure(self, participant_id: str) -> None: ...

    @abstractmethod
    def build_view(self, viewer_id: str | None) -> dict[str, Any]: ...

    @abstractmethod
    def build_reveal(self) -> dict[str, Any]: ...

    async def on_participant_action(
        self,
        participant: Participant,
        action: str,
        payload: BaseModel | None,
    ) -> None:
        if self.finished:
            raise InvalidState("The game is already over")
        method_name = self.actions.get(action)
        if method_name is None:
            raise InvalidInput(f"Unknown action for this game: {action}")
        handler = getattr(self, method_name)
        await handler(participant, payload)

    async def on_presence_change(self, participant_id: str) -> None:
        """A participant went away or came back; quorum-based phases re-check here."""
        return None

    async def on_participant_reconnect(self, participant_id: str) -> None:
        await self.send_state(participant_id)
        await self.on_presence_change(participant_id)

    async def end(self, outcome: dict[str, Any]) -> None:
        if self.finished:
            return
        self.finished = True
        self.channel.cancel(PHASE_TIMER_KEY)
        self.phase = "finished"
        self.phase_ends_at = None
        self.outcome = dict(outcome)
        result = {
            "type": "game-result",
            "game": self.game_type,
            **self.outcome,
            "reveal": self.build_reveal(),
            "history": list(self.history),
            "durationSeconds": max(0, (now_ms() - self.started_at_ms) // 1000),
            "returnToLobbyMs": self.result_display_ms,
        }
        logger.info(
            "[GAME_END] room=%s game=%s winner=%s reason=%s",
            self.room.code,
            self.game_type,
            outcome.get("winner"),
            outcome.get("reason"),
        )
        await self.channel.broadcast(result)
        await self.channel.game_finished(self, result)

    # Outbound state

    def state_payload(self, viewer_id: str | None) -> dict[str, Any]:
        return {
            "type": "game-state",
            "game": self.game_type,
            "state": self.build_view(viewer_id),
        }

    async def send_state(self, participant_id: str) -> None:
        await self.channel.send_to(participant_id, self.state_payload(participant_id))

    async def broadcast_state(self) -> None:
        for participant in list(self.room.participants):
            if participant.is_connected:
                await self.send_state(participant.participant_id)

    def base_view(self, viewer_id: str | None) -> dict[str, Any]:
        return {
            "phase": self.phase,
            "timeRemainingMs": self.time_remaining_ms(),
            "phaseEndsAt": self.phase_ends_at,
            "players": [self.describe(pid) for pid in self.player_ids],
            "isPlayer": viewer_id is not None and self.is_player(viewer_id),
        }
