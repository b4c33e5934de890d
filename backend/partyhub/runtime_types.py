from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Literal

from fastapi import WebSocket

if TYPE_CHECKING:
    from .games.base import MiniGame

GameType = Literal["deduction", "elimination", "objection", "word-association"]
RoomPhase = Literal["waiting", "voting", "in-game"]
Connectivity = Literal["connected", "away", "departed"]


@dataclass
class ConnectionEntry:
    connection_id: str
    websocket: WebSocket
    connected_at_ms: int
    room_code: str | None = None
    participant_id: str | None = None


@dataclass
class Participant:
    participant_id: str
    persistent_id: str
    name: str
    room_code: str
    is_host: bool = False
    status: Connectivity = "connected"
    connection_id: str | None = None
    joined_at_ms: int = 0
    disconnected_at_ms: int | None = None

    @property
    def is_connected(self) -> bool:
        return self.status == "connected"


@dataclass
class Session:
    persistent_id: str
    participant_id: str
    room_code: str
    name: str
    is_host: bool
    disconnected_at_ms: int | None = None


@dataclass
class GameVote:
    available: list[GameType]
    ends_at: int
    ballots: dict[str, GameType] = field(default_factory=dict)
    resolved: bool = False
    winner: GameType | None = None
    tie_break: bool = False


@dataclass
class ScheduledTimer:
    task: asyncio.Task[None]
    generation: int
    fires_at: int


@dataclass
class Room:
    code: str
    created_at_ms: int
    last_activity_ms: int
    participants: list[Participant] = field(default_factory=list)
    phase: RoomPhase = "waiting"
    game: MiniGame | None = None
    vote: GameVote | None = None
    timers: dict[str, ScheduledTimer] = field(default_factory=dict)
    timer_generations: dict[str, int] = field(default_factory=dict)
    last_result: dict[str, Any] | None = None
    state_version: int = 1
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    def participant(self, participant_id: str | None) -> Participant | None:
        if not participant_id:
            return None
        return next(
            (p for p in self.participants if p.participant_id == participant_id),
            None,
        )

    def connected_participants(self) -> list[Participant]:
        return [p for p in self.participants if p.is_connected]

    def host(self) -> Participant | None:
        return next((p for p in self.participants if p.is_host), None)
