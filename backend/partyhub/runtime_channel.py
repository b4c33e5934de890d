from __future__ import annotations

from typing import TYPE_CHECKING, Any, Awaitable, Callable

from .runtime_timers import cancel_timer, schedule_timer

if TYPE_CHECKING:
    from .games.base import MiniGame
    from .runtime import PartyRuntime
    from .runtime_types import Room


class RoomChannel:
    """The only outbound capability a mini-game gets: room broadcast, unicast, timers."""

    def __init__(self, runtime: "PartyRuntime", room: "Room") -> None:
        self.runtime = runtime
        self.room = room

    def _timer_key(self, key: str) -> str:
        return f"game:{key}"

    def _is_current(self) -> bool:
        game = self.room.game
        return game is not None and getattr(game, "channel", None) is self

    async def broadcast(self, payload: dict[str, Any]) -> None:
        if not self._is_current():
            return
        self.runtime._mark_state_changed(self.room)
        await self.runtime.broadcast(self.room, payload)

    async def send_to(self, participant_id: str, payload: dict[str, Any]) -> None:
        if not self._is_current():
            return
        await self.runtime.send_to_participant(self.room, participant_id, payload)

    def schedule(self, key: str, delay_ms: int, callback: Callable[[], Awaitable[None]]) -> None:
        async def fire(room: "Room") -> None:
            if not self._is_current():
                return
            await callback()

        schedule_timer(self.room, self._timer_key(key), delay_ms, fire)

    def cancel(self, key: str) -> None:
        cancel_timer(self.room, self._timer_key(key))

    async def game_finished(self, game: "MiniGame", result: dict[str, Any]) -> None:
        from .runtime_lobby import on_game_finished

        if self.room.game is not game:
            return
        await on_game_finished(self.runtime, self.room, game, result)
