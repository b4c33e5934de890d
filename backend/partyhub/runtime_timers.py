"""
Room-scoped scheduled events.

Each timer key carries a generation number. Scheduling or cancelling a key
bumps its generation, and a runner only invokes its callback when the
generation it was created with is still current, so a timer superseded by an
early resolution can never act on fresher state.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from .runtime_types import Room, ScheduledTimer
from .runtime_utils import now_ms

logger = logging.getLogger(__name__)

TimerCallback = Callable[[Room], Awaitable[None]]


def _bump_generation(room: Room, key: str) -> int:
    generation = room.timer_generations.get(key, 0) + 1
    room.timer_generations[key] = generation
    return generation


def cancel_timer(room: Room, key: str) -> None:
    _bump_generation(room, key)
    entry = room.timers.pop(key, None)
    if entry is not None and not entry.task.done():
        entry.task.cancel()


def clear_timers(room: Room, *, keep: tuple[str, ...] = ()) -> None:
    for key in list(room.timers.keys()):
        if key in keep:
            continue
        cancel_timer(room, key)


def has_timer(room: Room, key: str) -> bool:
    return key in room.timers


def timer_remaining_ms(room: Room, key: str) -> int | None:
    entry = room.timers.get(key)
    if entry is None:
        return None
    return max(0, entry.fires_at - now_ms())


def schedule_timer(room: Room, key: str, delay_ms: int, callback: TimerCallback) -> int:
    cancel_timer(room, key)
    generation = room.timer_generations[key]
    delay_s = max(0.0, (delay_ms or 0) / 1000)

    async def runner() -> None:
        try:
            await asyncio.sleep(delay_s)
        except asyncio.CancelledError:
            return
        async with room.lock:
            if room.timer_generations.get(key) != generation:
                return
            entry = room.timers.get(key)
            if entry is not None and entry.generation == generation:
                room.timers.pop(key, None)
            try:
                await callback(room)
            except Exception:
                logger.exception("Timer %s failed for room %s", key, room.code)

    task = asyncio.create_task(runner(), name=f"{room.code}:{key}:{generation}")
    room.timers[key] = ScheduledTimer(
        task=task,
        generation=generation,
        fires_at=now_ms() + int(delay_s * 1000),
    )
    return generation
