"""Tests for generation-checked room timers."""
from __future__ import annotations

import asyncio

import pytest

from partyhub.runtime_timers import cancel_timer, clear_timers, has_timer, schedule_timer, timer_remaining_ms
from partyhub.runtime_types import Room


def make_room() -> Room:
    return Room(code="TIMERS", created_at_ms=0, last_activity_ms=0)


class TestScheduledTimers:
    @pytest.mark.asyncio
    async def test_timer_fires_once(self):
        room = make_room()
        fired: list[str] = []

        async def callback(r: Room) -> None:
            fired.append(r.code)

        schedule_timer(room, "phase", 10, callback)
        assert has_timer(room, "phase")
        await asyncio.sleep(0.1)

        assert fired == ["TIMERS"]
        assert not has_timer(room, "phase")

    @pytest.mark.asyncio
    async def test_cancelled_timer_never_fires(self):
        room = make_room()
        fired: list[int] = []

        async def callback(r: Room) -> None:
            fired.append(1)

        schedule_timer(room, "phase", 10, callback)
        cancel_timer(room, "phase")
        await asyncio.sleep(0.1)

        assert fired == []

    @pytest.mark.asyncio
    async def test_rescheduling_supersedes_older_generation(self):
        """Only the most recent schedule for a key may act."""
        room = make_room()
        fired: list[str] = []

        def make_callback(label: str):
            async def callback(r: Room) -> None:
                fired.append(label)

            return callback

        schedule_timer(room, "phase", 10, make_callback("first"))
        schedule_timer(room, "phase", 20, make_callback("second"))
        await asyncio.sleep(0.15)

        assert fired == ["second"]

    @pytest.mark.asyncio
    async def test_stale_runner_waiting_on_lock_is_ignored(self):
        """A timer that wakes while an early resolution holds the lock does nothing."""
        room = make_room()
        fired: list[int] = []

        async def callback(r: Room) -> None:
            fired.append(1)

        async with room.lock:
            schedule_timer(room, "phase", 0, callback)
            await asyncio.sleep(0.05)
            room.timer_generations["phase"] += 1
        await asyncio.sleep(0.05)

        assert fired == []

    @pytest.mark.asyncio
    async def test_callback_may_reschedule_its_own_key(self):
        room = make_room()
        fired: list[int] = []

        async def callback(r: Room) -> None:
            fired.append(1)
            if len(fired) < 3:
                schedule_timer(r, "tick", 5, callback)

        schedule_timer(room, "tick", 5, callback)
        await asyncio.sleep(0.2)

        assert fired == [1, 1, 1]

    @pytest.mark.asyncio
    async def test_clear_timers_keeps_requested_keys(self):
        room = make_room()

        async def callback(r: Room) -> None:
            return None

        schedule_timer(room, "a", 10_000, callback)
        schedule_timer(room, "b", 10_000, callback)
        clear_timers(room, keep=("b",))

        assert not has_timer(room, "a")
        assert has_timer(room, "b")
        remaining = timer_remaining_ms(room, "b")
        assert remaining is not None and 0 < remaining <= 10_000
        clear_timers(room)
