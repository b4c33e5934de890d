from __future__ import annotations

from .errors import NotFound, RegistrationError
from .runtime_constants import ROOM_CODE_ATTEMPTS
from .runtime_types import Room
from .runtime_utils import now_ms, random_room_code, sanitize_room_code


class RoomRegistry:
    """Short human-enterable codes mapped to live rooms."""

    def __init__(self) -> None:
        self._rooms: dict[str, Room] = {}

    def __len__(self) -> int:
        return len(self._rooms)

    def __contains__(self, code: object) -> bool:
        return code in self._rooms

    def rooms(self) -> list[Room]:
        return list(self._rooms.values())

    def allocate_code(self) -> str:
        for _ in range(ROOM_CODE_ATTEMPTS):
            code = random_room_code()
            if code not in self._rooms:
                return code
        raise RegistrationError()

    def create(self) -> Room:
        created_at = now_ms()
        room = Room(
            code=self.allocate_code(),
            created_at_ms=created_at,
            last_activity_ms=created_at,
        )
        self._rooms[room.code] = room
        return room

    def get(self, code: str | None) -> Room | None:
        return self._rooms.get(sanitize_room_code(code))

    def require(self, code: str | None) -> Room:
        room = self.get(code)
        if room is None:
            raise NotFound("Room not found")
        return room

    def remove(self, room: Room) -> bool:
        if self._rooms.get(room.code) is not room:
            return False
        self._rooms.pop(room.code, None)
        return True

    def idle_rooms(self, max_idle_ms: int, now: int | None = None) -> list[Room]:
        current = now_ms() if now is None else now
        return [
            room
            for room in self._rooms.values()
            if current - room.last_activity_ms >= max_idle_ms
        ]

    def participant_count(self) -> int:
        return sum(len(room.participants) for room in self._rooms.values())
