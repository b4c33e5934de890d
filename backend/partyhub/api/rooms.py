from __future__ import annotations

from fastapi import APIRouter, HTTPException

from partyhub.runtime import runtime
from partyhub.runtime_constants import MAX_PARTICIPANTS
from partyhub.runtime_lobby import games_catalog

router = APIRouter(tags=["rooms"])


@router.get("/api/rooms/{room_code}")
async def room_summary(room_code: str) -> dict[str, object]:
    room = runtime.rooms.get(room_code)
    if room is None:
        raise HTTPException(status_code=404, detail="Room not found")

    async with room.lock:
        host = room.host()
        return {
            "roomCode": room.code,
            "phase": room.phase,
            "gameType": room.game.game_type if room.game is not None else None,
            "participants": [
                {"name": p.name, "isHost": p.is_host, "connected": p.is_connected}
                for p in room.participants
            ],
            "host": host.name if host is not None else None,
            "maxParticipants": MAX_PARTICIPANTS,
            "joinable": room.phase != "in-game" and len(room.participants) < MAX_PARTICIPANTS,
            "games": games_catalog(room),
            "createdAt": room.created_at_ms,
        }
