from __future__ import annotations

from fastapi import APIRouter

from partyhub.runtime import runtime

router = APIRouter(tags=["system"])


@router.get("/api/health")
async def health() -> dict[str, object]:
    ws_stats = await runtime.get_ws_stats()
    ws_summary = {
        "activeConnections": ws_stats["stats"].get("activeConnections", 0),
        "peakConnections": ws_stats["stats"].get("peakConnections", 0),
        "sendFailures": ws_stats["stats"].get("sendFailures", 0),
    }
    return {
        "ok": True,
        "activeRooms": runtime.active_rooms_count,
        "participants": runtime.rooms.participant_count(),
        "websocket": ws_summary,
    }


@router.get("/api/ws-stats")
async def websocket_stats() -> dict[str, object]:
    return await runtime.get_ws_stats()
