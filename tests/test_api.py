"""Tests for the HTTP endpoints and the websocket route."""
from __future__ import annotations

import pytest
from fastapi.testclient import TestClient
from httpx import AsyncClient

from partyhub.application import app


def recv_until(ws, message_type: str, max_messages: int = 20) -> dict:
    """Receive frames until one of ``message_type`` arrives."""
    for _ in range(max_messages):
        data = ws.receive_json()
        if data.get("type") == message_type:
            return data
    raise AssertionError(f"never received {message_type}")


class TestHealthEndpoint:
    @pytest.mark.asyncio
    async def test_health_returns_ok(self, client: AsyncClient):
        response = await client.get("/api/health")
        assert response.status_code == 200
        data = response.json()
        assert data["ok"] is True
        assert "activeRooms" in data
        assert set(data["websocket"]) == {"activeConnections", "peakConnections", "sendFailures"}

    @pytest.mark.asyncio
    async def test_ws_stats(self, client: AsyncClient):
        response = await client.get("/api/ws-stats")
        assert response.status_code == 200
        assert "stats" in response.json()


class TestRoomEndpoint:
    @pytest.mark.asyncio
    async def test_unknown_room_is_404(self, client: AsyncClient):
        response = await client.get("/api/rooms/ZZZZZZ")
        assert response.status_code == 404


class TestWebsocketFlow:
    def test_create_join_and_inspect(self):
        """Host creates a room over the socket, a guest joins, the room shows up over HTTP."""
        with TestClient(app) as http:
            with http.websocket_connect("/api/ws") as host:
                welcome = host.receive_json()
                assert welcome["type"] == "connected"
                assert welcome["reconnectGraceMs"] > 0

                host.send_json({"type": "create-room", "displayName": "Ana"})
                created = recv_until(host, "room-created")
                code = created["roomCode"]
                assert created["participant"]["isHost"] is True
                assert created["persistentId"]

                with http.websocket_connect("/ws") as guest:
                    recv_until(guest, "connected")
                    guest.send_json({"type": "join-room", "roomCode": code.lower(), "displayName": "Ben"})
                    joined = recv_until(guest, "room-joined")
                    assert joined["roomCode"] == code

                    roster = recv_until(host, "roster-update")
                    while len(roster["participants"]) < 2:
                        roster = recv_until(host, "roster-update")

                    summary = http.get(f"/api/rooms/{code}").json()
                    assert [p["name"] for p in summary["participants"]] == ["Ana", "Ben"]
                    assert summary["host"] == "Ana"
                    assert summary["joinable"] is True

    def test_ping_and_unknown_type(self):
        with TestClient(app) as http:
            with http.websocket_connect("/api/ws") as ws:
                recv_until(ws, "connected")
                ws.send_json({"type": "ping"})
                assert recv_until(ws, "pong")["type"] == "pong"

                ws.send_json({"type": "launch-rockets"})
                assert recv_until(ws, "error")["code"] == "INVALID_INPUT"

    def test_room_actions_need_a_room(self):
        with TestClient(app) as http:
            with http.websocket_connect("/api/ws") as ws:
                recv_until(ws, "connected")
                ws.send_json({"type": "start-voting"})
                error = recv_until(ws, "error")
                assert error["code"] == "INVALID_STATE"
