"""Shared fixtures and utilities for PartyHub tests."""
from __future__ import annotations

from typing import Any

import pytest
from httpx import ASGITransport, AsyncClient

from partyhub.application import app
from partyhub.runtime import PartyRuntime
from partyhub.runtime_types import ConnectionEntry, Room


class FakeWebSocket:
    """Records outbound frames instead of writing them to a socket."""

    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []
        self.close_code: int | None = None

    async def send_json(self, data: dict[str, Any]) -> None:
        if self.close_code is not None:
            raise RuntimeError("websocket is closed")
        self.sent.append(data)

    async def close(self, code: int = 1000) -> None:
        self.close_code = code

    def of_type(self, message_type: str) -> list[dict[str, Any]]:
        return [message for message in self.sent if message.get("type") == message_type]

    def last(self, message_type: str) -> dict[str, Any] | None:
        found = self.of_type(message_type)
        return found[-1] if found else None

    def clear(self) -> None:
        self.sent.clear()


class Client:
    """One simulated browser tab: a socket plus the identity the server handed out."""

    def __init__(self, runtime: PartyRuntime, websocket: FakeWebSocket, entry: ConnectionEntry) -> None:
        self.runtime = runtime
        self.ws = websocket
        self.entry = entry
        self.participant_id: str | None = None
        self.persistent_id: str | None = None

    async def send(self, message_type: str, **fields: Any) -> None:
        await self.runtime.dispatch(self.entry, {"type": message_type, **fields})

    async def drop(self) -> None:
        await self.runtime.disconnect(self.entry.connection_id, reason="test_drop")

    def remember(self, welcome: dict[str, Any]) -> None:
        self.participant_id = welcome["participantId"]
        self.persistent_id = welcome["persistentId"]

    def error(self) -> dict[str, Any] | None:
        return self.ws.last("error")

    def error_code(self) -> str | None:
        error = self.error()
        return error["code"] if error else None

    def game_state(self) -> dict[str, Any] | None:
        message = self.ws.last("game-state")
        return message["state"] if message else None


async def connect_client(runtime: PartyRuntime) -> Client:
    websocket = FakeWebSocket()
    entry = await runtime.connect(websocket)  # type: ignore[arg-type]
    return Client(runtime, websocket, entry)


async def create_room(runtime: PartyRuntime, names: list[str]) -> tuple[Room, list[Client]]:
    """Host creates a room with ``names[0]``; everyone else joins in order."""
    host = await connect_client(runtime)
    await host.send("create-room", displayName=names[0])
    created = host.ws.last("room-created")
    assert created is not None, host.ws.sent
    host.remember(created)

    clients = [host]
    for name in names[1:]:
        client = await connect_client(runtime)
        await client.send("join-room", roomCode=created["roomCode"], displayName=name)
        joined = client.ws.last("room-joined")
        assert joined is not None, client.ws.sent
        client.remember(joined)
        clients.append(client)

    return runtime.rooms.require(created["roomCode"]), clients


async def start_game(runtime: PartyRuntime, game: str, names: list[str]) -> tuple[Room, list[Client]]:
    room, clients = await create_room(runtime, names)
    await clients[0].send("start-game-direct", gameChoice=game)
    assert room.game is not None, clients[0].ws.sent
    return room, clients


def client_for(clients: list[Client], participant_id: str | None) -> Client:
    return next(client for client in clients if client.participant_id == participant_id)


@pytest.fixture
async def runtime():
    """Fresh runtime for each test, torn down so no timer task outlives it."""
    instance = PartyRuntime()
    yield instance
    await instance.shutdown()


@pytest.fixture
async def client():
    """Async HTTP client for API testing."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
