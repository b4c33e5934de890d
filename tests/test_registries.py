"""Tests for the session, room and connection registries."""
from __future__ import annotations

import pytest

from partyhub.errors import NotFound, RegistrationError
from partyhub.runtime_connections import ConnectionDirectory
from partyhub.runtime_rooms import RoomRegistry
from partyhub.runtime_sessions import SessionRegistry
from partyhub.runtime_types import Participant


def make_participant(room_code: str = "ABCDEF", name: str = "Ana") -> Participant:
    return Participant(
        participant_id=f"p-{name}",
        persistent_id=f"secret-token-{name}-0001",
        name=name,
        room_code=room_code,
        is_host=True,
    )


class TestSessionRegistry:
    def test_register_and_get(self):
        """A registered session is reachable by its persistent id."""
        sessions = SessionRegistry(grace_ms=1_000)
        participant = make_participant()
        sessions.register(participant)

        session = sessions.get(participant.persistent_id)
        assert session is not None
        assert session.participant_id == participant.participant_id
        assert session.is_host is True
        assert session.disconnected_at_ms is None

    def test_expired_session_is_unreachable(self):
        """A session disconnected longer than the grace window cannot be reclaimed."""
        sessions = SessionRegistry(grace_ms=1_000)
        participant = make_participant()
        sessions.register(participant)
        sessions.mark_disconnected(participant.persistent_id, at_ms=10_000)

        assert sessions.get(participant.persistent_id, now=10_999) is not None
        assert sessions.get(participant.persistent_id, now=11_000) is None
        assert participant.persistent_id in sessions

    def test_mark_connected_clears_disconnect(self):
        sessions = SessionRegistry(grace_ms=1_000)
        participant = make_participant()
        sessions.register(participant)
        sessions.mark_disconnected(participant.persistent_id, at_ms=0)
        sessions.mark_connected(participant.persistent_id)

        assert sessions.get(participant.persistent_id) is not None

    def test_purge_expired_only_drops_stale_sessions(self):
        sessions = SessionRegistry(grace_ms=1_000)
        stale = make_participant(name="Old")
        fresh = make_participant(name="New")
        sessions.register(stale)
        sessions.register(fresh)
        sessions.mark_disconnected(stale.persistent_id, at_ms=0)

        purged = sessions.purge_expired(now=5_000)

        assert [session.persistent_id for session in purged] == [stale.persistent_id]
        assert stale.persistent_id not in sessions
        assert fresh.persistent_id in sessions

    def test_unknown_identity_is_absent(self):
        assert SessionRegistry().get("does-not-exist-at-all") is None

    def test_sync_tracks_host_flag(self):
        sessions = SessionRegistry()
        participant = make_participant()
        sessions.register(participant)
        participant.is_host = False
        sessions.sync(participant)

        assert sessions.get(participant.persistent_id).is_host is False


class TestRoomRegistry:
    def test_codes_are_unique(self):
        """Every created room gets a code no other live room holds."""
        rooms = RoomRegistry()
        codes = {rooms.create().code for _ in range(200)}
        assert len(codes) == 200
        assert len(rooms) == 200

    def test_lookup_is_case_insensitive(self):
        rooms = RoomRegistry()
        room = rooms.create()
        assert rooms.get(room.code.lower()) is room
        assert rooms.require(f" {room.code} ") is room

    def test_require_unknown_raises(self):
        with pytest.raises(NotFound):
            RoomRegistry().require("ZZZZZZ")

    def test_allocation_gives_up_when_code_space_is_full(self, monkeypatch):
        rooms = RoomRegistry()
        monkeypatch.setattr("partyhub.runtime_rooms.random_room_code", lambda: "AAAAAA")
        rooms.create()
        with pytest.raises(RegistrationError):
            rooms.create()

    def test_remove_only_removes_same_instance(self):
        rooms = RoomRegistry()
        room = rooms.create()
        assert rooms.remove(room) is True
        assert rooms.remove(room) is False
        assert rooms.get(room.code) is None

    def test_idle_rooms(self):
        rooms = RoomRegistry()
        room = rooms.create()
        room.last_activity_ms = 0
        assert rooms.idle_rooms(1_000, now=500) == []
        assert rooms.idle_rooms(1_000, now=1_000) == [room]


class TestConnectionDirectory:
    def test_bind_and_unbind(self):
        connections = ConnectionDirectory()
        entry = connections.open(object())  # type: ignore[arg-type]
        assert connections.bound_count() == 0

        connections.bind(entry.connection_id, "ABCDEF", "p-1")
        assert connections.get(entry.connection_id).participant_id == "p-1"
        assert connections.bound_count() == 1

        connections.unbind(entry.connection_id)
        assert connections.get(entry.connection_id).room_code is None

    def test_close_forgets_connection(self):
        connections = ConnectionDirectory()
        entry = connections.open(object())  # type: ignore[arg-type]
        assert connections.close(entry.connection_id) is entry
        assert connections.get(entry.connection_id) is None
        assert connections.websocket_for(entry.connection_id) is None
