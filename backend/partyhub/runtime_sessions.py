"""
Session registry: reconnect metadata keyed by persistent identity.

A session outlives the participant's connection. Once its disconnect
timestamp is older than the grace window it is unreachable and eligible for
purge; the participant it described is then treated as departed.
"""
from __future__ import annotations

import logging

from .runtime_constants import RECONNECT_GRACE_MS
from .runtime_types import Participant, Session
from .runtime_utils import mask_identity, now_ms

logger = logging.getLogger(__name__)


class SessionRegistry:
    def __init__(self, grace_ms: int = RECONNECT_GRACE_MS) -> None:
        self.grace_ms = grace_ms
        self._sessions: dict[str, Session] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, persistent_id: object) -> bool:
        return persistent_id in self._sessions

    def register(self, participant: Participant) -> Session:
        session = Session(
            persistent_id=participant.persistent_id,
            participant_id=participant.participant_id,
            room_code=participant.room_code,
            name=participant.name,
            is_host=participant.is_host,
        )
        self._sessions[participant.persistent_id] = session
        return session

    def is_expired(self, session: Session, now: int | None = None) -> bool:
        if session.disconnected_at_ms is None:
            return False
        current = now_ms() if now is None else now
        return current - session.disconnected_at_ms >= self.grace_ms

    def get(self, persistent_id: str | None, now: int | None = None) -> Session | None:
        if not persistent_id:
            return None
        session = self._sessions.get(persistent_id)
        if session is None or self.is_expired(session, now):
            return None
        return session

    def mark_disconnected(self, persistent_id: str, at_ms: int | None = None) -> None:
        session = self._sessions.get(persistent_id)
        if session is not None:
            session.disconnected_at_ms = now_ms() if at_ms is None else at_ms

    def mark_connected(self, persistent_id: str) -> None:
        session = self._sessions.get(persistent_id)
        if session is not None:
            session.disconnected_at_ms = None

    def sync(self, participant: Participant) -> None:
        session = self._sessions.get(participant.persistent_id)
        if session is None:
            return
        session.name = participant.name
        session.is_host = participant.is_host
        session.room_code = participant.room_code

    def remove(self, persistent_id: str) -> Session | None:
        return self._sessions.pop(persistent_id, None)

    def drop_room(self, room_code: str) -> int:
        doomed = [key for key, session in self._sessions.items() if session.room_code == room_code]
        for key in doomed:
            self._sessions.pop(key, None)
        return len(doomed)

    def purge_expired(self, now: int | None = None) -> list[Session]:
        current = now_ms() if now is None else now
        expired = [session for session in self._sessions.values() if self.is_expired(session, current)]
        for session in expired:
            self._sessions.pop(session.persistent_id, None)
            logger.info(
                "[SESSION_PURGED] room=%s identity=%s",
                session.room_code,
                mask_identity(session.persistent_id),
            )
        return expired
