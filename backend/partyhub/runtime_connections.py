from __future__ import annotations

from fastapi import WebSocket

from .runtime_types import ConnectionEntry
from .runtime_utils import now_ms, random_id


class ConnectionDirectory:
    """Live connection handles and the participant each one currently represents."""

    def __init__(self) -> None:
        self._entries: dict[str, ConnectionEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def open(self, websocket: WebSocket) -> ConnectionEntry:
        entry = ConnectionEntry(
            connection_id=random_id(),
            websocket=websocket,
            connected_at_ms=now_ms(),
        )
        self._entries[entry.connection_id] = entry
        return entry

    def get(self, connection_id: str | None) -> ConnectionEntry | None:
        if not connection_id:
            return None
        return self._entries.get(connection_id)

    def websocket_for(self, connection_id: str | None) -> WebSocket | None:
        entry = self.get(connection_id)
        return entry.websocket if entry is not None else None

    def bind(self, connection_id: str, room_code: str, participant_id: str) -> None:
        entry = self._entries.get(connection_id)
        if entry is None:
            return
        entry.room_code = room_code
        entry.participant_id = participant_id

    def unbind(self, connection_id: str | None) -> None:
        entry = self.get(connection_id)
        if entry is None:
            return
        entry.room_code = None
        entry.participant_id = None

    def close(self, connection_id: str) -> ConnectionEntry | None:
        return self._entries.pop(connection_id, None)

    def bound_count(self) -> int:
        return sum(1 for entry in self._entries.values() if entry.participant_id)
