from __future__ import annotations

import hashlib
import random
import re
import secrets
import time
import uuid
from typing import Any, cast

from .errors import InvalidInput
from .runtime_constants import GAME_TYPES, NAME_MAX_LEN, ROOM_CODE_CHARS, ROOM_CODE_LENGTH
from .runtime_types import GameType


def now_ms() -> int:
    return int(time.time() * 1000)


def random_id() -> str:
    return str(uuid.uuid4())


def random_room_code(length: int = ROOM_CODE_LENGTH) -> str:
    return "".join(random.choice(ROOM_CODE_CHARS) for _ in range(max(4, length)))


def hash_secret(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def generate_secret(length: int = 18) -> str:
    return secrets.token_urlsafe(length)


def mask_identity(persistent_id: str | None) -> str:
    if not persistent_id:
        return "none"
    return hash_secret(persistent_id)[:10]


def sanitize_room_code(raw: str | None) -> str:
    value = (raw or "").upper()
    filtered = "".join(ch for ch in value if ch.isalnum())
    return filtered[:8]


def normalize_player_name(name: str | None) -> str:
    return str(name or "").strip().lower()


def sanitize_player_name(raw: str | None) -> str:
    value = str(raw or "").strip()
    cleaned = re.sub(r"\s+", " ", value)[:NAME_MAX_LEN].strip()
    if not cleaned:
        raise InvalidInput("Display name is required")
    return cleaned


def normalize_persistent_id(raw: str | None) -> str | None:
    value = str(raw or "").strip()
    if not value:
        return None
    filtered = "".join(ch for ch in value if ch.isalnum() or ch in {"-", "_"})
    if len(filtered) < 12:
        return None
    return filtered[:128]


def clean_text(raw: Any, limit: int) -> str:
    return re.sub(r"\s+", " ", str(raw or "")).strip()[:limit]


def normalize_game_type(value: Any) -> GameType:
    normalized = str(value or "").strip().lower()
    if normalized in GAME_TYPES:
        return cast(GameType, normalized)
    raise InvalidInput(f"Unknown game: {value!r}")


def shuffled(items: list[Any]) -> list[Any]:
    copy = list(items)
    random.shuffle(copy)
    return copy


def strict_plurality(counts: dict[str, int]) -> str | None:
    """Key holding strictly more votes than every other key, else ``None``."""
    if not counts:
        return None
    top = max(counts.values())
    if top <= 0:
        return None
    leaders = [key for key, value in counts.items() if value == top]
    return leaders[0] if len(leaders) == 1 else None


def tally(ballots: dict[str, str]) -> dict[str, int]:
    counts: dict[str, int] = {}
    for choice in ballots.values():
        counts[choice] = counts.get(choice, 0) + 1
    return counts
