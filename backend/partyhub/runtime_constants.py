from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from .config import settings
from .runtime_types import GameType

MAX_PARTICIPANTS = settings.max_participants
RECONNECT_GRACE_MS = settings.reconnect_grace_ms
EMPTY_ROOM_GRACE_MS = settings.empty_room_grace_ms
ROOM_IDLE_EXPIRY_MS = settings.room_idle_expiry_ms
SWEEP_INTERVAL_MS = settings.sweep_interval_ms

GAME_VOTE_TIME_MS = 60_000
GAME_LAUNCH_DELAY_MS = 3_000

DEDUCTION_DISCUSSION_MS = 480_000
DEDUCTION_VOTING_MS = 60_000
DEDUCTION_GUESS_MS = 30_000
DEDUCTION_RESULT_MS = 10_000

ELIMINATION_NIGHT_MS = 120_000
ELIMINATION_DAY_MS = 180_000
ELIMINATION_VOTING_MS = 90_000
ELIMINATION_RESULT_MS = 15_000
ELIMINATION_PROTECTOR_MIN_PLAYERS = 6

OBJECTION_ARGUING_MS = 120_000
OBJECTION_CASE_MS = 60_000
OBJECTION_VOTING_MS = 30_000
OBJECTION_RESULT_MS = 15_000
OBJECTION_STARTING_LIVES = 3

WORD_TURN_MS = 180_000
WORD_RESULT_MS = 20_000
WORD_GRID_SIZE = 5
WORD_STARTING_TEAM_WORDS = 9
WORD_OTHER_TEAM_WORDS = 8
WORD_NEUTRAL_WORDS = 7
WORD_FORBIDDEN_WORDS = 1

ROOM_CODE_CHARS = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
ROOM_CODE_LENGTH = 6
ROOM_CODE_ATTEMPTS = 24
NAME_MAX_LEN = 24
QUESTION_MAX_LEN = 200
OBJECTION_MAX_LEN = 200
CLUE_MAX_LEN = 32
GUESS_MAX_LEN = 80
HISTORY_TAIL = 5

GAME_TYPES: tuple[GameType, GameType, GameType, GameType] = (
    "deduction",
    "objection",
    "elimination",
    "word-association",
)
GAME_MIN_PLAYERS: dict[GameType, int] = {
    "deduction": 3,
    "objection": 3,
    "elimination": 4,
    "word-association": 4,
}
GAME_LABELS: dict[GameType, str] = {
    "deduction": "Find the Outsider",
    "objection": "Objection!",
    "elimination": "Night Falls",
    "word-association": "Word Association",
}

CONTENT_CATALOG_PATH = Path(__file__).resolve().parent / "data" / "content.json"


def _clean_strings(raw: Any, *, upper: bool = False) -> list[str]:
    if not isinstance(raw, list):
        return []
    cleaned: list[str] = []
    seen: set[str] = set()
    for item in raw:
        value = str(item or "").strip()
        if not value:
            continue
        if upper:
            value = value.upper()
        key = value.lower()
        if key in seen:
            continue
        seen.add(key)
        cleaned.append(value)
    return cleaned


def _load_content_catalog() -> dict[str, list[str]]:
    payload = json.loads(CONTENT_CATALOG_PATH.read_text(encoding="utf-8"))
    if not isinstance(payload, dict):
        raise RuntimeError("content.json must contain an object")

    topics_raw = payload.get("topics")
    if not isinstance(topics_raw, dict):
        raise RuntimeError("content.json must contain a 'topics' object")

    catalog = {
        "locations": _clean_strings(payload.get("locations")),
        "standard_topics": _clean_strings(topics_raw.get("standard")),
        "spicy_topics": _clean_strings(topics_raw.get("spicy")),
        "words": _clean_strings(payload.get("words"), upper=True),
    }
    grid_cells = WORD_GRID_SIZE * WORD_GRID_SIZE
    if len(catalog["words"]) < grid_cells:
        raise RuntimeError(f"content.json needs at least {grid_cells} unique words")
    if not catalog["locations"] or not catalog["standard_topics"]:
        raise RuntimeError("content.json must list locations and standard topics")
    return catalog


CONTENT_CATALOG = _load_content_catalog()
LOCATIONS: tuple[str, ...] = tuple(CONTENT_CATALOG["locations"])
STANDARD_TOPICS: tuple[str, ...] = tuple(CONTENT_CATALOG["standard_topics"])
SPICY_TOPICS: tuple[str, ...] = tuple(CONTENT_CATALOG["spicy_topics"])
WORD_BANK: tuple[str, ...] = tuple(CONTENT_CATALOG["words"])
