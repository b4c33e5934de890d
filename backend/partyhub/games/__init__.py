from __future__ import annotations

from ..runtime_types import GameType
from .base import GameChannel, MiniGame
from .deduction import DeductionGame
from .elimination import EliminationGame
from .objection import ObjectionGame
from .word_association import WordAssociationGame

GAME_CLASSES: dict[GameType, type[MiniGame]] = {
    "deduction": DeductionGame,
    "elimination": EliminationGame,
    "objection": ObjectionGame,
    "word-association": WordAssociationGame,
}

__all__ = [
    "GAME_CLASSES",
    "DeductionGame",
    "EliminationGame",
    "GameChannel",
    "MiniGame",
    "ObjectionGame",
    "WordAssociationGame",
]
