from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from ..runtime_constants import (
    CLUE_MAX_LEN,
    GUESS_MAX_LEN,
    NAME_MAX_LEN,
    OBJECTION_MAX_LEN,
    QUESTION_MAX_LEN,
)


class InboundMessage(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: str


class CreateRoomMessage(InboundMessage):
    displayName: str = Field(min_length=1, max_length=NAME_MAX_LEN * 2)
    persistentId: str | None = Field(default=None, max_length=256)


class JoinRoomMessage(InboundMessage):
    roomCode: str = Field(min_length=1, max_length=16)
    displayName: str = Field(min_length=1, max_length=NAME_MAX_LEN * 2)
    persistentId: str | None = Field(default=None, max_length=256)


class ReconnectMessage(InboundMessage):
    persistentId: str = Field(min_length=1, max_length=256)
    displayName: str | None = Field(default=None, max_length=NAME_MAX_LEN * 2)


class GameChoiceMessage(InboundMessage):
    gameChoice: str = Field(min_length=1, max_length=32)


class AskQuestionMessage(InboundMessage):
    targetId: str = Field(min_length=1, max_length=64)
    question: str = Field(min_length=1, max_length=QUESTION_MAX_LEN * 2)


class TargetVoteMessage(InboundMessage):
    """``cast-vote`` for games that vote on a player or on a verdict."""

    targetId: str | None = Field(default=None, max_length=64)
    verdict: Literal["sustain", "overrule"] | None = None


class FinalGuessMessage(InboundMessage):
    location: str = Field(min_length=1, max_length=GUESS_MAX_LEN * 2)


class NightActionMessage(InboundMessage):
    targetId: str = Field(min_length=1, max_length=64)
    action: Literal["eliminate", "investigate", "protect"] | None = None


class ObjectionMessage(InboundMessage):
    text: str = Field(min_length=1, max_length=OBJECTION_MAX_LEN * 2)


class TogglePoolMessage(InboundMessage):
    enabled: bool | None = None


class ClueMessage(InboundMessage):
    word: str = Field(min_length=1, max_length=CLUE_MAX_LEN * 2)
    count: int


class GuessMessage(InboundMessage):
    index: int | None = None
    word: str | None = Field(default=None, max_length=CLUE_MAX_LEN * 2)


LOBBY_MODELS: dict[str, type[InboundMessage]] = {
    "create-room": CreateRoomMessage,
    "join-room": JoinRoomMessage,
    "request-reconnect": ReconnectMessage,
    "vote-for-game": GameChoiceMessage,
    "start-game-direct": GameChoiceMessage,
}

ACTION_MODELS: dict[str, type[InboundMessage]] = {
    "ask-question": AskQuestionMessage,
    "cast-vote": TargetVoteMessage,
    "spy-final-guess": FinalGuessMessage,
    "night-action": NightActionMessage,
    "submit-objection": ObjectionMessage,
    "toggle-topic-pool": TogglePoolMessage,
    "submit-clue": ClueMessage,
    "make-guess": GuessMessage,
}


def parse_message(data: dict[str, object]) -> InboundMessage:
    message_type = str(data.get("type") or "")
    model = LOBBY_MODELS.get(message_type) or ACTION_MODELS.get(message_type) or InboundMessage
    return model.model_validate(data)
