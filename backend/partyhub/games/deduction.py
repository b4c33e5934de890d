"""
Find-the-Outsider: everyone but one player shares a secret location.

Phases: discussion -> voting -> outsider-guess (only when the vote missed)
-> finished.
"""
from __future__ import annotations

import logging
import random
from typing import Any

from ..errors import Forbidden, InvalidInput, InvalidState, NotFound
from ..runtime_constants import (
    DEDUCTION_DISCUSSION_MS,
    DEDUCTION_GUESS_MS,
    DEDUCTION_RESULT_MS,
    DEDUCTION_VOTING_MS,
    GUESS_MAX_LEN,
    HISTORY_TAIL,
    LOCATIONS,
    QUESTION_MAX_LEN,
)
from ..runtime_types import Participant
from ..runtime_utils import clean_text, now_ms, strict_plurality, tally
from .base import MiniGame

logger = logging.getLogger(__name__)

MIN_ACTIVE_PLAYERS = 3


class DeductionGame(MiniGame):
    game_type = "deduction"
    result_display_ms = DEDUCTION_RESULT_MS
    actions = {
        "ask-question": "ask_question",
        "early-end-vote": "early_end_vote",
        "cast-vote": "cast_vote",
        "spy-final-guess": "final_guess",
    }

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.location = ""
        self.outsider_id = ""
        self.votes: dict[str, str] = {}
        self.early_end_votes: set[str] = set()
        self.questions: list[dict[str, Any]] = []
        self.accused_id: str | None = None
        self.vote_counts: dict[str, int] = {}

    async def start(self) -> None:
        self.location = random.choice(LOCATIONS)
        self.outsider_id = random.choice(self.player_ids)
        logger.info(
            "deduction start room=%s players=%s",
            self.room.code,
            len(self.player_ids),
        )
        self.add_history("The round begins. Ask questions and find the Outsider.")
        self.enter_phase("discussion", DEDUCTION_DISCUSSION_MS)
        await self.broadcast_state()

    # Actions

    def _require_player(self, participant: Participant) -> None:
        if not self.is_player(participant.participant_id):
            raise Forbidden("You are not playing this round")

    async def ask_question(self, participant: Participant, payload: Any) -> None:
        self._require_player(participant)
        if self.phase != "discussion":
            raise InvalidState("Questions are only allowed during discussion")
        target_id = str(getattr(payload, "targetId", "") or "")
        if target_id == participant.participant_id or not self.is_player(target_id):
            raise InvalidInput("Pick another player to question")
        question = clean_text(getattr(payload, "question", ""), QUESTION_MAX_LEN)
        if not question:
            raise InvalidInput("Question text is required")

        entry = {
            "id": len(self.questions) + 1,
            "fromId": participant.participant_id,
            "from": participant.name,
            "toId": target_id,
            "to": self.name_of(target_id),
            "question": question,
            "askedAt": now_ms(),
        }
        self.questions.append(entry)
        await self.channel.broadcast({"type": "question-asked", "game": self.game_type, **entry})

    def _early_end_required(self) -> int:
        connected = [pid for pid in self.player_ids if self.is_connected(pid)]
        return len(connected) // 2 + 1

    async def early_end_vote(self, participant: Participant, payload: Any) -> None:
        self._require_player(participant)
        if self.phase != "discussion":
            raise InvalidState("Discussion is already over")
        self.early_end_votes.add(participant.participant_id)
        if await self._maybe_end_discussion():
            return
        await self.broadcast_state()

    async def _maybe_end_discussion(self) -> bool:
        if self.phase != "discussion":
            return False
        supporters = [pid for pid in self.early_end_votes if self.is_connected(pid)]
        if not supporters or len(supporters) < self._early_end_required():
            return False
        self.add_history("The players voted to end the discussion early.")
        await self._start_voting()
        return True

    async def cast_vote(self, participant: Participant, payload: Any) -> None:
        self._require_player(participant)
        if self.phase != "voting":
            raise InvalidState("Voting is not open")
        target_id = str(getattr(payload, "targetId", "") or "")
        if not self.is_player(target_id):
            raise NotFound("That player is not in this round")
        if target_id == participant.participant_id:
            raise InvalidInput("You cannot vote for yourself")

        self.votes[participant.participant_id] = target_id
        if await self._maybe_resolve_voting():
            return
        await self.broadcast_state()

    async def final_guess(self, participant: Participant, payload: Any) -> None:
        if participant.participant_id != self.outsider_id:
            raise Forbidden("Only the Outsider can guess the location")
        if self.phase != "outsider-guess":
            raise InvalidState("It is not time to guess the location")
        guess = clean_text(getattr(payload, "location", ""), GUESS_MAX_LEN)
        if not guess:
            raise InvalidInput("Guess a location")

        correct = guess.casefold() == self.location.casefold()
        self.add_history(f"The Outsider guessed \"{guess}\".")
        await self.end(
            {
                "winner": "outsider" if correct else "insiders",
                "reason": "outsider_guessed_location" if correct else "outsider_wrong_guess",
                "outsiderGuess": guess,
            }
        )

    # Phase flow

    async def _start_voting(self) -> None:
        self.votes = {}
        self.early_end_votes = set()
        self.enter_phase("voting", DEDUCTION_VOTING_MS)
        await self.broadcast_state()

    def _eligible_voters(self) -> list[str]:
        return [pid for pid in self.player_ids if self.is_connected(pid)]

    async def _maybe_resolve_voting(self) -> bool:
        if self.phase != "voting":
            return False
        voters = self._eligible_voters()
        if not voters:
            return False
        if all(pid in self.votes for pid in voters):
            await self._resolve_voting()
            return True
        return False

    async def _resolve_voting(self) -> None:
        self.vote_counts = tally(self.votes)
        self.accused_id = strict_plurality(self.vote_counts)

        if self.accused_id is not None and self.accused_id == self.outsider_id:
            self.add_history(f"{self.name_of(self.accused_id)} was accused and was the Outsider!")
            await self.end({"winner": "insiders", "reason": "outsider_caught", "accused": self.describe(self.accused_id)})
            return

        if self.accused_id is None:
            self.add_history("No clear plurality. The Outsider gets a chance to guess the location.")
        else:
            self.add_history(
                f"{self.name_of(self.accused_id)} was accused but was not the Outsider. "
                "The Outsider gets a chance to guess the location."
            )
        self.enter_phase("outsider-guess", DEDUCTION_GUESS_MS)
        await self.broadcast_state()

    async def on_timer_expire(self) -> None:
        if self.phase == "discussion":
            await self._start_voting()
        elif self.phase == "voting":
            await self._resolve_voting()
        elif self.phase == "outsider-guess":
            self.add_history("The Outsider ran out of time.")
            await self.end({"winner": "insiders", "reason": "outsider_timeout"})

    async def on_presence_change(self, participant_id: str) -> None:
        if self.phase == "voting":
            await self._maybe_resolve_voting()
        elif self.phase == "discussion":
            await self._maybe_end_discussion()

    async def on_participant_departure(self, participant_id: str) -> None:
        if self.finished or not self.is_player(participant_id):
            return
        self.player_ids = [pid for pid in self.player_ids if pid != participant_id]
        self.votes = {
            voter: target
            for voter, target in self.votes.items()
            if voter != participant_id and target != participant_id
        }
        self.early_end_votes.discard(participant_id)

        if participant_id == self.outsider_id:
            self.add_history(f"The Outsider ({self.name_of(participant_id)}) left the game.")
            await self.end({"winner": "insiders", "reason": "outsider_departed"})
            return
        if len(self.player_ids) < MIN_ACTIVE_PLAYERS:
            self.add_history("Too few players remain.")
            await self.end({"winner": None, "reason": "insufficient_participants"})
            return

        if self.phase == "voting" and await self._maybe_resolve_voting():
            return
        if self.phase == "discussion" and await self._maybe_end_discussion():
            return
        await self.broadcast_state()

    # Views

    def build_view(self, viewer_id: str | None) -> dict[str, Any]:
        view = self.base_view(viewer_id)
        is_player = viewer_id is not None and self.is_player(viewer_id)
        is_outsider = viewer_id == self.outsider_id
        voters = self._eligible_voters()
        view.update(
            {
                "isOutsider": is_outsider,
                "location": self.location if is_player and not is_outsider else None,
                "possibleLocations": list(LOCATIONS),
                "questions": self.questions[-10:],
                "earlyEnd": {
                    "votes": len(self.early_end_votes),
                    "required": self._early_end_required(),
                    "voted": viewer_id in self.early_end_votes,
                },
                "voting": {
                    "votesReceived": sum(1 for pid in voters if pid in self.votes),
                    "totalVoters": len(voters),
                    "myVote": self.votes.get(viewer_id or ""),
                },
                "accused": self.describe(self.accused_id),
                "history": self.history[-HISTORY_TAIL:],
            }
        )
        return view

    def build_reveal(self) -> dict[str, Any]:
        return {
            "outsider": self.describe(self.outsider_id),
            "location": self.location,
            "accused": self.describe(self.accused_id),
            "voteResults": [
                {"player": self.describe(pid), "votes": count}
                for pid, count in sorted(self.vote_counts.items(), key=lambda item: -item[1])
            ],
            "questions": list(self.questions),
        }
