"""
Debate-objection game.

One living player argues a topic against the clock. Anyone else may object;
the room then votes to sustain (objector takes the floor with their own
argument as the new topic) or overrule (objector loses a life). A speaker who
outlasts the timer with no objection wins outright.
"""
from __future__ import annotations

import logging
import random
from typing import Any

from ..errors import Forbidden, InvalidInput, InvalidState
from ..runtime_constants import (
    HISTORY_TAIL,
    OBJECTION_ARGUING_MS,
    OBJECTION_CASE_MS,
    OBJECTION_MAX_LEN,
    OBJECTION_RESULT_MS,
    OBJECTION_STARTING_LIVES,
    OBJECTION_VOTING_MS,
    SPICY_TOPICS,
    STANDARD_TOPICS,
)
from ..runtime_types import Participant
from ..runtime_utils import clean_text
from .base import MiniGame

logger = logging.getLogger(__name__)

VERDICTS = ("sustain", "overrule")


class ObjectionGame(MiniGame):
    game_type = "objection"
    result_display_ms = OBJECTION_RESULT_MS
    actions = {
        "submit-objection": "submit_objection",
        "finish-objection-argument": "finish_argument",
        "cast-vote": "cast_vote",
        "reroll-vote": "reroll_vote",
        "toggle-topic-pool": "toggle_topic_pool",
    }

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.lives: dict[str, int] = {}
        self.alive: list[str] = []
        self.eliminated: list[str] = []
        self.speaker_id: str | None = None
        self.topic = ""
        self.objector_id: str | None = None
        self.objection_text = ""
        self.votes: dict[str, str] = {}
        self.reroll_votes: set[str] = set()
        self.use_spicy_topics = False
        self.rounds = 0

    async def start(self) -> None:
        self.lives = {pid: OBJECTION_STARTING_LIVES for pid in self.player_ids}
        self.alive = list(self.player_ids)
        logger.info("objection start room=%s players=%s", self.room.code, len(self.player_ids))
        self.add_history("The debate begins.")
        self._new_round(random.choice(self.alive))
        await self.broadcast_state()

    # Helpers

    def topic_pool(self) -> list[str]:
        if self.use_spicy_topics:
            return list(STANDARD_TOPICS) + list(SPICY_TOPICS)
        return list(STANDARD_TOPICS)

    def draw_topic(self) -> str:
        pool = [topic for topic in self.topic_pool() if topic != self.topic] or self.topic_pool()
        return random.choice(pool)

    def is_alive(self, participant_id: str) -> bool:
        return participant_id in self.alive

    def _require_alive(self, participant: Participant) -> None:
        if not self.is_player(participant.participant_id):
            raise Forbidden("You are not playing this round")
        if not self.is_alive(participant.participant_id):
            raise Forbidden("Eliminated players cannot act")

    def _new_round(self, speaker_id: str, topic: str | None = None) -> None:
        self.rounds += 1
        self.speaker_id = speaker_id
        self.topic = topic or self.draw_topic()
        self.objector_id = None
        self.objection_text = ""
        self.votes = {}
        self.reroll_votes = set()
        self.enter_phase("arguing", OBJECTION_ARGUING_MS)

    def _reroll_required(self) -> int:
        return len(self.alive) // 2 + 1

    def _eligible_voters(self) -> list[str]:
        return [
            pid
            for pid in self.alive
            if pid != self.objector_id and self.is_connected(pid)
        ]

    # Actions

    async def submit_objection(self, participant: Participant, payload: Any) -> None:
        self._require_alive(participant)
        if self.phase != "arguing":
            raise InvalidState("You can only object while someone is arguing")
        if participant.participant_id == self.speaker_id:
            raise InvalidInput("You cannot object to your own argument")
        text = clean_text(getattr(payload, "text", ""), OBJECTION_MAX_LEN)
        if not text:
            raise InvalidInput("Your objection needs a counter-argument")

        self.objector_id = participant.participant_id
        self.objection_text = text
        self.reroll_votes = set()
        self.add_history(f"{participant.name} objected: \"{text}\"")
        self.enter_phase("objection", OBJECTION_CASE_MS)
        await self.broadcast_state()

    async def finish_argument(self, participant: Participant, payload: Any) -> None:
        if participant.participant_id != self.objector_id:
            raise Forbidden("Only the objector can finish the objection")
        if self.phase != "objection":
            raise InvalidState("There is no objection to finish")
        await self._start_voting()

    async def cast_vote(self, participant: Participant, payload: Any) -> None:
        self._require_alive(participant)
        if self.phase != "voting":
            raise InvalidState("Voting is not open")
        if participant.participant_id == self.objector_id:
            raise Forbidden("You cannot vote on your own objection")
        verdict = str(getattr(payload, "verdict", "") or "").strip().lower()
        if verdict not in VERDICTS:
            raise InvalidInput("Vote to sustain or overrule")

        self.votes[participant.participant_id] = verdict
        if await self._maybe_resolve_voting():
            return
        await self.broadcast_state()

    async def reroll_vote(self, participant: Participant, payload: Any) -> None:
        self._require_alive(participant)
        if self.phase != "arguing":
            raise InvalidState("Topics can only be rerolled during an argument")
        self.reroll_votes.add(participant.participant_id)
        if len(self.reroll_votes) >= self._reroll_required():
            self.topic = self.draw_topic()
            self.reroll_votes = set()
            self.add_history(f"The topic was rerolled to: \"{self.topic}\"")
            self.enter_phase("arguing", OBJECTION_ARGUING_MS)
        await self.broadcast_state()

    async def toggle_topic_pool(self, participant: Participant, payload: Any) -> None:
        if not participant.is_host:
            raise Forbidden("Only the host can change the topic pool")
        enabled = getattr(payload, "enabled", None)
        self.use_spicy_topics = (not self.use_spicy_topics) if enabled is None else bool(enabled)
        await self.broadcast_state()

    # Phase flow

    async def _start_voting(self) -> None:
        self.votes = {}
        self.enter_phase("voting", OBJECTION_VOTING_MS)
        if await self._maybe_resolve_voting():
            return
        await self.broadcast_state()

    async def _maybe_resolve_voting(self) -> bool:
        if self.phase != "voting":
            return False
        voters = self._eligible_voters()
        if voters and not all(pid in self.votes for pid in voters):
            return False
        await self._resolve_voting()
        return True

    def vote_counts(self) -> dict[str, int]:
        counts = {verdict: 0 for verdict in VERDICTS}
        for voter, verdict in self.votes.items():
            if self.is_alive(voter) and voter != self.objector_id:
                counts[verdict] += 1
        return counts

    async def _resolve_voting(self) -> None:
        counts = self.vote_counts()
        # ties overrule
        verdict = "sustain" if counts["sustain"] > counts["overrule"] else "overrule"
        await self._apply_verdict(verdict, counts)

    async def _apply_verdict(self, verdict: str, counts: dict[str, int]) -> None:
        objector_id = self.objector_id
        if objector_id is None:
            return
        objector_name = self.name_of(objector_id)

        if verdict == "sustain":
            self.add_history(
                f"{objector_name}'s objection to \"{self.topic}\" was sustained "
                f"({counts['sustain']}-{counts['overrule']})."
            )
            self._new_round(objector_id, topic=self.objection_text)
            await self.broadcast_state()
            return

        self.add_history(
            f"{objector_name}'s objection to \"{self.topic}\" was overruled "
            f"({counts['sustain']}-{counts['overrule']})."
        )
        self.lives[objector_id] = max(0, self.lives.get(objector_id, 0) - 1)
        if self.lives[objector_id] == 0:
            self._eliminate(objector_id)
            if await self._check_game_end():
                return
            self._new_round(random.choice(self.alive))
        else:
            self._new_round(objector_id)
        await self.broadcast_state()

    def _eliminate(self, participant_id: str) -> None:
        if participant_id not in self.alive:
            return
        self.alive.remove(participant_id)
        self.eliminated.append(participant_id)
        self.add_history(f"{self.name_of(participant_id)} was eliminated.")

    async def _check_game_end(self) -> bool:
        if len(self.alive) > 1:
            return False
        if self.alive:
            winner = self.alive[0]
            self.add_history(f"{self.name_of(winner)} is the last one standing.")
            await self.end({"winner": self.describe(winner), "reason": "last_standing"})
        else:
            await self.end({"winner": None, "reason": "insufficient_participants"})
        return True

    async def on_timer_expire(self) -> None:
        if self.phase == "arguing":
            speaker_id = self.speaker_id
            self.add_history(f"{self.name_of(speaker_id)} argued the full time without objection!")
            await self.end({"winner": self.describe(speaker_id), "reason": "argument_unchallenged"})
        elif self.phase == "objection":
            await self._start_voting()
        elif self.phase == "voting":
            await self._resolve_voting()

    async def on_presence_change(self, participant_id: str) -> None:
        if self.phase == "voting":
            await self._maybe_resolve_voting()

    async def on_participant_departure(self, participant_id: str) -> None:
        if self.finished or not self.is_player(participant_id):
            return
        self.player_ids = [pid for pid in self.player_ids if pid != participant_id]
        self.votes.pop(participant_id, None)
        self.reroll_votes.discard(participant_id)
        if participant_id not in self.alive:
            return

        self.alive.remove(participant_id)
        self.eliminated.append(participant_id)
        self.add_history(f"{self.name_of(participant_id)} left the debate.")
        if await self._check_game_end():
            return

        if participant_id == self.speaker_id:
            if self.objector_id is not None and self.objector_id in self.alive:
                next_speaker = self.objector_id
            else:
                next_speaker = self.alive[0]
            self._new_round(next_speaker)
        elif participant_id == self.objector_id:
            self.objector_id = None
            self.objection_text = ""
            self.votes = {}
            self.add_history("The objection was withdrawn.")
            self.enter_phase("arguing", OBJECTION_ARGUING_MS)
        elif self.phase == "voting" and await self._maybe_resolve_voting():
            return
        elif self.phase == "arguing" and len(self.reroll_votes) >= self._reroll_required():
            self.topic = self.draw_topic()
            self.reroll_votes = set()
            self.enter_phase("arguing", OBJECTION_ARGUING_MS)
        await self.broadcast_state()

    # Views

    def build_view(self, viewer_id: str | None) -> dict[str, Any]:
        view = self.base_view(viewer_id)
        viewer = viewer_id or ""
        counts = self.vote_counts()
        voters = self._eligible_voters()
        view.update(
            {
                "round": self.rounds,
                "speaker": self.describe(self.speaker_id),
                "topic": self.topic,
                "objector": self.describe(self.objector_id),
                "objectionText": self.objection_text,
                "lives": [
                    {"player": self.describe(pid), "lives": self.lives.get(pid, 0)}
                    for pid in self.lives
                ],
                "alive": [self.describe(pid) for pid in self.alive],
                "eliminated": [self.describe(pid) for pid in self.eliminated],
                "myLives": self.lives.get(viewer),
                "voting": {
                    "sustain": counts["sustain"],
                    "overrule": counts["overrule"],
                    "totalVoters": len(voters),
                    "myVote": self.votes.get(viewer),
                    "canVote": self.is_alive(viewer) and viewer != self.objector_id,
                },
                "reroll": {
                    "votes": [self.describe(pid) for pid in self.reroll_votes],
                    "required": self._reroll_required(),
                    "voted": viewer in self.reroll_votes,
                },
                "useSpicyTopics": self.use_spicy_topics,
                "history": self.history[-HISTORY_TAIL:],
            }
        )
        return view

    def build_reveal(self) -> dict[str, Any]:
        return {
            "finalLives": [
                {"player": self.describe(pid), "lives": lives}
                for pid, lives in self.lives.items()
            ],
            "survivors": [self.describe(pid) for pid in self.alive],
            "eliminated": [self.describe(pid) for pid in self.eliminated],
            "rounds": self.rounds,
        }
