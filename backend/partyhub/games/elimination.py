"""
Secret-faction elimination game.

Night: the faction picks a victim, the detective investigates, the protector
shields. Day: the night is revealed and discussed. Voting: a strict majority
of the living is needed to eliminate anyone.
"""
from __future__ import annotations

import logging
from typing import Any, Literal

from ..errors import Forbidden, InvalidInput, InvalidState, NotFound
from ..runtime_constants import (
    ELIMINATION_DAY_MS,
    ELIMINATION_NIGHT_MS,
    ELIMINATION_PROTECTOR_MIN_PLAYERS,
    ELIMINATION_RESULT_MS,
    ELIMINATION_VOTING_MS,
    HISTORY_TAIL,
)
from ..runtime_types import Participant
from ..runtime_utils import shuffled, tally
from .base import MiniGame

logger = logging.getLogger(__name__)

MIN_ALIVE_PLAYERS = 3

Role = Literal["faction", "detective", "protector", "citizen"]

NIGHT_ACTIONS: dict[str, str] = {
    "faction": "eliminate",
    "detective": "investigate",
    "protector": "protect",
}


def role_distribution(player_count: int) -> dict[str, int]:
    faction = player_count // 3
    detective = 1
    protector = 1 if player_count >= ELIMINATION_PROTECTOR_MIN_PLAYERS else 0
    return {
        "faction": faction,
        "detective": detective,
        "protector": protector,
        "citizen": player_count - faction - detective - protector,
    }


class EliminationGame(MiniGame):
    game_type = "elimination"
    result_display_ms = ELIMINATION_RESULT_MS
    actions = {
        "night-action": "night_action",
        "cast-vote": "cast_vote",
    }

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.roles: dict[str, Role] = {}
        self.alive: list[str] = []
        self.dead: list[dict[str, Any]] = []
        self.round = 0
        self.night_actions: dict[str, str] = {}
        self.night_report: dict[str, Any] | None = None
        self.investigations: dict[str, list[dict[str, Any]]] = {}
        self.votes: dict[str, str] = {}
        self.last_vote: dict[str, Any] | None = None

    async def start(self) -> None:
        distribution = role_distribution(len(self.player_ids))
        order = shuffled(self.player_ids)
        cursor = 0
        for role in ("faction", "detective", "protector", "citizen"):
            for _ in range(distribution[role]):
                self.roles[order[cursor]] = role  # type: ignore[assignment]
                cursor += 1
        self.alive = list(self.player_ids)
        logger.info(
            "elimination start room=%s players=%s distribution=%s",
            self.room.code,
            len(self.player_ids),
            distribution,
        )
        self.add_history("Night falls over the town.")
        await self._start_night()

    # Helpers

    def role_of(self, participant_id: str | None) -> Role | None:
        if not participant_id:
            return None
        return self.roles.get(participant_id)

    def is_alive(self, participant_id: str) -> bool:
        return participant_id in self.alive

    def faction_members(self) -> list[str]:
        return [pid for pid, role in self.roles.items() if role == "faction"]

    def _alive_faction(self) -> list[str]:
        return [pid for pid in self.alive if self.roles.get(pid) == "faction"]

    def _require_alive(self, participant: Participant) -> None:
        if not self.is_player(participant.participant_id):
            raise Forbidden("You are not playing this round")
        if not self.is_alive(participant.participant_id):
            raise Forbidden("Eliminated players cannot act")

    def _kill(self, participant_id: str, cause: str) -> None:
        if participant_id not in self.alive:
            return
        self.alive.remove(participant_id)
        self.dead.append(
            {
                **(self.describe(participant_id) or {}),
                "role": self.roles.get(participant_id),
                "cause": cause,
                "round": self.round,
            }
        )

    # Night

    async def _start_night(self) -> None:
        self.round += 1
        self.night_actions = {}
        self.votes = {}
        self.enter_phase("night", ELIMINATION_NIGHT_MS)
        await self.broadcast_state()

    def _night_actors(self) -> list[str]:
        return [
            pid
            for pid in self.alive
            if self.roles.get(pid) in NIGHT_ACTIONS and self.is_connected(pid)
        ]

    async def night_action(self, participant: Participant, payload: Any) -> None:
        self._require_alive(participant)
        if self.phase != "night":
            raise InvalidState("Night actions are only allowed at night")
        actor_id = participant.participant_id
        role = self.roles.get(actor_id)
        if role not in NIGHT_ACTIONS:
            raise Forbidden("Your role has no night action")
        requested = getattr(payload, "action", None)
        if requested and requested != NIGHT_ACTIONS[role]:
            raise InvalidInput(f"Your role can only {NIGHT_ACTIONS[role]}")

        target_id = str(getattr(payload, "targetId", "") or "")
        if not self.is_alive(target_id):
            raise NotFound("That player is not alive")
        if role == "faction" and self.roles.get(target_id) == "faction":
            raise InvalidInput("Choose a target outside the faction")
        if role == "detective" and target_id == actor_id:
            raise InvalidInput("You cannot investigate yourself")

        self.night_actions[actor_id] = target_id
        await self.channel.send_to(
            actor_id,
            {
                "type": "action-confirmed",
                "game": self.game_type,
                "action": NIGHT_ACTIONS[role],
                "target": self.describe(target_id),
            },
        )
        if await self._maybe_resolve_night():
            return
        if role == "faction":
            for member in self._alive_faction():
                await self.send_state(member)

    async def _maybe_resolve_night(self) -> bool:
        if self.phase != "night":
            return False
        actors = self._night_actors()
        if not actors or not all(pid in self.night_actions for pid in actors):
            return False
        await self._resolve_night()
        return True

    def _faction_target(self) -> str | None:
        choices = [
            (actor, target)
            for actor, target in self.night_actions.items()
            if self.roles.get(actor) == "faction" and self.is_alive(actor) and self.is_alive(target)
        ]
        if not choices:
            return None
        counts = tally(dict(choices))
        top = max(counts.values())
        # ties go to the target that was picked first
        for _, target in choices:
            if counts[target] == top:
                return target
        return None

    def _choice_of(self, role: Role) -> tuple[str | None, str | None]:
        for actor, target in self.night_actions.items():
            if self.roles.get(actor) == role and self.is_alive(actor) and self.is_alive(target):
                return actor, target
        return None, None

    async def _resolve_night(self) -> None:
        victim_id = self._faction_target()
        _, protected_id = self._choice_of("protector")
        detective_id, suspect_id = self._choice_of("detective")

        killed: str | None = None
        saved = False
        if victim_id is not None:
            if protected_id == victim_id:
                saved = True
                self.add_history("Someone was attacked in the night but survived.")
            else:
                killed = victim_id
                self._kill(victim_id, "night")
                self.add_history(f"{self.name_of(victim_id)} was eliminated during the night.")
        else:
            self.add_history("The night passed quietly.")

        if detective_id is not None and suspect_id is not None:
            finding = {
                "round": self.round,
                "target": self.describe(suspect_id),
                "isFaction": self.roles.get(suspect_id) == "faction",
            }
            self.investigations.setdefault(detective_id, []).append(finding)
            await self.channel.send_to(
                detective_id,
                {"type": "investigation-result", "game": self.game_type, **finding},
            )

        self.night_report = {
            "round": self.round,
            "killed": self.describe(killed),
            "saved": saved,
        }
        if await self._check_win():
            return
        self.enter_phase("day", ELIMINATION_DAY_MS)
        await self.broadcast_state()

    # Voting

    async def _start_voting(self) -> None:
        self.votes = {}
        self.enter_phase("voting", ELIMINATION_VOTING_MS)
        await self.broadcast_state()

    def _eligible_voters(self) -> list[str]:
        return [pid for pid in self.alive if self.is_connected(pid)]

    async def cast_vote(self, participant: Participant, payload: Any) -> None:
        self._require_alive(participant)
        if self.phase != "voting":
            raise InvalidState("Voting is not open")
        target_id = str(getattr(payload, "targetId", "") or "")
        if not self.is_alive(target_id):
            raise NotFound("That player is not alive")
        if target_id == participant.participant_id:
            raise InvalidInput("You cannot vote for yourself")

        self.votes[participant.participant_id] = target_id
        if await self._maybe_resolve_voting():
            return
        await self.broadcast_state()

    async def _maybe_resolve_voting(self) -> bool:
        if self.phase != "voting":
            return False
        voters = self._eligible_voters()
        if not voters or not all(pid in self.votes for pid in voters):
            return False
        await self._resolve_voting()
        return True

    async def _resolve_voting(self) -> None:
        counts = tally({voter: target for voter, target in self.votes.items() if self.is_alive(voter)})
        majority = len(self.alive) // 2 + 1
        eliminated: str | None = None
        for target, count in counts.items():
            if count >= majority and self.is_alive(target):
                eliminated = target
                break

        self.last_vote = {
            "round": self.round,
            "eliminated": self.describe(eliminated),
            "role": self.roles.get(eliminated) if eliminated else None,
            "majorityNeeded": majority,
            "counts": [
                {"player": self.describe(pid), "votes": count}
                for pid, count in sorted(counts.items(), key=lambda item: -item[1])
            ],
        }
        if eliminated is not None:
            self._kill(eliminated, "vote")
            self.add_history(f"The town voted out {self.name_of(eliminated)}.")
        else:
            self.add_history("The town could not agree. No one was eliminated.")

        if await self._check_win():
            return
        await self._start_night()

    # Resolution

    async def _check_win(self) -> bool:
        if not self.alive:
            await self.end({"winner": None, "reason": "insufficient_participants"})
            return True
        faction = len(self._alive_faction())
        others = len(self.alive) - faction
        if faction == 0:
            self.add_history("Every faction member has been found.")
            await self.end({"winner": "citizens", "reason": "faction_eliminated"})
            return True
        if faction >= others:
            self.add_history("The faction now controls the town.")
            await self.end({"winner": "faction", "reason": "faction_majority"})
            return True
        return False

    async def on_timer_expire(self) -> None:
        if self.phase == "night":
            await self._resolve_night()
        elif self.phase == "day":
            await self._start_voting()
        elif self.phase == "voting":
            await self._resolve_voting()

    async def on_presence_change(self, participant_id: str) -> None:
        if self.phase == "night":
            await self._maybe_resolve_night()
        elif self.phase == "voting":
            await self._maybe_resolve_voting()

    async def on_participant_departure(self, participant_id: str) -> None:
        if self.finished or not self.is_player(participant_id):
            return
        was_alive = self.is_alive(participant_id)
        self.player_ids = [pid for pid in self.player_ids if pid != participant_id]
        if was_alive:
            self._kill(participant_id, "departed")
            self.add_history(f"{self.name_of(participant_id)} left the town.")
        self.night_actions.pop(participant_id, None)
        self.votes = {
            voter: target
            for voter, target in self.votes.items()
            if voter != participant_id and target != participant_id
        }
        if not was_alive:
            return
        if len(self.alive) < MIN_ALIVE_PLAYERS:
            self.add_history("Too few players remain.")
            await self.end({"winner": None, "reason": "insufficient_participants"})
            return
        if await self._check_win():
            return
        if self.phase == "night" and await self._maybe_resolve_night():
            return
        if self.phase == "voting" and await self._maybe_resolve_voting():
            return
        await self.broadcast_state()

    # Views

    def build_view(self, viewer_id: str | None) -> dict[str, Any]:
        view = self.base_view(viewer_id)
        role = self.role_of(viewer_id)
        viewer = viewer_id or ""
        is_faction = role == "faction"
        faction_choices = None
        if is_faction:
            faction_choices = [
                {"by": self.describe(actor), "target": self.describe(target)}
                for actor, target in self.night_actions.items()
                if self.roles.get(actor) == "faction"
            ]
        voters = self._eligible_voters()
        view.update(
            {
                "round": self.round,
                "role": role,
                "isAlive": self.is_alive(viewer),
                "factionMembers": (
                    [self.describe(pid) for pid in self.faction_members()] if is_faction else None
                ),
                "factionChoices": faction_choices,
                "alive": [self.describe(pid) for pid in self.alive],
                "dead": [dict(entry) for entry in self.dead],
                "nightAction": NIGHT_ACTIONS.get(role or ""),
                "myNightTarget": self.describe(self.night_actions.get(viewer)),
                "investigations": list(self.investigations.get(viewer, [])),
                "nightReport": self.night_report if self.phase != "night" else None,
                "voting": {
                    "votesReceived": sum(1 for pid in voters if pid in self.votes),
                    "totalVoters": len(voters),
                    "majorityNeeded": len(self.alive) // 2 + 1,
                    "myVote": self.votes.get(viewer),
                },
                "lastVote": self.last_vote,
                "history": self.history[-HISTORY_TAIL:],
            }
        )
        return view

    def build_reveal(self) -> dict[str, Any]:
        return {
            "roles": [
                {"player": self.describe(pid), "role": role, "alive": self.is_alive(pid)}
                for pid, role in self.roles.items()
            ],
            "dead": [dict(entry) for entry in self.dead],
            "rounds": self.round,
        }
