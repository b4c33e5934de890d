"""
Team word-association game on a 5x5 grid.

Two teams alternate turns. The active team's clue-giver names one word and a
count; teammates then reveal cells until they miss, run out of guesses or end
the turn. Only clue-givers see the hidden colors.
"""
from __future__ import annotations

import logging
import random
from typing import Any, Literal

from ..errors import Forbidden, InvalidInput, InvalidState, NotFound
from ..runtime_constants import (
    CLUE_MAX_LEN,
    WORD_BANK,
    WORD_FORBIDDEN_WORDS,
    WORD_GRID_SIZE,
    WORD_NEUTRAL_WORDS,
    WORD_OTHER_TEAM_WORDS,
    WORD_RESULT_MS,
    WORD_STARTING_TEAM_WORDS,
    WORD_TURN_MS,
)
from ..runtime_types import Participant
from ..runtime_utils import clean_text, shuffled
from .base import MiniGame

logger = logging.getLogger(__name__)

Team = Literal["red", "blue"]
TEAMS: tuple[Team, Team] = ("red", "blue")
CLUE_MIN_COUNT = 1
CLUE_MAX_COUNT = 9


def other_team(team: Team) -> Team:
    return "blue" if team == "red" else "red"


def build_grid(starting_team: Team) -> list[dict[str, Any]]:
    cells = WORD_GRID_SIZE * WORD_GRID_SIZE
    words = random.sample(list(WORD_BANK), cells)
    colors = (
        [starting_team] * WORD_STARTING_TEAM_WORDS
        + [other_team(starting_team)] * WORD_OTHER_TEAM_WORDS
        + ["neutral"] * WORD_NEUTRAL_WORDS
        + ["forbidden"] * WORD_FORBIDDEN_WORDS
    )
    random.shuffle(colors)
    return [
        {
            "index": index,
            "word": word,
            "color": colors[index],
            "revealed": False,
            "revealedBy": None,
            "row": index // WORD_GRID_SIZE,
            "col": index % WORD_GRID_SIZE,
        }
        for index, word in enumerate(words)
    ]


class WordAssociationGame(MiniGame):
    game_type = "word-association"
    result_display_ms = WORD_RESULT_MS
    actions = {
        "submit-clue": "submit_clue",
        "make-guess": "make_guess",
        "end-turn": "end_turn",
    }

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.teams: dict[Team, list[str]] = {"red": [], "blue": []}
        self.clue_givers: dict[Team, str | None] = {"red": None, "blue": None}
        self.found: dict[Team, int] = {"red": 0, "blue": 0}
        self.totals: dict[Team, int] = {"red": 0, "blue": 0}
        self.grid: list[dict[str, Any]] = []
        self.current_team: Team = "red"
        self.current_clue: dict[str, Any] | None = None
        self.guesses_remaining = 0
        self.clues: list[dict[str, Any]] = []
        self.turns = 0

    async def start(self) -> None:
        for index, pid in enumerate(shuffled(self.player_ids)):
            self.teams[TEAMS[index % 2]].append(pid)
        for team in TEAMS:
            self.clue_givers[team] = self.teams[team][0] if self.teams[team] else None

        starting: Team = random.choice(TEAMS)
        self.totals[starting] = WORD_STARTING_TEAM_WORDS
        self.totals[other_team(starting)] = WORD_OTHER_TEAM_WORDS
        self.grid = build_grid(starting)
        logger.info(
            "word-association start room=%s red=%s blue=%s starting=%s",
            self.room.code,
            len(self.teams["red"]),
            len(self.teams["blue"]),
            starting,
        )
        self.add_history(f"{starting.upper()} team goes first.")
        self._begin_turn(starting)
        await self.broadcast_state()

    # Helpers

    def team_of(self, participant_id: str | None) -> Team | None:
        for team in TEAMS:
            if participant_id in self.teams[team]:
                return team
        return None

    def is_clue_giver(self, participant_id: str | None) -> bool:
        return participant_id is not None and participant_id in self.clue_givers.values()

    def _begin_turn(self, team: Team) -> None:
        self.turns += 1
        self.current_team = team
        self.current_clue = None
        self.guesses_remaining = 0
        self.enter_phase("clue", WORD_TURN_MS)

    async def _pass_turn(self, reason: str) -> None:
        next_team = other_team(self.current_team)
        self.add_history(f"{reason} Turn passes to {next_team.upper()} team.")
        self._begin_turn(next_team)
        await self.broadcast_state()

    def _cell(self, payload: Any) -> dict[str, Any]:
        index = getattr(payload, "index", None)
        word = getattr(payload, "word", None)
        if index is not None:
            if not 0 <= int(index) < len(self.grid):
                raise InvalidInput("That cell is not on the grid")
            return self.grid[int(index)]
        if word:
            wanted = str(word).strip().upper()
            for cell in self.grid:
                if cell["word"] == wanted:
                    return cell
            raise NotFound("That word is not on the grid")
        raise InvalidInput("Pick a cell to reveal")

    # Actions

    async def submit_clue(self, participant: Participant, payload: Any) -> None:
        actor_id = participant.participant_id
        if self.clue_givers.get(self.current_team) != actor_id:
            raise Forbidden("Only the active team's clue-giver can give a clue")
        if self.phase != "clue":
            raise InvalidState("A clue is already pending this turn")

        word = clean_text(getattr(payload, "word", ""), CLUE_MAX_LEN).upper()
        if not word:
            raise InvalidInput("Clue word is required")
        try:
            count = int(getattr(payload, "count", 0))
        except (TypeError, ValueError) as exc:
            raise InvalidInput("Clue count must be a number") from exc
        if not CLUE_MIN_COUNT <= count <= CLUE_MAX_COUNT:
            raise InvalidInput(f"Clue count must be between {CLUE_MIN_COUNT} and {CLUE_MAX_COUNT}")
        if any(cell["word"] == word and not cell["revealed"] for cell in self.grid):
            raise InvalidInput("The clue cannot be a word on the grid")

        self.current_clue = {
            "word": word,
            "count": count,
            "team": self.current_team,
            "fromId": actor_id,
            "from": participant.name,
        }
        self.clues.append(dict(self.current_clue))
        self.guesses_remaining = count + 1
        self.phase = "guessing"
        self.add_history(f"{self.current_team.upper()} clue-giver: \"{word}\" for {count}.")
        await self.broadcast_state()

    async def make_guess(self, participant: Participant, payload: Any) -> None:
        actor_id = participant.participant_id
        team = self.team_of(actor_id)
        if team is None:
            raise Forbidden("You are not on a team")
        if self.is_clue_giver(actor_id):
            raise Forbidden("Clue-givers cannot guess")
        if team != self.current_team:
            raise InvalidState("It is not your team's turn")
        if self.phase != "guessing" or self.current_clue is None:
            raise InvalidState("Wait for your clue-giver")
        if self.guesses_remaining <= 0:
            raise InvalidState("No guesses remaining")
        cell = self._cell(payload)
        if cell["revealed"]:
            raise InvalidInput("That word is already revealed")

        cell["revealed"] = True
        cell["revealedBy"] = team
        self.guesses_remaining -= 1
        color = cell["color"]
        self.add_history(f"{participant.name} ({team.upper()}) guessed \"{cell['word']}\": {color.upper()}.")

        if color == "forbidden":
            await self._finish(other_team(team), "forbidden_word")
            return
        if color == team:
            self.found[team] += 1
            if self.found[team] >= self.totals[team]:
                await self._finish(team, "all_words_found")
                return
            if self.guesses_remaining <= 0:
                await self._pass_turn("Out of guesses.")
                return
            await self.broadcast_state()
            return
        if color != "neutral":
            opponent = other_team(team)
            self.found[opponent] += 1
            if self.found[opponent] >= self.totals[opponent]:
                await self._finish(opponent, "all_words_found")
                return
        await self._pass_turn("Wrong guess.")

    async def end_turn(self, participant: Participant, payload: Any) -> None:
        actor_id = participant.participant_id
        team = self.team_of(actor_id)
        if team != self.current_team:
            raise InvalidState("It is not your team's turn")
        if self.is_clue_giver(actor_id):
            if len(self.teams[team]) > 1:
                raise Forbidden("Only guessers can end the turn")
        elif self.phase != "guessing":
            raise InvalidState("Wait for your clue-giver")
        await self._pass_turn(f"{participant.name} ended the turn.")

    async def _finish(self, winner: Team | None, reason: str) -> None:
        for cell in self.grid:
            cell["revealed"] = True
        await self.end(
            {
                "winner": winner,
                "reason": reason,
                "finalScore": dict(self.found),
            }
        )

    async def on_timer_expire(self) -> None:
        if self.phase in {"clue", "guessing"}:
            await self._pass_turn("Time ran out.")

    async def on_participant_departure(self, participant_id: str) -> None:
        if self.finished:
            return
        team = self.team_of(participant_id)
        if team is None:
            return
        self.player_ids = [pid for pid in self.player_ids if pid != participant_id]
        self.teams[team].remove(participant_id)
        self.add_history(f"{self.name_of(participant_id)} left the {team.upper()} team.")

        if not self.teams[team]:
            await self._finish(None, "insufficient_participants")
            return
        if self.clue_givers[team] == participant_id:
            self.clue_givers[team] = self.teams[team][0]
            self.add_history(f"{self.name_of(self.clue_givers[team])} is now the {team.upper()} clue-giver.")
        await self.broadcast_state()

    # Views

    def _team_view(self, team: Team) -> dict[str, Any]:
        return {
            "players": [self.describe(pid) for pid in self.teams[team]],
            "clueGiver": self.describe(self.clue_givers[team]),
            "wordsFound": self.found[team],
            "wordsTotal": self.totals[team],
        }

    def build_view(self, viewer_id: str | None) -> dict[str, Any]:
        view = self.base_view(viewer_id)
        sees_key = self.is_clue_giver(viewer_id) or self.finished
        view.update(
            {
                "teams": {team: self._team_view(team) for team in TEAMS},
                "myTeam": self.team_of(viewer_id),
                "isClueGiver": self.is_clue_giver(viewer_id),
                "currentTeam": self.current_team,
                "currentClue": self.current_clue,
                "guessesRemaining": self.guesses_remaining,
                "grid": [
                    {
                        "index": cell["index"],
                        "word": cell["word"],
                        "revealed": cell["revealed"],
                        "color": cell["color"] if cell["revealed"] or sees_key else None,
                        "row": cell["row"],
                        "col": cell["col"],
                    }
                    for cell in self.grid
                ],
                "clues": self.clues[-10:],
                "history": self.history[-10:],
            }
        )
        return view

    def build_reveal(self) -> dict[str, Any]:
        return {
            "grid": [
                {"index": cell["index"], "word": cell["word"], "color": cell["color"], "revealedBy": cell["revealedBy"]}
                for cell in self.grid
            ],
            "teams": {team: self._team_view(team) for team in TEAMS},
            "clues": list(self.clues),
        }
