"""Tests for the find-the-Outsider game."""
from __future__ import annotations

import pytest

from conftest import client_for, start_game
from partyhub.runtime_constants import LOCATIONS
from partyhub.runtime_reconnect import expire_participant

NAMES = ["Ana", "Ben", "Cy"]


async def deduction(runtime, names=NAMES):
    room, clients = await start_game(runtime, "deduction", names)
    return room, clients, room.game


def pin_outsider(game, clients, index: int):
    game.outsider_id = clients[index].participant_id
    return clients[index]


class TestSetup:
    @pytest.mark.asyncio
    async def test_one_outsider_and_hidden_location(self, runtime):
        room, clients, game = await deduction(runtime)

        assert game.phase == "discussion"
        assert game.outsider_id in game.player_ids
        assert game.location in LOCATIONS
        for client in clients:
            state = client.game_state()
            if client.participant_id == game.outsider_id:
                assert state["isOutsider"] is True
                assert state["location"] is None
            else:
                assert state["isOutsider"] is False
                assert state["location"] == game.location

    @pytest.mark.asyncio
    async def test_questions_are_logged(self, runtime):
        room, clients, game = await deduction(runtime)
        await clients[0].send("ask-question", targetId=clients[1].participant_id, question="Do you like it here?")

        asked = clients[2].ws.last("question-asked")
        assert asked["from"] == "Ana"
        assert asked["to"] == "Ben"
        assert game.questions[0]["question"] == "Do you like it here?"

    @pytest.mark.asyncio
    async def test_cannot_question_yourself(self, runtime):
        room, clients, game = await deduction(runtime)
        await clients[0].send("ask-question", targetId=clients[0].participant_id, question="Me?")
        assert clients[0].error_code() == "INVALID_INPUT"


class TestDiscussion:
    @pytest.mark.asyncio
    async def test_majority_can_end_discussion_early(self, runtime):
        room, clients, game = await deduction(runtime)
        await clients[0].send("early-end-vote")
        assert game.phase == "discussion"

        await clients[1].send("early-end-vote")
        assert game.phase == "voting"

    @pytest.mark.asyncio
    async def test_timer_moves_to_voting(self, runtime):
        room, clients, game = await deduction(runtime)
        await game.on_timer_expire()
        assert game.phase == "voting"

    @pytest.mark.asyncio
    async def test_votes_rejected_during_discussion(self, runtime):
        room, clients, game = await deduction(runtime)
        await clients[0].send("cast-vote", targetId=clients[1].participant_id)
        assert clients[0].error_code() == "INVALID_STATE"


class TestVoting:
    @pytest.mark.asyncio
    async def test_catching_outsider_wins_for_insiders(self, runtime):
        room, clients, game = await deduction(runtime)
        outsider = pin_outsider(game, clients, 2)
        await game.on_timer_expire()

        await clients[0].send("cast-vote", targetId=outsider.participant_id)
        await clients[1].send("cast-vote", targetId=outsider.participant_id)
        await outsider.send("cast-vote", targetId=clients[0].participant_id)

        result = clients[0].ws.last("game-result")
        assert result["winner"] == "insiders"
        assert result["reason"] == "outsider_caught"
        assert result["reveal"]["outsider"]["id"] == outsider.participant_id
        assert result["reveal"]["location"] == game.location

    @pytest.mark.asyncio
    async def test_tie_goes_to_outsider_guess(self, runtime):
        room, clients, game = await deduction(runtime)
        pin_outsider(game, clients, 2)
        await game.on_timer_expire()

        await clients[0].send("cast-vote", targetId=clients[1].participant_id)
        await clients[1].send("cast-vote", targetId=clients[2].participant_id)
        await clients[2].send("cast-vote", targetId=clients[0].participant_id)

        assert game.phase == "outsider-guess"
        assert game.accused_id is None

    @pytest.mark.asyncio
    async def test_revote_overwrites(self, runtime):
        room, clients, game = await deduction(runtime)
        await game.on_timer_expire()
        await clients[0].send("cast-vote", targetId=clients[1].participant_id)
        await clients[0].send("cast-vote", targetId=clients[2].participant_id)

        assert game.votes == {clients[0].participant_id: clients[2].participant_id}
        assert clients[0].game_state()["voting"]["myVote"] == clients[2].participant_id

    @pytest.mark.asyncio
    async def test_outsider_runs_out_of_time(self, runtime):
        room, clients, game = await deduction(runtime)
        pin_outsider(game, clients, 2)
        await game.on_timer_expire()
        await game.on_timer_expire()
        assert game.phase == "outsider-guess"

        await game.on_timer_expire()
        assert clients[1].ws.last("game-result")["reason"] == "outsider_timeout"

    @pytest.mark.asyncio
    async def test_only_outsider_may_guess(self, runtime):
        room, clients, game = await deduction(runtime)
        pin_outsider(game, clients, 2)
        await game.on_timer_expire()
        await game.on_timer_expire()

        await clients[0].send("spy-final-guess", location=game.location)
        assert clients[0].error_code() == "FORBIDDEN"
        assert not game.finished

    @pytest.mark.asyncio
    async def test_wrong_guess_loses(self, runtime):
        room, clients, game = await deduction(runtime)
        outsider = pin_outsider(game, clients, 2)
        await game.on_timer_expire()
        await game.on_timer_expire()

        await outsider.send("spy-final-guess", location="Definitely Not A Place")
        result = outsider.ws.last("game-result")
        assert result["winner"] == "insiders"
        assert result["outsiderGuess"] == "Definitely Not A Place"


class TestScenario:
    @pytest.mark.asyncio
    async def test_outsider_names_location_after_wrong_accusation(self, runtime):
        """Three players, 2-1 vote against an insider, Outsider guesses the location."""
        room, clients, game = await deduction(runtime)
        ana, ben, cy = clients
        outsider = pin_outsider(game, clients, 2)

        await game.on_timer_expire()
        assert game.phase == "voting"

        await ana.send("cast-vote", targetId=ben.participant_id)
        await cy.send("cast-vote", targetId=ben.participant_id)
        await ben.send("cast-vote", targetId=ana.participant_id)

        assert game.accused_id == ben.participant_id
        assert game.phase == "outsider-guess"

        await outsider.send("spy-final-guess", location=game.location.upper())

        result = ana.ws.last("game-result")
        assert result["winner"] == "outsider"
        assert result["reason"] == "outsider_guessed_location"
        assert room.last_result is not None

        await ana.send("cast-vote", targetId=cy.participant_id)
        assert ana.error_code() == "INVALID_STATE"


class TestDepartures:
    @pytest.mark.asyncio
    async def test_outsider_departure_ends_game(self, runtime):
        room, clients, game = await deduction(runtime, ["Ana", "Ben", "Cy", "Dee"])
        outsider = pin_outsider(game, clients, 3)
        await outsider.drop()
        await expire_participant(runtime, room, outsider.participant_id)

        result = clients[0].ws.last("game-result")
        assert result["winner"] == "insiders"
        assert result["reason"] == "outsider_departed"

    @pytest.mark.asyncio
    async def test_too_few_players_ends_without_winner(self, runtime):
        room, clients, game = await deduction(runtime)
        pin_outsider(game, clients, 2)
        await clients[0].send("leave-room")

        result = clients[1].ws.last("game-result")
        assert result["winner"] is None
        assert result["reason"] == "insufficient_participants"

    @pytest.mark.asyncio
    async def test_away_voter_does_not_block_quorum(self, runtime):
        room, clients, game = await deduction(runtime, ["Ana", "Ben", "Cy", "Dee"])
        outsider = pin_outsider(game, clients, 3)
        await game.on_timer_expire()

        await clients[0].send("cast-vote", targetId=outsider.participant_id)
        await clients[1].send("cast-vote", targetId=outsider.participant_id)
        await outsider.send("cast-vote", targetId=clients[0].participant_id)
        assert game.phase == "voting"

        await client_for(clients, clients[2].participant_id).drop()
        assert clients[0].ws.last("game-result")["reason"] == "outsider_caught"
