"""Tests for the debate-objection game."""
from __future__ import annotations

import pytest

from conftest import client_for, start_game
from partyhub.runtime_constants import OBJECTION_STARTING_LIVES


async def debate(runtime, names):
    room, clients = await start_game(runtime, "objection", names)
    game = room.game
    speaker = client_for(clients, game.speaker_id)
    others = [client for client in clients if client is not speaker]
    return room, game, speaker, others


async def object_and_finish(game, objector, text="That is simply not true"):
    await objector.send("submit-objection", text=text)
    assert game.phase == "objection"
    await objector.send("finish-objection-argument")
    assert game.phase == "voting"


class TestArguing:
    @pytest.mark.asyncio
    async def test_everyone_starts_with_full_lives(self, runtime):
        room, game, speaker, others = await debate(runtime, ["Ana", "Ben", "Cy"])

        assert game.phase == "arguing"
        assert game.topic
        assert set(game.lives.values()) == {OBJECTION_STARTING_LIVES}
        assert speaker.game_state()["speaker"]["id"] == speaker.participant_id

    @pytest.mark.asyncio
    async def test_unchallenged_speaker_wins(self, runtime):
        """Five players; the argument clock runs out with no objection."""
        room, game, speaker, others = await debate(runtime, ["Ana", "Ben", "Cy", "Dee", "Eve"])
        others[0].ws.clear()

        await game.on_timer_expire()

        result = others[0].ws.last("game-result")
        assert result["winner"]["id"] == speaker.participant_id
        assert result["reason"] == "argument_unchallenged"
        assert game.finished

    @pytest.mark.asyncio
    async def test_speaker_cannot_object_to_self(self, runtime):
        room, game, speaker, others = await debate(runtime, ["Ana", "Ben", "Cy"])
        await speaker.send("submit-objection", text="I disagree with me")
        assert speaker.error_code() == "INVALID_INPUT"

    @pytest.mark.asyncio
    async def test_empty_objection_rejected(self, runtime):
        room, game, speaker, others = await debate(runtime, ["Ana", "Ben", "Cy"])
        await others[0].send("submit-objection", text="   ")
        assert others[0].error_code() == "INVALID_INPUT"
        assert game.phase == "arguing"

    @pytest.mark.asyncio
    async def test_only_objector_finishes(self, runtime):
        room, game, speaker, others = await debate(runtime, ["Ana", "Ben", "Cy"])
        await others[0].send("submit-objection", text="Nope")
        await others[1].send("finish-objection-argument")
        assert others[1].error_code() == "FORBIDDEN"

    @pytest.mark.asyncio
    async def test_objection_timer_opens_voting(self, runtime):
        room, game, speaker, others = await debate(runtime, ["Ana", "Ben", "Cy"])
        await others[0].send("submit-objection", text="Nope")
        await game.on_timer_expire()
        assert game.phase == "voting"


class TestVerdicts:
    @pytest.mark.asyncio
    async def test_sustained_objector_takes_the_floor(self, runtime):
        room, game, speaker, others = await debate(runtime, ["Ana", "Ben", "Cy"])
        objector, bystander = others
        await object_and_finish(game, objector, text="Pineapple belongs on pizza")

        await speaker.send("cast-vote", verdict="sustain")
        await bystander.send("cast-vote", verdict="sustain")

        assert game.phase == "arguing"
        assert game.speaker_id == objector.participant_id
        assert game.topic == "Pineapple belongs on pizza"
        assert game.lives[objector.participant_id] == OBJECTION_STARTING_LIVES

    @pytest.mark.asyncio
    async def test_tied_vote_overrules(self, runtime):
        room, game, speaker, others = await debate(runtime, ["Ana", "Ben", "Cy"])
        objector, bystander = others
        old_topic = game.topic
        await object_and_finish(game, objector)

        await speaker.send("cast-vote", verdict="overrule")
        await bystander.send("cast-vote", verdict="sustain")

        assert game.lives[objector.participant_id] == OBJECTION_STARTING_LIVES - 1
        assert game.speaker_id == objector.participant_id
        assert game.topic != old_topic
        assert objector.game_state()["myLives"] == OBJECTION_STARTING_LIVES - 1

    @pytest.mark.asyncio
    async def test_voting_timeout_without_votes_overrules(self, runtime):
        room, game, speaker, others = await debate(runtime, ["Ana", "Ben", "Cy"])
        objector = others[0]
        await object_and_finish(game, objector)

        await game.on_timer_expire()
        assert game.lives[objector.participant_id] == OBJECTION_STARTING_LIVES - 1

    @pytest.mark.asyncio
    async def test_objector_cannot_vote(self, runtime):
        room, game, speaker, others = await debate(runtime, ["Ana", "Ben", "Cy"])
        objector = others[0]
        await object_and_finish(game, objector)

        await objector.send("cast-vote", verdict="sustain")
        assert objector.error_code() == "FORBIDDEN"
        assert objector.game_state()["voting"]["canVote"] is False

    @pytest.mark.asyncio
    async def test_unknown_verdict_rejected(self, runtime):
        room, game, speaker, others = await debate(runtime, ["Ana", "Ben", "Cy"])
        await object_and_finish(game, others[0])

        await speaker.send("cast-vote", verdict="maybe")
        assert speaker.error_code() == "INVALID_INPUT"

    @pytest.mark.asyncio
    async def test_last_life_lost_leaves_last_standing(self, runtime):
        room, game, speaker, others = await debate(runtime, ["Ana", "Ben", "Cy"])
        first, second = others
        game.lives[first.participant_id] = 1
        await object_and_finish(game, first)
        await speaker.send("cast-vote", verdict="overrule")
        await second.send("cast-vote", verdict="overrule")

        assert first.participant_id in game.eliminated
        assert game.lives[first.participant_id] == 0
        assert not game.finished

        standing = client_for(others + [speaker], game.speaker_id)
        challenger = speaker if standing is second else second
        game.lives[challenger.participant_id] = 1
        await object_and_finish(game, challenger)
        await standing.send("cast-vote", verdict="overrule")

        result = speaker.ws.last("game-result")
        assert result["reason"] == "last_standing"
        assert result["winner"]["id"] == standing.participant_id
        assert result["reveal"]["survivors"] == [result["winner"]]

    @pytest.mark.asyncio
    async def test_eliminated_player_cannot_object(self, runtime):
        room, game, speaker, others = await debate(runtime, ["Ana", "Ben", "Cy", "Dee"])
        loser = others[0]
        game.lives[loser.participant_id] = 1
        await object_and_finish(game, loser)
        for voter in [speaker] + others[1:]:
            await voter.send("cast-vote", verdict="overrule")

        await loser.send("submit-objection", text="Let me back in")
        assert loser.error_code() == "FORBIDDEN"


class TestTopics:
    @pytest.mark.asyncio
    async def test_reroll_needs_majority(self, runtime):
        room, game, speaker, others = await debate(runtime, ["Ana", "Ben", "Cy", "Dee", "Eve"])
        old_topic = game.topic

        await others[0].send("reroll-vote")
        await others[1].send("reroll-vote")
        assert game.topic == old_topic
        reroll = others[0].game_state()["reroll"]
        assert reroll["required"] == 3
        assert reroll["voted"] is True

        await others[2].send("reroll-vote")
        assert game.topic != old_topic
        assert game.reroll_votes == set()
        assert game.phase == "arguing"

    @pytest.mark.asyncio
    async def test_only_host_toggles_pool(self, runtime):
        room, game, speaker, others = await debate(runtime, ["Ana", "Ben", "Cy"])
        host = next(client for client in [speaker] + others if client.participant_id == room.host().participant_id)
        guest = next(client for client in [speaker] + others if client is not host)

        await guest.send("toggle-topic-pool", enabled=True)
        assert guest.error_code() == "FORBIDDEN"
        assert game.use_spicy_topics is False

        await host.send("toggle-topic-pool", enabled=True)
        assert game.use_spicy_topics is True
        assert guest.game_state()["useSpicyTopics"] is True


class TestDepartures:
    @pytest.mark.asyncio
    async def test_objector_leaving_withdraws_objection(self, runtime):
        room, game, speaker, others = await debate(runtime, ["Ana", "Ben", "Cy", "Dee"])
        objector = others[0]
        await objector.send("submit-objection", text="Hold on")
        await objector.send("leave-room")

        assert game.phase == "arguing"
        assert game.objector_id is None
        assert game.speaker_id == speaker.participant_id

    @pytest.mark.asyncio
    async def test_speaker_leaving_hands_floor_to_objector(self, runtime):
        room, game, speaker, others = await debate(runtime, ["Ana", "Ben", "Cy", "Dee"])
        objector = others[0]
        await objector.send("submit-objection", text="Hold on")
        await speaker.send("leave-room")

        assert game.phase == "arguing"
        assert game.speaker_id == objector.participant_id

    @pytest.mark.asyncio
    async def test_departures_down_to_one_player(self, runtime):
        room, game, speaker, others = await debate(runtime, ["Ana", "Ben", "Cy"])
        await others[0].send("leave-room")
        await others[1].send("leave-room")

        result = speaker.ws.last("game-result")
        assert result["reason"] == "last_standing"
        assert result["winner"]["id"] == speaker.participant_id
