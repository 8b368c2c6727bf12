"""Matchmaking, completion and disconnect handling in the registry."""

from __future__ import annotations

import asyncio
import itertools

import pytest

from pokeduel.errors import DisconnectFault, ValidationError
from pokeduel.leaderboard import Leaderboard
from pokeduel.models import Phase
from pokeduel.registry import MatchRegistry
from pokeduel.resolver import PokemonResolver
from pokeduel.sessions import RecordingSession


def one_hit_ko(attacker, defender, move) -> int:
    return 1000 if move.power > 0 else 0


@pytest.fixture()
def registry(resolver: PokemonResolver) -> MatchRegistry:
    ids = (f"match-{n}" for n in itertools.count(1))
    return MatchRegistry(resolver, Leaderboard(), id_factory=lambda: next(ids), damage_policy=one_hit_ko)


def test_first_player_waits(registry: MatchRegistry) -> None:
    ash = RecordingSession("ash-1", "Ash")

    match = asyncio.run(registry.request_match(ash))

    assert match is None
    assert registry.waiting is ash
    assert ash.names() == ["waitingForOpponent"]


def test_same_session_requesting_twice_keeps_waiting(registry: MatchRegistry) -> None:
    ash = RecordingSession("ash-1", "Ash")

    async def scenario():
        await registry.request_match(ash)
        return await registry.request_match(ash)

    assert asyncio.run(scenario()) is None
    assert registry.waiting is ash
    assert len(registry) == 0
    assert ash.names() == ["waitingForOpponent", "waitingForOpponent"]


def test_second_player_is_paired(registry: MatchRegistry) -> None:
    ash, gary = RecordingSession("ash-1", "Ash"), RecordingSession("gary-1", "Gary")

    async def scenario():
        await registry.request_match(ash)
        return await registry.request_match(gary)

    match = asyncio.run(scenario())

    assert match is not None and match.id == "match-1"
    assert match.phase is Phase.SELECTING
    assert match.order == ("ash-1", "gary-1")
    assert match.log == ["Match found! Select your teams."]
    assert registry.waiting is None
    assert ash.last("matchFound") == {"matchId": "match-1", "opponentName": "Gary"}
    assert gary.last("matchFound") == {"matchId": "match-1", "opponentName": "Ash"}
    assert ash.match_id == gary.match_id == "match-1"
    assert registry.get("match-1") is match


def test_disconnected_waiting_player_is_replaced(registry: MatchRegistry) -> None:
    ash, gary = RecordingSession("ash-1", "Ash"), RecordingSession("gary-1", "Gary")

    async def scenario():
        await registry.request_match(ash)
        ash.connected = False
        return await registry.request_match(gary)

    assert asyncio.run(scenario()) is None
    assert registry.waiting is gary


def test_release_if_waiting(registry: MatchRegistry) -> None:
    ash, gary = RecordingSession("ash-1", "Ash"), RecordingSession("gary-1", "Gary")
    asyncio.run(registry.request_match(ash))

    assert registry.release_if_waiting(gary) is False
    assert registry.waiting is ash
    assert registry.release_if_waiting(ash) is True
    assert registry.waiting is None


def test_unknown_match_is_a_validation_error(registry: MatchRegistry) -> None:
    with pytest.raises(ValidationError, match="Game not found"):
        registry.get("nope")
    with pytest.raises(ValidationError):
        registry.get(None)


def _paired(registry: MatchRegistry):
    ash, gary = RecordingSession("ash-1", "Ash"), RecordingSession("gary-1", "Gary")

    async def scenario():
        await registry.request_match(ash)
        return await registry.request_match(gary)

    return ash, gary, asyncio.run(scenario())


def _battling(registry: MatchRegistry):
    ash, gary, match = _paired(registry)

    async def scenario():
        await match.submit_team("ash-1", [1, 4, 7])
        await match.submit_team("gary-1", [7, 4, 1])

    asyncio.run(scenario())
    return ash, gary, match


def test_disconnect_during_selection_cancels_without_win(registry: MatchRegistry) -> None:
    ash, gary, match = _paired(registry)
    gary.connected = False

    asyncio.run(registry.handle_disconnect(gary))

    assert match.id not in registry
    assert registry.leaderboard.ranked() == []
    assert ash.last("opponentDisconnected") == {"message": "Gary disconnected. Match cancelled."}
    assert ash.match_id is None


def test_disconnect_during_battle_awards_win(registry: MatchRegistry) -> None:
    ash, gary, match = _battling(registry)
    ash.connected = False

    asyncio.run(registry.handle_disconnect(ash))

    assert match.id not in registry
    assert match.phase is Phase.FINISHED
    assert registry.leaderboard.wins("Gary") == 1
    assert registry.leaderboard.wins("Ash") == 0
    assert gary.last("opponentDisconnected") == {"message": "Ash disconnected. You win!"}


def test_disconnect_of_waiting_player_clears_slot(registry: MatchRegistry) -> None:
    ash = RecordingSession("ash-1", "Ash")
    asyncio.run(registry.request_match(ash))

    assert asyncio.run(registry.handle_disconnect(ash)) is None
    assert registry.waiting is None


def test_complete_credits_winner_and_removes_match(registry: MatchRegistry) -> None:
    ash, gary, match = _battling(registry)
    for player, action in [
        ("ash-1", {"type": "attack", "moveName": "Tackle"}),
        ("gary-1", {"type": "switch", "pokemonIndex": 1}),
        ("ash-1", {"type": "attack", "moveName": "Tackle"}),
        ("gary-1", {"type": "switch", "pokemonIndex": 2}),
    ]:
        match.perform_action(player, action)
    result = match.perform_action("ash-1", {"type": "attack", "moveName": "Tackle"})
    assert result.game_over

    asyncio.run(registry.complete(match))

    assert registry.leaderboard.wins("Ash") == 1
    assert match.id not in registry
    for session in (ash, gary):
        assert session.names()[-2:] == ["gameStateUpdate", "gameOver"]
        assert session.last("gameOver")["winnerId"] == "ash-1"
        assert session.last("gameOver")["finalState"]["phase"] == "finished"


class _LostSession(RecordingSession):
    async def deliver(self, event, data) -> None:
        if event != "gameStateUpdate":
            return await super().deliver(event, data)
        self.connected = False
        raise DisconnectFault("Connection lost while sending.", context={"session_id": self.id})


def test_broadcast_reaches_remaining_peer_when_one_is_lost(registry: MatchRegistry) -> None:
    ash, gary = _LostSession("ash-1", "Ash"), RecordingSession("gary-1", "Gary")

    async def scenario():
        await registry.request_match(ash)
        match = await registry.request_match(gary)
        await registry.broadcast(match.id, "gameStateUpdate", {"turn": None})
        return match

    match = asyncio.run(scenario())

    assert match.id in registry
    assert not ash.connected
    assert gary.last("gameStateUpdate") == {"turn": None}


class _DropsOnUpdate(RecordingSession):
    """Loses its connection while the final state is being sent to it."""

    def __init__(self, session_id, username, registry) -> None:
        super().__init__(session_id, username)
        self.registry = registry

    async def deliver(self, event, data) -> None:
        if event == "gameStateUpdate":
            self.connected = False
            await self.registry.handle_disconnect(self)
            return
        await super().deliver(event, data)


def test_loser_dropping_during_completion_still_announces_game_over(registry: MatchRegistry) -> None:
    ash = RecordingSession("ash-1", "Ash")
    gary = _DropsOnUpdate("gary-1", "Gary", registry)

    async def scenario():
        await registry.request_match(ash)
        match = await registry.request_match(gary)
        await match.submit_team("ash-1", [1, 4, 7])
        await match.submit_team("gary-1", [7, 4, 1])
        for player, action in [
            ("ash-1", {"type": "attack", "moveName": "Tackle"}),
            ("gary-1", {"type": "switch", "pokemonIndex": 1}),
            ("ash-1", {"type": "attack", "moveName": "Tackle"}),
            ("gary-1", {"type": "switch", "pokemonIndex": 2}),
            ("ash-1", {"type": "attack", "moveName": "Tackle"}),
        ]:
            match.perform_action(player, action)
        await registry.complete(match)
        return match

    match = asyncio.run(scenario())

    assert match.id not in registry
    assert ash.names()[-2:] == ["gameStateUpdate", "gameOver"]
    assert "opponentDisconnected" not in ash.names()
    assert ash.last("gameOver")["winnerId"] == "ash-1"
    assert registry.leaderboard.wins("Ash") == 1
    assert registry.leaderboard.wins("Gary") == 0
