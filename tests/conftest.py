"""Shared fixtures: an in-memory stand-in for the PokéAPI data source."""

from __future__ import annotations

import asyncio
import sys
from collections import Counter
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1] / "src"))

from pokeduel.errors import RemoteFetchError  # noqa: E402
from pokeduel.resolver import PokemonResolver  # noqa: E402

MoveSpec = Tuple[str, str, str]  # (move name, learn method, version group)


def species_record(
    pokemon_id: int,
    name: str,
    *,
    hp: int = 50,
    attack: int = 50,
    defense: int = 50,
    speed: int = 50,
    moves: Sequence[MoveSpec] = (),
    abilities: Sequence[Tuple[str, bool]] = (("overgrow", False),),
    sprite: Optional[str] = "https://img.example/sprite.png",
) -> Dict[str, Any]:
    return {
        "id": pokemon_id,
        "name": name,
        "stats": [
            {"base_stat": hp, "stat": {"name": "hp"}},
            {"base_stat": attack, "stat": {"name": "attack"}},
            {"base_stat": defense, "stat": {"name": "defense"}},
            {"base_stat": speed, "stat": {"name": "speed"}},
        ],
        "moves": [
            {
                "move": {"name": move, "url": f"https://pokeapi.example/move/{move}"},
                "version_group_details": [
                    {
                        "move_learn_method": {"name": method},
                        "version_group": {"name": group},
                    }
                ],
            }
            for move, method, group in moves
        ],
        "abilities": [
            {"ability": {"name": ability}, "is_hidden": hidden} for ability, hidden in abilities
        ],
        "sprites": {"front_default": sprite},
    }


def level_up(*names: str) -> List[MoveSpec]:
    return [(name, "level-up", "scarlet-violet") for name in names]


class FakePokeApi:
    """Serves canned species and move records and counts every request.

    Setting ``gate`` to an :class:`asyncio.Event` holds every fetch until the
    event is set, so tests can pile up concurrent callers.
    """

    def __init__(
        self,
        species: Iterable[Dict[str, Any]] = (),
        moves: Optional[Dict[str, Optional[int]]] = None,
    ) -> None:
        self.species: Dict[str, Dict[str, Any]] = {}
        for record in species:
            self.species[str(record["id"])] = record
            self.species[record["name"]] = record
        self.moves: Dict[str, Optional[int]] = dict(moves or {})
        self.failing_moves: set[str] = set()
        self.failing_species: set[str] = set()
        self.species_calls: Counter[str] = Counter()
        self.move_calls: Counter[str] = Counter()
        self.gate: Optional[asyncio.Event] = None

    async def _wait(self) -> None:
        if self.gate is not None:
            await self.gate.wait()
        else:
            await asyncio.sleep(0)

    async def fetch_species(self, identifier: str) -> Dict[str, Any]:
        self.species_calls[identifier] += 1
        await self._wait()
        if identifier in self.failing_species or identifier not in self.species:
            raise RemoteFetchError(f"species {identifier} unavailable", context={"status": 404})
        return self.species[identifier]

    async def fetch_move(self, identifier: str) -> Dict[str, Any]:
        self.move_calls[identifier] += 1
        await self._wait()
        if identifier in self.failing_moves or identifier not in self.moves:
            raise RemoteFetchError(f"move {identifier} unavailable")
        return {"name": identifier, "power": self.moves[identifier]}


DEFAULT_MOVES: Dict[str, Optional[int]] = {
    "tackle": 40,
    "growl": None,
    "vine-whip": 45,
    "scratch": 40,
    "ember": 40,
    "water-gun": 40,
    "tail-whip": None,
    "thunder-shock": 40,
    "quick-attack": 40,
}


def default_species() -> List[Dict[str, Any]]:
    return [
        species_record(
            1, "bulbasaur", hp=45, attack=49, defense=49, speed=45,
            moves=level_up("tackle", "growl", "vine-whip"),
        ),
        species_record(
            4, "charmander", hp=39, attack=52, defense=43, speed=65,
            moves=level_up("scratch", "growl", "ember"),
            abilities=(("blaze", False), ("solar-power", True)),
        ),
        species_record(
            7, "squirtle", hp=44, attack=48, defense=65, speed=43,
            moves=level_up("tackle", "tail-whip", "water-gun"),
            abilities=(("rain-dish", True), ("torrent", False)),
        ),
        species_record(
            25, "pikachu", hp=35, attack=55, defense=40, speed=90,
            moves=level_up("thunder-shock", "growl", "quick-attack", "tail-whip"),
            abilities=(("static", False), ("lightning-rod", True)),
        ),
    ]


@pytest.fixture()
def fake_api() -> FakePokeApi:
    return FakePokeApi(default_species(), DEFAULT_MOVES)


@pytest.fixture()
def resolver(fake_api: FakePokeApi) -> PokemonResolver:
    return PokemonResolver(fake_api)
