"""Data model shared by the resolver, the match state machine and the registry."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

TEAM_SIZE = 3
MAX_MOVES_PER_CREATURE = 4


@dataclass
class MoveDescriptor:
    """A resolved move. ``power == 0`` marks a status move."""

    name: str
    power: int
    key: str = ""

    def to_payload(self) -> Dict[str, Any]:
        return {"name": self.name, "power": self.power}


@dataclass
class BaseStats:
    hp: int
    attack: int
    defense: int
    speed: int


@dataclass
class CreatureTemplate:
    """Battle-ready blueprint of a species, shared through the resource cache."""

    id: int
    api_id: str
    display_name: str
    base_stats: BaseStats
    sprite_url: Optional[str]
    moves: List[MoveDescriptor] = field(default_factory=list)
    ability_name: str = "Unknown"

    @property
    def speed(self) -> int:
        return self.base_stats.speed


@dataclass
class CreatureInstance(CreatureTemplate):
    """Per-player copy of a template carrying the mutable battle fields."""

    max_hp: int = 0
    current_hp: int = 0
    fainted: bool = False

    def take_damage(self, amount: int) -> int:
        """Subtract ``amount`` from current HP, flooring at zero.

        Returns the HP actually removed. ``fainted`` is kept equal to
        ``current_hp == 0``.
        """

        removed = min(max(amount, 0), self.current_hp)
        self.current_hp -= removed
        self.fainted = self.current_hp == 0
        return removed

    def find_move(self, name: str) -> Optional[MoveDescriptor]:
        for move in self.moves:
            if move.name == name:
                return move
        return None

    def summary(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.display_name,
            "currentHp": self.current_hp,
            "maxHp": self.max_hp,
            "fainted": self.fainted,
            "spriteUrl": self.sprite_url,
            "abilityName": self.ability_name,
        }


class Phase(str, Enum):
    FORMED = "formed"
    SELECTING = "selecting"
    BATTLING = "battling"
    FINISHED = "finished"


@dataclass
class PlayerSlot:
    """Per-match state for one player."""

    player_id: str
    username: str
    is_player_one: bool
    team: List[CreatureInstance] = field(default_factory=list)
    active_index: int = 0
    has_selected: bool = False
    selection_pending: bool = False
    must_switch: bool = False

    @property
    def active(self) -> Optional[CreatureInstance]:
        if not self.team:
            return None
        return self.team[self.active_index]

    def has_standing_creature(self) -> bool:
        return any(not creature.fainted for creature in self.team)

    def to_payload(self) -> Dict[str, Any]:
        active = self.active
        active_payload: Optional[Dict[str, Any]] = None
        if active is not None:
            active_payload = active.summary()
            active_payload["moves"] = [move.to_payload() for move in active.moves]
        return {
            "id": self.player_id,
            "username": self.username,
            "team": [creature.summary() for creature in self.team],
            "activePokemon": active_payload,
            "activePokemonIndex": self.active_index,
            "mustSwitch": self.must_switch,
        }


__all__ = [
    "TEAM_SIZE",
    "MAX_MOVES_PER_CREATURE",
    "MoveDescriptor",
    "BaseStats",
    "CreatureTemplate",
    "CreatureInstance",
    "Phase",
    "PlayerSlot",
]
