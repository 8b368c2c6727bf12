"""Damage policy used by the match state machine."""
from __future__ import annotations

import math
import random
from typing import Callable, Protocol

from .models import CreatureInstance, MoveDescriptor

RANDOM_FACTOR_MIN = 0.85
RANDOM_FACTOR_MAX = 1.0


class DamagePolicy(Protocol):
    def __call__(
        self,
        attacker: CreatureInstance,
        defender: CreatureInstance,
        move: MoveDescriptor,
    ) -> int: ...


def base_damage(attack: int, defense: int, power: int) -> int:
    """``floor((attack / defense) * power / 8 + 2)``."""

    return math.floor((attack / defense) * power / 8 + 2)


def calculate_damage(
    attacker: CreatureInstance,
    defender: CreatureInstance,
    move: MoveDescriptor,
    *,
    rng: Callable[[float, float], float] = random.uniform,
) -> int:
    """Return the HP the defender loses.

    Status moves (power 0) deal nothing. Damaging moves deal at least 1
    after the random factor in ``[0.85, 1.0]`` is applied.
    """

    if move.power <= 0:
        return 0
    attack = attacker.base_stats.attack
    defense = defender.base_stats.defense
    if attack <= 0 or defense <= 0:
        return 0
    factor = rng(RANDOM_FACTOR_MIN, RANDOM_FACTOR_MAX)
    return max(1, math.floor(base_damage(attack, defense, move.power) * factor))


def seeded_policy(seed: int) -> DamagePolicy:
    """Return a reproducible damage policy backed by its own RNG."""

    generator = random.Random(seed)

    def policy(attacker: CreatureInstance, defender: CreatureInstance, move: MoveDescriptor) -> int:
        return calculate_damage(attacker, defender, move, rng=generator.uniform)

    return policy


__all__ = [
    "RANDOM_FACTOR_MIN",
    "RANDOM_FACTOR_MAX",
    "DamagePolicy",
    "base_damage",
    "calculate_damage",
    "seeded_policy",
]
