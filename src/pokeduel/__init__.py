"""Two-player Pokémon battle server backed by PokéAPI data."""

from . import (
    cache,
    damage,
    errors,
    leaderboard,
    match,
    models,
    observability,
    registry,
    resolver,
    service,
    sessions,
)
from .cache import ResourceCache
from .match import Match
from .registry import MatchRegistry
from .resolver import PokemonResolver, instantiate

__all__ = [
    "cache",
    "damage",
    "errors",
    "leaderboard",
    "match",
    "models",
    "observability",
    "registry",
    "resolver",
    "service",
    "sessions",
    "Match",
    "MatchRegistry",
    "PokemonResolver",
    "ResourceCache",
    "instantiate",
]
