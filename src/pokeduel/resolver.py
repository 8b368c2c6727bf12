"""Build battle-ready creature templates from raw PokéAPI records."""
from __future__ import annotations

import asyncio
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, Sequence

from .cache import ResourceCache
from .models import (
    MAX_MOVES_PER_CREATURE,
    BaseStats,
    CreatureInstance,
    CreatureTemplate,
    MoveDescriptor,
)
from .observability import get_logger

DEFAULT_VERSION_GROUP = "scarlet-violet"
LEVEL_UP_METHOD = "level-up"
UNKNOWN_ABILITY = "Unknown"

LOGGER = get_logger(__name__)


class DataSource(Protocol):
    async def fetch_species(self, identifier: str) -> Dict[str, Any]: ...

    async def fetch_move(self, identifier: str) -> Dict[str, Any]: ...


def format_name(raw: str) -> str:
    """``"thunder-shock"`` -> ``"Thunder Shock"``."""

    return " ".join(part[:1].upper() + part[1:] for part in raw.split("-") if part)


def normalize_key(identifier: Any) -> str:
    return str(identifier).strip().lower()


def _stat(record: Mapping[str, Any], name: str) -> int:
    for entry in record.get("stats") or []:
        if entry.get("stat", {}).get("name") == name:
            return int(entry.get("base_stat") or 0)
    return 0


def _learned_by_level_up(move_entry: Mapping[str, Any], version_group: str) -> bool:
    for detail in move_entry.get("version_group_details") or []:
        if (
            detail.get("version_group", {}).get("name") == version_group
            and detail.get("move_learn_method", {}).get("name") == LEVEL_UP_METHOD
        ):
            return True
    return False


def select_move_names(
    record: Mapping[str, Any],
    *,
    version_group: str = DEFAULT_VERSION_GROUP,
    limit: int = MAX_MOVES_PER_CREATURE,
) -> List[str]:
    """Pick up to ``limit`` move names in record order.

    Moves learned by level-up in ``version_group`` come first; remaining
    slots are filled with the other moves of the record, skipping names
    already chosen.
    """

    entries = [entry for entry in record.get("moves") or [] if entry.get("move", {}).get("name")]
    chosen: List[str] = []
    for entry in entries:
        if len(chosen) >= limit:
            break
        if _learned_by_level_up(entry, version_group):
            chosen.append(entry["move"]["name"])
    for entry in entries:
        if len(chosen) >= limit:
            break
        name = entry["move"]["name"]
        if name not in chosen:
            chosen.append(name)
    return chosen


def select_ability(record: Mapping[str, Any]) -> str:
    for entry in record.get("abilities") or []:
        if not entry.get("is_hidden"):
            name = entry.get("ability", {}).get("name")
            if name:
                return format_name(name)
    return UNKNOWN_ABILITY


def placeholder_move(key: str, error: BaseException) -> MoveDescriptor:
    """Zero-power stand-in used when a move lookup fails."""

    LOGGER.warning(
        "move_resolution_failed",
        extra={"event": "move_resolution_failed", "move": key, "error": str(error)},
    )
    return MoveDescriptor(name=format_name(key), power=0, key=key)


def instantiate(template: Optional[CreatureTemplate]) -> Optional[CreatureInstance]:
    """Return a fresh battle instance of ``template`` at full HP, or ``None``."""

    if template is None:
        return None
    hp = max(0, template.base_stats.hp)
    return CreatureInstance(
        id=template.id,
        api_id=template.api_id,
        display_name=template.display_name,
        base_stats=BaseStats(
            hp=template.base_stats.hp,
            attack=template.base_stats.attack,
            defense=template.base_stats.defense,
            speed=template.base_stats.speed,
        ),
        sprite_url=template.sprite_url,
        moves=[MoveDescriptor(move.name, move.power, move.key) for move in template.moves],
        ability_name=template.ability_name,
        max_hp=hp,
        current_hp=hp,
        fainted=hp == 0,
    )


class PokemonResolver:
    """Resolve species identifiers into :class:`CreatureTemplate` values.

    Species and moves are cached separately; concurrent requests for the same
    species or move share one remote call.
    """

    def __init__(
        self,
        source: DataSource,
        *,
        version_group: str = DEFAULT_VERSION_GROUP,
        creatures: Optional[ResourceCache[CreatureTemplate]] = None,
        moves: Optional[ResourceCache[MoveDescriptor]] = None,
    ) -> None:
        self.source = source
        self.version_group = version_group
        self.creatures: ResourceCache[CreatureTemplate] = creatures or ResourceCache("creatures")
        self.moves: ResourceCache[MoveDescriptor] = moves or ResourceCache("moves")

    async def resolve_creature(self, identifier: Any) -> Optional[CreatureTemplate]:
        """Return a template for ``identifier`` or ``None`` when the species fetch fails."""

        key = normalize_key(identifier)
        return await self.creatures.fetch_or_get(key, self._produce_creature)

    async def resolve_move(self, name: str) -> MoveDescriptor:
        key = normalize_key(name)
        move = await self.moves.fetch_or_get(key, self._produce_move, placeholder_move)
        assert move is not None  # placeholder_move never returns None
        return move

    async def _produce_move(self, key: str) -> MoveDescriptor:
        record = await self.source.fetch_move(key)
        power = record.get("power")
        return MoveDescriptor(name=format_name(key), power=int(power) if power is not None else 0, key=key)

    async def _produce_creature(self, key: str) -> CreatureTemplate:
        try:
            record = await self.source.fetch_species(key)
        except Exception as exc:
            LOGGER.error(
                "creature_resolution_failed",
                extra={"event": "creature_resolution_failed", "identifier": key, "error": str(exc)},
            )
            raise

        move_names = select_move_names(record, version_group=self.version_group)
        moves = await asyncio.gather(*(self.resolve_move(name) for name in move_names))

        template = CreatureTemplate(
            id=int(record.get("id") or 0),
            api_id=key,
            display_name=format_name(str(record.get("name") or key)),
            base_stats=BaseStats(
                hp=_stat(record, "hp"),
                attack=_stat(record, "attack"),
                defense=_stat(record, "defense"),
                speed=_stat(record, "speed"),
            ),
            sprite_url=(record.get("sprites") or {}).get("front_default"),
            moves=list(moves),
            ability_name=select_ability(record),
        )
        LOGGER.info(
            "creature_resolved",
            extra={
                "event": "creature_resolved",
                "identifier": key,
                "creature": template.display_name,
                "move_count": len(template.moves),
                "ability": template.ability_name,
            },
        )
        return template

    async def resolve_team(self, identifiers: Sequence[Any]) -> List[Optional[CreatureTemplate]]:
        return list(await asyncio.gather(*(self.resolve_creature(item) for item in identifiers)))

    async def load_catalogue(self, identifiers: Iterable[Any]) -> List[Dict[str, Any]]:
        """Resolve ``identifiers`` (warming the cache) and return selection-screen entries."""

        templates = await self.resolve_team(list(identifiers))
        catalogue = [
            {"id": template.id, "name": template.display_name, "spriteUrl": template.sprite_url}
            for template in templates
            if template is not None
        ]
        if catalogue:
            LOGGER.info(
                "catalogue_initialised",
                extra={"event": "catalogue_initialised", "count": len(catalogue)},
            )
        else:
            LOGGER.error("catalogue_empty", extra={"event": "catalogue_empty"})
        return catalogue


__all__ = [
    "DEFAULT_VERSION_GROUP",
    "UNKNOWN_ABILITY",
    "DataSource",
    "PokemonResolver",
    "format_name",
    "instantiate",
    "normalize_key",
    "placeholder_move",
    "select_ability",
    "select_move_names",
]
