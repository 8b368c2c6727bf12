"""Per-match state machine: team selection, turn order and combat resolution."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Protocol, Sequence, Tuple, Union

from .damage import DamagePolicy, calculate_damage
from .errors import InternalError, ResolutionFailure, ValidationError
from .models import TEAM_SIZE, CreatureTemplate, Phase, PlayerSlot
from .observability import get_logger
from .resolver import instantiate

LOGGER = get_logger(__name__)

_TRANSITIONS: Dict[Phase, FrozenSet[Phase]] = {
    Phase.FORMED: frozenset({Phase.SELECTING, Phase.FINISHED}),
    Phase.SELECTING: frozenset({Phase.BATTLING, Phase.FINISHED}),
    Phase.BATTLING: frozenset({Phase.FINISHED}),
    Phase.FINISHED: frozenset(),
}


class TeamResolver(Protocol):
    async def resolve_team(self, identifiers: Sequence[Any]) -> List[Optional[CreatureTemplate]]: ...


@dataclass(frozen=True)
class Attack:
    move_name: str


@dataclass(frozen=True)
class Switch:
    pokemon_index: int


Action = Union[Attack, Switch]


def parse_action(raw: Any) -> Action:
    """Turn a client payload such as ``{"type": "attack", "moveName": "Tackle"}`` into an action."""

    if not isinstance(raw, Mapping):
        raise ValidationError("Action must be an object.", remediation="Send {type, ...}.")
    kind = raw.get("type")
    if kind == "attack":
        move_name = raw.get("moveName")
        if not isinstance(move_name, str) or not move_name:
            raise ValidationError("Attack requires a move name.", context={"action": "attack"})
        return Attack(move_name)
    if kind == "switch":
        index = raw.get("pokemonIndex")
        if not isinstance(index, int) or isinstance(index, bool):
            raise ValidationError("Switch requires a team index.", context={"action": "switch"})
        return Switch(index)
    raise ValidationError("Unknown action type.", context={"type": str(kind)})


def _validate_team_ids(team_ids: Any) -> List[int]:
    if (
        not isinstance(team_ids, (list, tuple))
        or len(team_ids) != TEAM_SIZE
        or not all(isinstance(item, int) and not isinstance(item, bool) for item in team_ids)
    ):
        raise ValidationError(
            f"A team must be exactly {TEAM_SIZE} Pokémon ids.",
            remediation=f"Pick {TEAM_SIZE} Pokémon from the available list.",
        )
    return list(team_ids)


@dataclass
class SelectionResult:
    battle_started: bool
    opponent_id: str


@dataclass
class ActionResult:
    game_over: bool = False
    winner_id: Optional[str] = None
    forced_switch: Optional[Tuple[str, str]] = None


class Match:
    """Authority over one match between two player slots.

    Phases only move forward (``FORMED -> SELECTING -> BATTLING -> FINISHED``)
    and every change goes through :meth:`_advance`.
    """

    def __init__(
        self,
        match_id: str,
        player_one: Tuple[str, str],
        player_two: Tuple[str, str],
        *,
        resolver: TeamResolver,
        damage_policy: DamagePolicy = calculate_damage,
    ) -> None:
        self.id = match_id
        self.resolver = resolver
        self.damage_policy = damage_policy
        first = PlayerSlot(player_id=player_one[0], username=player_one[1], is_player_one=True)
        second = PlayerSlot(player_id=player_two[0], username=player_two[1], is_player_one=False)
        self.order: Tuple[str, str] = (first.player_id, second.player_id)
        self.slots: Dict[str, PlayerSlot] = {first.player_id: first, second.player_id: second}
        self.turn: str = first.player_id
        self.phase = Phase.FORMED
        self.log: List[str] = ["Match found! Select your teams."]
        self.winner_id: Optional[str] = None

    # -- phase handling -------------------------------------------------

    def _advance(self, target: Phase) -> None:
        if target not in _TRANSITIONS[self.phase]:
            raise InternalError(
                f"Illegal phase transition {self.phase.value} -> {target.value}.",
                context={"match_id": self.id},
            )
        LOGGER.debug(
            "match_phase_changed",
            extra={"event": "match_phase_changed", "match_id": self.id, "from": self.phase.value, "to": target.value},
        )
        self.phase = target

    def open_selection(self) -> None:
        self._advance(Phase.SELECTING)

    # -- lookups --------------------------------------------------------

    def slot(self, player_id: str) -> PlayerSlot:
        try:
            return self.slots[player_id]
        except KeyError:
            raise ValidationError("You are not part of this match.", context={"match_id": self.id}) from None

    def opponent_id(self, player_id: str) -> str:
        return self.order[1] if player_id == self.order[0] else self.order[0]

    def opponent_of(self, player_id: str) -> PlayerSlot:
        return self.slots[self.opponent_id(player_id)]

    @property
    def player_one(self) -> PlayerSlot:
        return self.slots[self.order[0]]

    @property
    def player_two(self) -> PlayerSlot:
        return self.slots[self.order[1]]

    # -- team selection -------------------------------------------------

    async def submit_team(self, player_id: str, team_ids: Any) -> SelectionResult:
        """Resolve and store ``player_id``'s team.

        A submission made while another one from the same player is still
        resolving is rejected as already selected. Partial teams are never
        stored.
        """

        slot = self.slot(player_id)
        if self.phase is not Phase.SELECTING or slot.has_selected or slot.selection_pending:
            raise ValidationError("Team already selected.", context={"match_id": self.id})
        ids = _validate_team_ids(team_ids)

        slot.selection_pending = True
        try:
            templates = await self.resolver.resolve_team(ids)
        finally:
            slot.selection_pending = False

        if self.phase is not Phase.SELECTING:
            raise ValidationError("Match is no longer active.", context={"match_id": self.id})
        missing = [ident for ident, template in zip(ids, templates) if template is None]
        if missing:
            raise ResolutionFailure(
                "Could not load Pokémon data for your team.",
                remediation="Submit your team again.",
                context={"match_id": self.id, "missing": missing},
            )

        team = [instantiate(template) for template in templates]
        slot.team = [creature for creature in team if creature is not None]
        slot.active_index = 0
        slot.has_selected = True
        LOGGER.info(
            "team_selected",
            extra={
                "event": "team_selected",
                "match_id": self.id,
                "player_id": player_id,
                "team": [creature.display_name for creature in slot.team],
            },
        )

        opponent = self.opponent_of(player_id)
        if opponent.has_selected:
            self._start_battle()
            return SelectionResult(battle_started=True, opponent_id=opponent.player_id)
        return SelectionResult(battle_started=False, opponent_id=opponent.player_id)

    def _start_battle(self) -> None:
        self._advance(Phase.BATTLING)
        first, second = self.player_one, self.player_two
        for side in (first, second):
            side.active_index = next(
                (idx for idx, creature in enumerate(side.team) if not creature.fainted), 0
            )
        lead, rival = first.active, second.active
        assert lead is not None and rival is not None
        # speed ties go to player one
        self.turn = first.player_id if lead.speed >= rival.speed else second.player_id
        self.log = [
            "Battle Start!",
            f"{first.username}'s {lead.display_name} vs {second.username}'s {rival.display_name}!",
            f"It's {self.slots[self.turn].username}'s turn!",
        ]
        LOGGER.info(
            "battle_started",
            extra={"event": "battle_started", "match_id": self.id, "first_turn": self.turn},
        )

    # -- combat ---------------------------------------------------------

    def perform_action(self, player_id: str, raw_action: Any) -> ActionResult:
        slot = self.slot(player_id)
        if self.phase is not Phase.BATTLING:
            raise ValidationError("The battle is not in progress.", context={"match_id": self.id})
        if self.turn != player_id:
            raise ValidationError("It's not your turn.", context={"match_id": self.id})
        action = parse_action(raw_action)
        if slot.must_switch and not isinstance(action, Switch):
            raise ValidationError(
                "You must switch Pokémon.",
                remediation="Choose a Pokémon that has not fainted.",
                context={"match_id": self.id},
            )
        if isinstance(action, Attack):
            return self._attack(slot, action)
        return self._switch(slot, action)

    def _attack(self, slot: PlayerSlot, action: Attack) -> ActionResult:
        attacker = slot.active
        if attacker is None or attacker.fainted:
            raise ValidationError("Your active Pokémon cannot attack.", context={"match_id": self.id})
        move = attacker.find_move(action.move_name)
        if move is None:
            raise ValidationError("Invalid move.", context={"match_id": self.id, "move": action.move_name})

        opponent = self.opponent_of(slot.player_id)
        defender = opponent.active
        if defender is None:
            raise InternalError("Opponent has no active Pokémon.", context={"match_id": self.id})

        self.log = [f"{slot.username}'s {attacker.display_name} used {move.name}!"]
        damage = self.damage_policy(attacker, defender, move)
        if move.power > 0:
            self.log.append(f"{opponent.username}'s {defender.display_name} took {damage} damage.")
        else:
            self.log.append("It had no effect...")
        defender.take_damage(damage)

        if not defender.fainted:
            self._pass_turn(opponent)
            return ActionResult()

        self.log.append(f"{opponent.username}'s {defender.display_name} fainted!")
        if not opponent.has_standing_creature():
            self._finish(winner=slot, loser=opponent)
            return ActionResult(game_over=True, winner_id=slot.player_id)

        opponent.must_switch = True
        self.turn = opponent.player_id
        self.log.append(f"{opponent.username} must switch Pokémon!")
        return ActionResult(forced_switch=(opponent.player_id, f"{defender.display_name} fainted!"))

    def _switch(self, slot: PlayerSlot, action: Switch) -> ActionResult:
        index = action.pokemon_index
        if (
            index < 0
            or index >= len(slot.team)
            or slot.team[index].fainted
            or index == slot.active_index
        ):
            raise ValidationError("Invalid switch target.", context={"match_id": self.id, "index": index})
        previous = slot.active
        slot.active_index = index
        slot.must_switch = False
        current = slot.team[index]
        self.log = [
            f"{slot.username} switched from {previous.display_name if previous else '?'} to {current.display_name}!"
        ]
        self._pass_turn(self.opponent_of(slot.player_id))
        return ActionResult()

    def _pass_turn(self, to: PlayerSlot) -> None:
        self.turn = to.player_id
        self.log.append(f"It's {to.username}'s turn!")

    def _finish(self, *, winner: PlayerSlot, loser: PlayerSlot) -> None:
        self._advance(Phase.FINISHED)
        self.winner_id = winner.player_id
        self.log.append(f"Game Over! {winner.username} defeated {loser.username}!")
        LOGGER.info(
            "match_finished",
            extra={"event": "match_finished", "match_id": self.id, "winner_id": winner.player_id},
        )

    def forfeit(self, leaver_id: str) -> Optional[str]:
        """End the match because ``leaver_id`` left.

        Returns the remaining player's id when the battle had started (they
        win), otherwise ``None``.
        """

        if self.phase is Phase.FINISHED:
            return None
        winner: Optional[str] = None
        if self.phase is Phase.BATTLING:
            winner = self.opponent_id(leaver_id)
        self._advance(Phase.FINISHED)
        self.winner_id = winner
        return winner

    # -- views ----------------------------------------------------------

    def snapshot(self) -> Dict[str, Any]:
        """Sanitised view of the match sent to both sessions after each change."""

        in_battle = self.phase in (Phase.BATTLING, Phase.FINISHED) and all(
            slot.has_selected for slot in self.slots.values()
        )
        return {
            "matchId": self.id,
            "phase": self.phase.value,
            "battleState": {
                "player1": self.player_one.to_payload() if in_battle else None,
                "player2": self.player_two.to_payload() if in_battle else None,
            },
            "turn": self.turn if in_battle else None,
            "log": list(self.log),
        }


__all__ = [
    "Action",
    "ActionResult",
    "Attack",
    "Match",
    "SelectionResult",
    "Switch",
    "TeamResolver",
    "parse_action",
]
