"""Inbound event handlers tying sessions to the registry, resolver and leaderboard."""
from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional

from .damage import DamagePolicy, calculate_damage
from .errors import InternalError, PokeDuelError, ValidationError
from .leaderboard import Leaderboard
from .observability import generate_trace_id, get_logger, metrics, register_health_probe
from .registry import MatchRegistry
from .resolver import PokemonResolver
from .sessions import Session, clean_username

LOGGER = get_logger(__name__)

Handler = Callable[[Session, Any], Awaitable[None]]


def _field(data: Any, name: str) -> Any:
    if not isinstance(data, Mapping):
        raise ValidationError("Event payload must be an object.", context={"field": name})
    return data.get(name)


class GameService:
    """One instance per server process; tests build a fresh one each."""

    def __init__(
        self,
        resolver: PokemonResolver,
        *,
        available_ids: Iterable[int] = (),
        leaderboard: Optional[Leaderboard] = None,
        damage_policy: DamagePolicy = calculate_damage,
        registry: Optional[MatchRegistry] = None,
    ) -> None:
        self.resolver = resolver
        self.available_ids = list(available_ids)
        self.leaderboard = leaderboard or Leaderboard()
        self.registry = registry or MatchRegistry(resolver, self.leaderboard, damage_policy=damage_policy)
        self.catalogue: List[Dict[str, Any]] = []
        self.sessions: Dict[str, Session] = {}
        self._handlers: Dict[str, Handler] = {
            "setUsername": self.set_username,
            "findMatch": self.find_match,
            "selectTeam": self.select_team,
            "performAction": self.perform_action,
            "getLeaderboard": self.get_leaderboard,
            "requestAvailableCreatures": self.request_available_creatures,
        }

    def register_health(self) -> None:
        register_health_probe("registry", self.health)

    def health(self) -> Dict[str, Any]:
        return {
            "active_matches": len(self.registry),
            "waiting": self.registry.waiting is not None,
            "connected_sessions": len(self.sessions),
            "cached_creatures": len(self.resolver.creatures),
            "cached_moves": len(self.resolver.moves),
            "pending_fetches": self.resolver.creatures.pending_count + self.resolver.moves.pending_count,
            "catalogue_size": len(self.catalogue),
        }

    async def initialise(self) -> List[Dict[str, Any]]:
        self.catalogue = await self.resolver.load_catalogue(self.available_ids)
        return self.catalogue

    # -- connection lifecycle ------------------------------------------

    async def connect(self, session: Session) -> None:
        self.sessions[session.id] = session
        LOGGER.info("session_connected", extra={"event": "session_connected", "session_id": session.id})
        await session.emit("availableCreatures", list(self.catalogue))

    async def disconnect(self, session: Session, reason: str = "closed") -> None:
        session.connected = False
        self.sessions.pop(session.id, None)
        LOGGER.info(
            "session_disconnected",
            extra={"event": "session_disconnected", "session_id": session.id, "reason": reason},
        )
        await self.registry.handle_disconnect(session)

    async def dispatch(self, session: Session, event: Any, data: Any = None) -> None:
        """Route one inbound event; failures are reported to ``session`` only."""

        handler = self._handlers.get(event) if isinstance(event, str) else None
        trace_id = generate_trace_id()
        try:
            if handler is None:
                raise ValidationError("Unknown event.", context={"inbound": str(event)})
            await handler(session, data)
        except PokeDuelError as exc:
            await self._report(session, exc, trace_id, inbound=str(event))

    async def reject(self, session: Session, exc: PokeDuelError, *, inbound: str = "frame") -> None:
        """Report an error raised outside :meth:`dispatch`, e.g. an undecodable frame."""

        await self._report(session, exc, generate_trace_id(), inbound=inbound)

    async def _report(self, session: Session, exc: PokeDuelError, trace_id: str, *, inbound: str) -> None:
        if isinstance(exc, ValidationError):
            metrics.increment("pokeduel_invalid_actions_total")
        LOGGER.warning(
            "event_rejected",
            extra={
                "event": "event_rejected",
                "trace_id": trace_id,
                "session_id": session.id,
                "inbound": inbound,
                "error": exc.to_payload(),
            },
        )
        await session.emit("gameError", exc.to_payload(trace_id=trace_id))

    # -- handlers -------------------------------------------------------

    async def set_username(self, session: Session, name: Any) -> None:
        session.username = clean_username(name, session.id)
        await session.emit("usernameSet", session.username)

    async def find_match(self, session: Session, _data: Any = None) -> None:
        if session.match_id is not None and session.match_id in self.registry:
            raise ValidationError("You are already in a match.", context={"match_id": session.match_id})
        await self.registry.request_match(session)

    async def request_available_creatures(self, session: Session, _data: Any = None) -> None:
        await session.emit("availableCreatures", list(self.catalogue))

    async def get_leaderboard(self, session: Session, _data: Any = None) -> None:
        await session.emit("leaderboardData", self.leaderboard.ranked())

    async def select_team(self, session: Session, data: Any) -> None:
        match = self.registry.get(_field(data, "matchId"))
        try:
            result = await match.submit_team(session.id, _field(data, "teamIds"))
        except PokeDuelError:
            raise
        except Exception as exc:
            LOGGER.exception(
                "team_selection_failed",
                extra={"event": "team_selection_failed", "match_id": match.id, "session_id": session.id},
            )
            raise InternalError("An internal error occurred during team selection.") from exc

        if result.battle_started:
            await self.registry.broadcast(match.id, "battleStart", match.snapshot())
            return
        opponent = self.registry.session(match.id, result.opponent_id)
        if opponent is not None:
            await opponent.emit("opponentReady")
        await session.emit("waitingForOpponentSelection")

    async def perform_action(self, session: Session, data: Any) -> None:
        match = self.registry.get(_field(data, "matchId"))
        action = _field(data, "action")
        try:
            result = match.perform_action(session.id, action)
        except PokeDuelError:
            raise
        except Exception:
            trace_id = generate_trace_id()
            LOGGER.exception(
                "action_failed",
                extra={"event": "action_failed", "trace_id": trace_id, "match_id": match.id, "session_id": session.id},
            )
            await session.emit(
                "gameError",
                InternalError("Internal server error processing action.").to_payload(trace_id=trace_id),
            )
            if match.id in self.registry:
                await self.registry.broadcast(match.id, "gameStateUpdate", match.snapshot())
            return

        if result.game_over:
            await self.registry.complete(match)
            return
        await self.registry.broadcast(match.id, "gameStateUpdate", match.snapshot())
        if result.forced_switch is not None:
            player_id, reason = result.forced_switch
            target = self.registry.session(match.id, player_id)
            if target is not None:
                await target.emit("forceSwitch", {"reason": reason})


__all__ = ["GameService"]
