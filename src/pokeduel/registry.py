"""Matchmaking and match lifecycle."""
from __future__ import annotations

import uuid
from typing import Any, Callable, Dict, Optional, Protocol, Tuple

from .damage import DamagePolicy, calculate_damage
from .errors import DisconnectFault, ValidationError
from .match import Match, TeamResolver
from .models import Phase
from .observability import get_logger, metrics
from .sessions import Session

LOGGER = get_logger(__name__)


class WinRecorder(Protocol):
    def record_win(self, username: str) -> int: ...


def _new_match_id() -> str:
    return str(uuid.uuid4())


class MatchRegistry:
    """Owns the waiting slot and every live :class:`Match`.

    Each match keeps the two sessions it was formed from; that pair is the
    match's communication group and is dropped when the match is removed.
    """

    def __init__(
        self,
        resolver: TeamResolver,
        leaderboard: WinRecorder,
        *,
        id_factory: Callable[[], str] = _new_match_id,
        damage_policy: DamagePolicy = calculate_damage,
    ) -> None:
        self.resolver = resolver
        self.leaderboard = leaderboard
        self._id_factory = id_factory
        self._damage_policy = damage_policy
        self.waiting: Optional[Session] = None
        self._matches: Dict[str, Match] = {}
        self._groups: Dict[str, Tuple[Session, Session]] = {}

    def __len__(self) -> int:
        return len(self._matches)

    def __contains__(self, match_id: object) -> bool:
        return match_id in self._matches

    def _update_gauges(self) -> None:
        metrics.set_gauge("pokeduel_active_matches", float(len(self._matches)))
        metrics.set_gauge("pokeduel_waiting_players", 1.0 if self.waiting is not None else 0.0)

    # -- matchmaking ----------------------------------------------------

    async def request_match(self, session: Session) -> Optional[Match]:
        """Pair ``session`` with the waiting player, or make it the waiting player."""

        waiting = self.waiting
        if waiting is None or waiting.id == session.id or not waiting.connected:
            self.waiting = session
            self._update_gauges()
            LOGGER.info(
                "player_waiting",
                extra={"event": "player_waiting", "session_id": session.id, "username": session.username},
            )
            await session.emit("waitingForOpponent")
            return None

        match = Match(
            self._id_factory(),
            (waiting.id, waiting.username),
            (session.id, session.username),
            resolver=self.resolver,
            damage_policy=self._damage_policy,
        )
        self.waiting = None
        self._matches[match.id] = match
        self._groups[match.id] = (waiting, session)
        waiting.match_id = match.id
        session.match_id = match.id
        match.open_selection()
        metrics.increment("pokeduel_matches_created_total")
        self._update_gauges()
        LOGGER.info(
            "match_found",
            extra={"event": "match_found", "match_id": match.id, "player_one": waiting.id, "player_two": session.id},
        )
        await waiting.emit("matchFound", {"matchId": match.id, "opponentName": session.username})
        await session.emit("matchFound", {"matchId": match.id, "opponentName": waiting.username})
        return match

    def release_if_waiting(self, session: Session) -> bool:
        if self.waiting is not None and self.waiting.id == session.id:
            self.waiting = None
            self._update_gauges()
            return True
        return False

    # -- lookups --------------------------------------------------------

    def get(self, match_id: Any) -> Match:
        match = self._matches.get(match_id) if isinstance(match_id, str) else None
        if match is None:
            raise ValidationError("Game not found.", context={"match_id": str(match_id)})
        return match

    def find_by_session(self, session_id: str) -> Optional[Match]:
        for match in self._matches.values():
            if session_id in match.slots:
                return match
        return None

    def sessions(self, match_id: str) -> Tuple[Session, ...]:
        return self._groups.get(match_id, ())

    def session(self, match_id: str, player_id: str) -> Optional[Session]:
        for session in self.sessions(match_id):
            if session.id == player_id:
                return session
        return None

    # -- delivery -------------------------------------------------------

    async def broadcast(
        self,
        match_id: str,
        event: str,
        data: Any = None,
        *,
        recipients: Optional[Tuple[Session, ...]] = None,
    ) -> None:
        """Send ``event`` to both sessions of the match, or to ``recipients`` when given.

        A lost peer does not stop delivery to the other one; its disconnect is
        handled when the transport reports it.
        """

        for session in self.sessions(match_id) if recipients is None else recipients:
            try:
                await session.emit(event, data)
            except DisconnectFault as exc:
                LOGGER.warning(
                    "broadcast_undelivered",
                    extra={"event": "broadcast_undelivered", "match_id": match_id, "error": exc.to_payload()},
                )

    # -- termination ----------------------------------------------------

    def terminate(self, match_id: str) -> Optional[Match]:
        """Remove the match and release both sessions from its group."""

        match = self._matches.pop(match_id, None)
        for session in self._groups.pop(match_id, ()):
            if session.match_id == match_id:
                session.match_id = None
        if match is not None:
            metrics.increment("pokeduel_matches_finished_total")
            self._update_gauges()
        return match

    async def complete(self, match: Match) -> None:
        """Announce a finished match, credit the winner and remove it."""

        if match.winner_id is None:
            return
        # a peer may drop while these are being sent; keep the group fixed
        group = self.sessions(match.id)
        winner = match.slots[match.winner_id]
        self.leaderboard.record_win(winner.username)
        snapshot = match.snapshot()
        await self.broadcast(match.id, "gameStateUpdate", snapshot, recipients=group)
        await self.broadcast(
            match.id,
            "gameOver",
            {"winnerId": match.winner_id, "finalState": snapshot},
            recipients=group,
        )
        self.terminate(match.id)

    async def handle_disconnect(self, session: Session) -> Optional[Match]:
        """Drop ``session`` from matchmaking and end any match it was in."""

        self.release_if_waiting(session)
        match = self.find_by_session(session.id)
        if match is None:
            return None

        if match.phase is Phase.FINISHED:
            # already decided; complete() is announcing the result
            self.terminate(match.id)
            return match

        leaver = match.slots[session.id]
        remaining_id = match.opponent_id(session.id)
        remaining = self.session(match.id, remaining_id)
        winner_id = match.forfeit(session.id)
        self.terminate(match.id)
        LOGGER.info(
            "player_disconnected",
            extra={"event": "player_disconnected", "match_id": match.id, "session_id": session.id, "winner_id": winner_id},
        )

        if remaining is None or not remaining.connected:
            return match
        if winner_id is not None:
            self.leaderboard.record_win(match.slots[winner_id].username)
            message = f"{leaver.username} disconnected. You win!"
        else:
            message = f"{leaver.username} disconnected. Match cancelled."
        await remaining.emit("opponentDisconnected", {"message": message})
        return match


__all__ = ["MatchRegistry", "WinRecorder"]
