"""In-memory win counter ranked for the leaderboard view."""

from __future__ import annotations

from typing import Any, Dict, List

from .observability import get_logger

DEFAULT_LIMIT = 10

LOGGER = get_logger(__name__)


class Leaderboard:
    """Username -> win count. Counts only ever go up."""

    def __init__(self) -> None:
        self._wins: Dict[str, int] = {}

    def record_win(self, username: str) -> int:
        wins = self._wins.get(username, 0) + 1
        self._wins[username] = wins
        LOGGER.info(
            "leaderboard_updated",
            extra={"event": "leaderboard_updated", "username": username, "wins": wins},
        )
        return wins

    def wins(self, username: str) -> int:
        return self._wins.get(username, 0)

    def ranked(self, limit: int = DEFAULT_LIMIT) -> List[Dict[str, Any]]:
        """Return ``{rank, username, wins}`` rows, most wins first."""

        ordered = sorted(self._wins.items(), key=lambda item: item[1], reverse=True)
        if limit > 0:
            ordered = ordered[:limit]
        return [
            {"rank": idx, "username": username, "wins": wins}
            for idx, (username, wins) in enumerate(ordered, 1)
        ]


__all__ = ["DEFAULT_LIMIT", "Leaderboard"]
