"""Connected player sessions and outbound event delivery."""
from __future__ import annotations

from typing import Any, Dict, List, Tuple

from .observability import get_logger

USERNAME_MAX_LENGTH = 16

LOGGER = get_logger(__name__)


def default_username(session_id: str) -> str:
    return f"Anon_{session_id[:4]}"


def clean_username(raw: Any, session_id: str) -> str:
    """Trim and truncate a requested display name, falling back to the default."""

    text = raw.strip()[:USERNAME_MAX_LENGTH] if isinstance(raw, str) else ""
    return text or default_username(session_id)


class Session:
    """One connected client.

    Subclasses implement :meth:`deliver`; :meth:`emit` drops events once the
    session is disconnected.
    """

    def __init__(self, session_id: str, username: str | None = None) -> None:
        self.id = session_id
        self.username = username or default_username(session_id)
        self.connected = True
        self.match_id: str | None = None

    async def emit(self, event: str, data: Any = None) -> None:
        if not self.connected:
            LOGGER.debug(
                "emit_skipped",
                extra={"event": "emit_skipped", "session_id": self.id, "outbound": event},
            )
            return
        await self.deliver(event, data)

    async def deliver(self, event: str, data: Any) -> None:
        raise NotImplementedError

    def __repr__(self) -> str:  # pragma: no cover - debugging aid
        return f"{type(self).__name__}(id={self.id!r})"


class RecordingSession(Session):
    """Session that keeps every delivered event in memory."""

    def __init__(self, session_id: str, username: str | None = None) -> None:
        super().__init__(session_id, username)
        self.events: List[Tuple[str, Any]] = []

    async def deliver(self, event: str, data: Any) -> None:
        self.events.append((event, data))

    def names(self) -> List[str]:
        return [name for name, _ in self.events]

    def last(self, event: str) -> Any:
        for name, data in reversed(self.events):
            if name == event:
                return data
        raise KeyError(event)

    def of(self, event: str) -> List[Dict[str, Any]]:
        return [data for name, data in self.events if name == event]


__all__ = [
    "USERNAME_MAX_LENGTH",
    "Session",
    "RecordingSession",
    "clean_username",
    "default_username",
]
