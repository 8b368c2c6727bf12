"""Centralised error taxonomy for pokeduel."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping

__all__ = [
    "PokeDuelError",
    "DependencyError",
    "ValidationError",
    "ResolutionFailure",
    "RemoteFetchError",
    "InternalError",
    "DisconnectFault",
    "sanitize_context",
]


_SENSITIVE_KEYS = {
    "player_name",
    "username",
    "opponent_name",
    "token",
    "session_token",
    "password",
    "auth",
    "authorization",
}


def _mask_string(value: str) -> str:
    if len(value) <= 4:
        return "*" * len(value)
    return f"{value[:2]}***{value[-2:]}"


def _sanitize_value(key: str, value: Any) -> Any:
    lowered = key.lower()
    if isinstance(value, Mapping):
        return sanitize_context(value)
    if isinstance(value, list):
        return [_sanitize_value(key, item) for item in value]
    if lowered in _SENSITIVE_KEYS:
        if isinstance(value, str):
            return _mask_string(value)
        return "***"
    return value


def sanitize_context(context: Mapping[str, Any]) -> Dict[str, Any]:
    """Return a sanitised copy of contextual logging or error data."""

    return {key: _sanitize_value(key, value) for key, value in context.items()}


@dataclass
class PokeDuelError(Exception):
    """Base class for structured errors reported back to a player session."""

    message: str
    remediation: str | None = None
    context: Dict[str, Any] | None = None
    category: str = "internal_error"

    def __post_init__(self) -> None:  # pragma: no cover - trivial
        super().__init__(self.message)

    def to_payload(self, *, trace_id: str | None = None) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "category": self.category,
            "message": self.message,
        }
        if self.remediation:
            payload["remediation"] = self.remediation
        if self.context:
            payload["context"] = sanitize_context(self.context)
        if trace_id:
            payload["traceId"] = trace_id
        return payload


@dataclass
class DependencyError(PokeDuelError):
    category: str = "dependency_error"


@dataclass
class ValidationError(PokeDuelError):
    """Malformed or out-of-turn client input. No state is changed."""

    category: str = "validation_error"


@dataclass
class ResolutionFailure(PokeDuelError):
    """A creature could not be resolved while building a team."""

    category: str = "resolution_failure"


@dataclass
class RemoteFetchError(PokeDuelError):
    category: str = "remote_fetch_error"


@dataclass
class InternalError(PokeDuelError):
    category: str = "internal_error"


@dataclass
class DisconnectFault(PokeDuelError):
    """A peer left the match; always fatal to the match."""

    category: str = "disconnect"
