"""Structured logging, match-server metrics and the health report."""
from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List

from .errors import sanitize_context

__all__ = [
    "configure_logging",
    "get_logger",
    "metrics",
    "render_metrics",
    "health_snapshot",
    "register_health_probe",
    "generate_trace_id",
]


_STANDARD_ATTRS = set(logging.LogRecord("", 0, "", 0, "", (), None).__dict__.keys())
_LOGGER_NAME = "pokeduel"
_handler: logging.Handler | None = None


class StructuredLogFormatter(logging.Formatter):
    """One JSON object per record; ``extra`` fields land under ``context``."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "event": getattr(record, "event", None) or "log",
            "message": record.getMessage(),
        }
        context = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _STANDARD_ATTRS and key not in {"message", "asctime", "event"}
        }
        if context:
            payload["context"] = sanitize_context(context)
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, sort_keys=True, default=str)


def configure_logging(level: int | str | None = None) -> logging.Logger:
    """Attach the JSON handler to the ``pokeduel`` logger (once) and set its level."""

    global _handler
    logger = logging.getLogger(_LOGGER_NAME)
    if _handler is None:
        _handler = logging.StreamHandler()
        _handler.setFormatter(StructuredLogFormatter())
        logger.addHandler(_handler)
        logger.propagate = False
    if level is not None:
        logger.setLevel(level if isinstance(level, int) else logging.getLevelName(level.upper()))
    elif logger.level == logging.NOTSET:
        logger.setLevel(logging.INFO)
    return logger


def get_logger(name: str | None = None) -> logging.Logger:
    configure_logging()
    if not name:
        return logging.getLogger(_LOGGER_NAME)
    if name.startswith(f"{_LOGGER_NAME}."):
        return logging.getLogger(name)
    return logging.getLogger(f"{_LOGGER_NAME}.{name}")


@dataclass
class _Metric:
    kind: str
    description: str
    value: float = 0.0
    count: int = 0


class MetricsRegistry:
    """Counters, gauges and summaries for the match server.

    Every metric is declared up front; updating an undeclared name raises
    ``KeyError`` so typos surface in tests. Summaries keep only count and sum.
    """

    def __init__(self) -> None:
        self._metrics: Dict[str, _Metric] = {}

    def declare(self, name: str, kind: str, description: str) -> None:
        if kind not in {"counter", "gauge", "summary"}:
            raise ValueError(f"unknown metric kind {kind!r}")
        self._metrics[name] = _Metric(kind, description)

    def increment(self, name: str, amount: float = 1.0) -> None:
        self._metrics[name].value += amount

    def set_gauge(self, name: str, value: float) -> None:
        self._metrics[name].value = value

    def observe(self, name: str, value: float) -> None:
        metric = self._metrics[name]
        metric.value += value
        metric.count += 1

    def value(self, name: str) -> float:
        return self._metrics[name].value

    def snapshot(self) -> Dict[str, Any]:
        view: Dict[str, Any] = {}
        for name, metric in self._metrics.items():
            if metric.kind == "summary":
                view[name] = {"count": metric.count, "sum": metric.value}
            else:
                view[name] = metric.value
        return view

    def render_prometheus(self) -> str:
        lines: List[str] = []
        for name, metric in self._metrics.items():
            lines.append(f"# HELP {name} {metric.description}")
            lines.append(f"# TYPE {name} {metric.kind}")
            if metric.kind == "summary":
                lines.append(f"{name}_count {metric.count}")
                lines.append(f"{name}_sum {metric.value}")
            else:
                lines.append(f"{name} {metric.value}")
        return "\n".join(lines) + "\n"


metrics = MetricsRegistry()
for _name, _kind, _description in (
    ("pokeduel_cache_hits_total", "counter", "Resource cache lookups served from memory."),
    ("pokeduel_cache_misses_total", "counter", "Resource cache lookups that had to wait on a fetch."),
    ("pokeduel_cache_producer_calls_total", "counter", "Remote producer invocations started by the cache."),
    ("pokeduel_cache_producer_failures_total", "counter", "Remote producer invocations that failed."),
    ("pokeduel_matches_created_total", "counter", "Matches paired by the registry."),
    ("pokeduel_matches_finished_total", "counter", "Matches that reached a terminal state."),
    ("pokeduel_invalid_actions_total", "counter", "Client events rejected as invalid."),
    ("pokeduel_active_matches", "gauge", "Matches currently tracked by the registry."),
    ("pokeduel_waiting_players", "gauge", "1 when a player is waiting for an opponent."),
    ("pokeduel_remote_fetch_seconds", "summary", "Remote data source request duration in seconds."),
):
    metrics.declare(_name, _kind, _description)


def render_metrics() -> str:
    return metrics.render_prometheus()


_HEALTH_PROBES: Dict[str, Callable[[], Dict[str, Any]]] = {}


def register_health_probe(name: str, probe: Callable[[], Dict[str, Any]]) -> None:
    """Add a component entry (e.g. registry counts) to :func:`health_snapshot`."""

    _HEALTH_PROBES[name] = probe


def health_snapshot() -> Dict[str, Any]:
    """Status of registered components plus current metric values."""

    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "components": {name: probe() for name, probe in _HEALTH_PROBES.items()},
        "metrics": metrics.snapshot(),
    }


def generate_trace_id() -> str:
    """Short id attached to a ``gameError`` so the player's report matches the log line."""

    return uuid.uuid4().hex[:12]
