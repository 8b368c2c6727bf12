"""Value cache with in-flight request coalescing.

A :class:`ResourceCache` maps a resource key to a fetched value and keeps a
table of pending fetches so that concurrent callers asking for the same key
share a single producer invocation. Callers always receive an independent
deep copy, so per-match mutation never reaches the shared entry.
"""
from __future__ import annotations

import asyncio
import copy
import time
from typing import Any, Awaitable, Callable, Dict, Generic, Optional, TypeVar

from .observability import get_logger, metrics

T = TypeVar("T")

Producer = Callable[[str], Awaitable[T]]
Fallback = Callable[[str, BaseException], Optional[T]]

LOGGER = get_logger(__name__)


def _consume_exception(task: "asyncio.Future[Any]") -> None:
    if not task.cancelled():
        task.exception()


class ResourceCache(Generic[T]):
    """Cache one resource class (species, moves, ...) keyed by lower-cased id."""

    def __init__(self, name: str, *, copier: Callable[[T], T] = copy.deepcopy) -> None:
        self.name = name
        self._copy = copier
        self._values: Dict[str, T] = {}
        self._pending: Dict[str, "asyncio.Future[T]"] = {}

    def __contains__(self, key: str) -> bool:
        return key in self._values

    def __len__(self) -> int:
        return len(self._values)

    def is_pending(self, key: str) -> bool:
        return key in self._pending

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def fetch_or_get(
        self,
        key: str,
        producer: Producer[T],
        fallback: Fallback[T] | None = None,
    ) -> Optional[T]:
        """Return a copy of the value for ``key``, producing it at most once.

        On a cache hit the copy is returned without suspending. Otherwise the
        caller joins the pending fetch for ``key`` (starting one if none is in
        flight). When the fetch fails every waiter receives
        ``fallback(key, error)``, or ``None`` without a fallback.
        """

        if key in self._values:
            metrics.increment("pokeduel_cache_hits_total")
            return self._copy(self._values[key])

        metrics.increment("pokeduel_cache_misses_total")
        pending = self._pending.get(key)
        if pending is None:
            LOGGER.debug(
                "cache_miss",
                extra={"event": "cache_miss", "cache": self.name, "key": key},
            )
            pending = asyncio.ensure_future(self._produce(key, producer))
            # mark the failure retrieved even if every waiter was cancelled
            pending.add_done_callback(_consume_exception)
            self._pending[key] = pending

        try:
            # shield: a cancelled waiter must not cancel the fetch other callers share
            value = await asyncio.shield(pending)
        except Exception as exc:
            if fallback is None:
                return None
            return fallback(key, exc)
        return self._copy(value)

    async def _produce(self, key: str, producer: Producer[T]) -> T:
        metrics.increment("pokeduel_cache_producer_calls_total")
        started = time.perf_counter()
        try:
            value = await producer(key)
        except Exception as exc:
            metrics.increment("pokeduel_cache_producer_failures_total")
            LOGGER.warning(
                "cache_producer_failed",
                extra={
                    "event": "cache_producer_failed",
                    "cache": self.name,
                    "key": key,
                    "error": str(exc),
                },
            )
            raise
        else:
            self._values[key] = value
            return value
        finally:
            # cleared before waiters resume, so a later request sees the cache
            # hit path on success and a fresh producer call on failure
            self._pending.pop(key, None)
            metrics.observe("pokeduel_remote_fetch_seconds", time.perf_counter() - started)


__all__ = ["ResourceCache", "Producer", "Fallback"]
