"""
TTL cache for computed payloads.

One cache replaces the per-screen caches: freshness is declared once per key
kind instead of being re-implemented by every consumer. There is no locking;
writes are last-writer-wins because recomputation is idempotent. Every
invalidation bumps a generation counter; a recomputation that started in an
older generation returns its payload without storing it.
"""

import time
from collections.abc import Awaitable, Callable, Hashable
from dataclasses import dataclass
from enum import Enum
from typing import Any, Final, TypeVar

import structlog

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class CacheKind(str, Enum):
    """TTL classes. Grade aggregates change often; one student's history rarely."""

    GRADE = "grade"
    STUDENT = "student"


DEFAULT_TTLS: Final[dict[CacheKind, float]] = {
    CacheKind.GRADE: 60.0,
    CacheKind.STUDENT: 300.0,
}


class _Stale:
    """Sentinel returned by CacheLayer.get for missing or expired entries."""

    _instance: "_Stale | None" = None

    def __new__(cls) -> "_Stale":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "STALE"


STALE: Final = _Stale()


@dataclass
class CacheEntry:
    key: Hashable
    kind: CacheKind
    payload: Any
    last_updated: float


class CacheLayer:
    """
    Keyed memoization with a TTL per key kind.

    Keys are namespaced by kind, so grade "3" and student "3" never collide.
    An entry is fresh while `now - last_updated < ttl(kind)`.
    """

    def __init__(
        self,
        ttls: dict[CacheKind, float] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttls = {**DEFAULT_TTLS, **(ttls or {})}
        self._clock = clock
        self._entries: dict[tuple[CacheKind, Hashable], CacheEntry] = {}
        self.generation = 0
        self.logger = logger.bind(component="cache_layer")

    def ttl(self, kind: CacheKind) -> float:
        return self.ttls[kind]

    def get(self, key: Hashable, kind: CacheKind = CacheKind.GRADE) -> Any:
        """Cached payload if fresh, otherwise STALE."""
        entry = self._entries.get((kind, key))
        if entry is None:
            return STALE
        age = self._clock() - entry.last_updated
        if age < self.ttl(kind):
            return entry.payload
        return STALE

    def set(self, key: Hashable, payload: Any, kind: CacheKind = CacheKind.GRADE) -> None:
        self._entries[(kind, key)] = CacheEntry(
            key=key, kind=kind, payload=payload, last_updated=self._clock()
        )

    def invalidate(self, key: Hashable | None = None, kind: CacheKind | None = None) -> None:
        """
        Drop entries so the next read recomputes.

        With no key every entry goes. With a key but no kind, the key is
        dropped from every kind. Recomputations already in flight will not
        store their payloads.
        """
        if key is None:
            dropped = len(self._entries)
            self._entries.clear()
        else:
            kinds = [kind] if kind is not None else list(CacheKind)
            dropped = sum(1 for k in kinds if self._entries.pop((k, key), None) is not None)
        self.generation += 1
        self.logger.debug("cache_invalidated", key=key, kind=kind, dropped=dropped)

    def get_or_compute(self, key: Hashable, kind: CacheKind, compute: Callable[[], T]) -> T:
        cached = self.get(key, kind)
        if cached is not STALE:
            self.logger.debug("cache_hit", key=key, kind=kind.value)
            return cached
        self.logger.debug("cache_miss", key=key, kind=kind.value)
        payload = compute()
        self.set(key, payload, kind)
        return payload

    async def get_or_compute_async(
        self, key: Hashable, kind: CacheKind, compute: Callable[[], Awaitable[T]]
    ) -> T:
        """Like get_or_compute, awaiting the recomputation on a miss.

        A failed recomputation leaves the cache untouched and propagates. A
        payload computed across an invalidation is returned but not stored.
        """
        cached = self.get(key, kind)
        if cached is not STALE:
            self.logger.debug("cache_hit", key=key, kind=kind.value)
            return cached
        self.logger.debug("cache_miss", key=key, kind=kind.value)
        generation = self.generation
        payload = await compute()
        if generation != self.generation:
            self.logger.debug("cache_store_skipped", key=key, kind=kind.value)
            return payload
        self.set(key, payload, kind)
        return payload

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, item: tuple[CacheKind, Hashable]) -> bool:
        return item in self._entries
