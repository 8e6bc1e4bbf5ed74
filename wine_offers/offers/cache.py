"""In-memory key/value cache with per-entry time-to-live."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Generic, Hashable, Iterator, TypeVar

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


def _wall_clock_ms() -> float:
    return time.time() * 1000


@dataclass
class _Entry(Generic[V]):
    value: V
    expires_at: float


class TTLCache(Generic[K, V]):
    """
    Plain dict-backed cache with a wall-clock expiry check on read.

    Expired entries are dropped lazily when read. Callers that run for a
    long time are expected to call clear() between batches.
    """

    def __init__(
        self,
        default_ttl_ms: float,
        clock: Callable[[], float] = _wall_clock_ms,
    ) -> None:
        self.default_ttl_ms = default_ttl_ms
        self._clock = clock
        self._entries: dict[K, _Entry[V]] = {}

    def get(self, key: K) -> V | None:
        """Return the cached value, or None if missing or expired."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at <= self._clock():
            del self._entries[key]
            return None
        return entry.value

    def set(self, key: K, value: V, ttl_ms: float | None = None) -> None:
        """Store a value for ttl_ms (or the default TTL)."""
        ttl = self.default_ttl_ms if ttl_ms is None else ttl_ms
        self._entries[key] = _Entry(value=value, expires_at=self._clock() + ttl)

    def delete(self, key: K) -> None:
        """Remove a key if present."""
        self._entries.pop(key, None)

    def clear(self) -> None:
        """Remove all entries."""
        self._entries.clear()

    def __contains__(self, key: object) -> bool:
        return self.get(key) is not None  # type: ignore[arg-type]

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[K]:
        return iter(list(self._entries))
