"""Small thread-safe TTL cache used by the network-backed sources."""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from threading import Lock
from typing import Generic, TypeVar

K = TypeVar("K")
V = TypeVar("V")


@dataclass(frozen=True, slots=True)
class _Entry(Generic[V]):
    value: V
    stored_at: float


class TTLCache(Generic[K, V]):
    """Key/value cache whose entries expire ``ttl_seconds`` after being stored.

    Expired entries are purged on every ``put``. With ``maxsize`` set, the oldest
    entries are evicted once the cache is full. ``clock`` defaults to
    ``time.monotonic`` and is injectable for tests.
    """

    def __init__(
        self,
        ttl_seconds: float,
        *,
        maxsize: int | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be > 0")
        if maxsize is not None and maxsize <= 0:
            raise ValueError("maxsize must be > 0")
        self._maxsize = maxsize
        self._ttl = float(ttl_seconds)
        self._clock = clock
        self._entries: dict[K, _Entry[V]] = {}
        self._lock = Lock()

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    def get(self, key: K) -> V | None:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if now - entry.stored_at >= self._ttl:
                del self._entries[key]
                return None
            return entry.value

    def put(self, key: K, value: V) -> None:
        now = self._clock()
        with self._lock:
            stale = [k for k, entry in self._entries.items() if now - entry.stored_at >= self._ttl]
            for expired_key in stale:
                del self._entries[expired_key]
            # Re-inserting moves the key to the end, so iteration order is age order.
            self._entries.pop(key, None)
            if self._maxsize is not None:
                while len(self._entries) >= self._maxsize:
                    del self._entries[next(iter(self._entries))]
            self._entries[key] = _Entry(value=value, stored_at=now)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


__all__ = ["TTLCache"]
