"""Process-wide TTL cache for read queries against the Zipline API.

Entries are keyed by a canonical fingerprint of the request parameters and
expire lazily on read.  Mutating API calls must invalidate the affected key
(or the whole cache when the blast radius is unknown).
"""

from __future__ import annotations

import json
import threading
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

T = TypeVar("T")

DEFAULT_TTL_SECONDS = 30.0


@dataclass
class CacheEntry(Generic[T]):
    data: T
    created_at: float


class TTLCache(Generic[T]):
    """Thread-safe memoization map with per-entry expiry.

    A single ``threading.Lock`` guards the backing dict, so readers never see a
    half-written entry.  A read racing an invalidation may still return the
    old value; that is the only tolerated inconsistency besides the TTL window.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds if ttl_seconds and ttl_seconds > 0 else DEFAULT_TTL_SECONDS
        self._clock = clock
        self._entries: dict[str, CacheEntry[T]] = {}
        self._lock = threading.Lock()

    @staticmethod
    def generate_key(params: Mapping[str, Any]) -> str:
        """Build an order-independent fingerprint: ``a=1&b="x"``.

        ``None`` values are treated as "not supplied" and dropped.
        """
        items = sorted((k, v) for k, v in params.items() if v is not None)
        return "&".join(
            f"{key}={json.dumps(value, sort_keys=True, separators=(',', ':'))}"
            for key, value in items
        )

    def get(self, key: str) -> T | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._clock() - entry.created_at > self.ttl_seconds:
                del self._entries[key]
                return None
            return entry.data

    def set(self, key: str, data: T) -> None:
        with self._lock:
            self._entries[key] = CacheEntry(data=data, created_at=self._clock())

    def invalidate(self, key: str | None = None) -> None:
        """Drop one key, or everything when ``key`` is None."""
        with self._lock:
            if key is None:
                self._entries.clear()
            else:
                self._entries.pop(key, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
