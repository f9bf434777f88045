"""Time-keyed cache with lazy expiry."""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Generic, TypeVar

logger = logging.getLogger(__name__)

V = TypeVar("V")


class TTLCache(Generic[V]):
    """Maps a string key to ``(value, expires_at)``.

    Expiry is only checked on read; there is no background sweeping.  A
    stale entry is recomputed by :meth:`get_or_compute` and overwritten.

    Args:
        ttl_seconds: Maximum age of an entry before it must be recomputed.
        clock: Monotonic seconds source.  Defaults to :func:`time.monotonic`.
    """

    def __init__(
        self,
        ttl_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl_seconds
        self._clock = clock
        self._lock = threading.RLock()
        self._entries: dict[str, tuple[V, float]] = {}

    def get(self, key: str) -> V | None:
        """Return the cached value for *key*, or ``None`` if absent or stale."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if self._clock() >= expires_at:
                return None
            return value

    def set(self, key: str, value: V) -> None:
        with self._lock:
            self._entries[key] = (value, self._clock() + self._ttl)

    def get_or_compute(self, key: str, compute: Callable[[], V]) -> V:
        """Return the fresh cached value for *key*, computing and storing it on a miss."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and self._clock() < entry[1]:
                return entry[0]
            value = compute()
            self.set(key, value)
            logger.debug("Cache entry %r recomputed.", key)
            return value

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
