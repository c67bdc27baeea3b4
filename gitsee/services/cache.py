"""
TTL Cache - In-memory cache for short-lived metadata lookups.

Entries expire lazily: an expired entry is only evicted when it is read.
"""

import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional


@dataclass
class CacheEntry:
    """A cached value and its expiry time (clock seconds)."""
    key: str
    value: Any
    expires_at: float


class TTLCache:
    """Map with per-entry expiry, checked on read."""

    def __init__(self, ttl_seconds: float = 300, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}

    def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() > entry.expires_at:
            del self._entries[key]
            return None
        return entry.value

    def set(self, key: str, value: Any) -> None:
        self._entries[key] = CacheEntry(
            key=key, value=value, expires_at=self._clock() + self.ttl_seconds
        )

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
