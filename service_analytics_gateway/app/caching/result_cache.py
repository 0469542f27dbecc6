"""
Bounded time-to-live cache for warehouse responses.
"""

import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from shared.logging import get_logger


@dataclass(frozen=True)
class CacheEntry:
    """An immutable cached payload. Entries are replaced, never mutated."""

    fingerprint: str
    payload: Any
    created_at: float
    ttl: float

    def expired(self, now: float) -> bool:
        return now - self.created_at >= self.ttl


class ResultCache:
    """Process-local fingerprint -> payload cache.

    Capacity is fixed; inserting into a full cache evicts the entry that was
    inserted longest ago. Expiry is checked lazily on every ``get`` and in
    bulk by ``sweep``. The lock only guards dictionary operations, so readers
    either see a complete entry or none at all.
    """

    def __init__(
        self,
        ttl_seconds: float = 30.0,
        max_entries: int = 512,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self.logger = get_logger("gateway.cache")

        self._clock = clock
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._expirations = 0

    def get(self, fingerprint: str) -> Optional[Any]:
        """Return the cached payload, or None on a miss or an expired entry."""
        now = self._clock()
        with self._lock:
            entry = self._entries.get(fingerprint)
            if entry is not None and entry.expired(now):
                del self._entries[fingerprint]
                self._expirations += 1
                entry = None
            if entry is None:
                self._misses += 1
                return None
            self._hits += 1
        return entry.payload

    def put(self, fingerprint: str, payload: Any, ttl: Optional[float] = None) -> None:
        """Store a payload, evicting the oldest insertion when full."""
        if payload is None:
            raise ValueError("Cannot cache a None payload")
        if ttl is not None and ttl <= 0:
            raise ValueError("ttl must be positive")
        entry = CacheEntry(
            fingerprint=fingerprint,
            payload=payload,
            created_at=self._clock(),
            ttl=self.ttl_seconds if ttl is None else ttl,
        )
        evicted = []
        with self._lock:
            self._entries.pop(fingerprint, None)
            while len(self._entries) >= self.max_entries:
                oldest, _ = self._entries.popitem(last=False)
                evicted.append(oldest)
            self._entries[fingerprint] = entry
            self._evictions += len(evicted)

        if evicted:
            self.logger.debug("Evicted cache entries", count=len(evicted))

    def sweep(self) -> int:
        """Drop every expired entry; returns how many were removed."""
        now = self._clock()
        with self._lock:
            expired = [key for key, entry in self._entries.items() if entry.expired(now)]
            for key in expired:
                del self._entries[key]
            self._expirations += len(expired)
        if expired:
            self.logger.debug("Swept expired cache entries", count=len(expired))
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "size": len(self._entries),
                "capacity": self.max_entries,
                "ttl_seconds": self.ttl_seconds,
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
                "expirations": self._expirations,
            }
