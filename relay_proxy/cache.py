"""
Relay Proxy - Response Cache
Bounded, insertion-ordered store for rewritten HTML documents.
"""

import logging
import threading
import time
from collections import OrderedDict
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional, Tuple


logger = logging.getLogger(__name__)

CacheKey = Tuple[str, str]


def cache_key(method: str, encoded_target: str) -> CacheKey:
    return (method.upper(), encoded_target)


@dataclass(frozen=True)
class CacheEntry:
    """A rewritten document as served to the client."""
    target_url: str
    headers: Dict[str, str]
    body: str
    # Origin the rewritten references point at
    proxy_base_url: str = ''
    inserted_at: float = field(default_factory=time.monotonic)


class ResponseCache:
    """
    Thread-safe cache with a per-entry TTL and a capacity bound.

    Freshness is checked on read: an expired entry is dropped and reported
    as a miss. Capacity is enforced on write by evicting the oldest
    inserted entry. Reads do not refresh an entry's position.
    """

    def __init__(self, max_size: int = 100, ttl: float = 120,
                 clock: Callable[[], float] = time.monotonic):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.max_size = max_size
        self.ttl = ttl
        self.clock = clock
        self._entries: "OrderedDict[CacheKey, CacheEntry]" = OrderedDict()
        self._lock = threading.Lock()
        self._key_locks: Dict[CacheKey, Tuple[threading.Lock, int]] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: CacheKey) -> bool:
        with self._lock:
            return key in self._entries

    def new_entry(self, target_url: str, headers: Dict[str, str], body: str,
                  proxy_base_url: str = '') -> CacheEntry:
        """Build an entry stamped with this cache's clock."""
        return CacheEntry(target_url=target_url, headers=dict(headers), body=body,
                          proxy_base_url=proxy_base_url, inserted_at=self.clock())

    def get(self, key: CacheKey) -> Optional[CacheEntry]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                logger.debug("Cache miss for %s", key)
                return None
            if self.clock() - entry.inserted_at > self.ttl:
                del self._entries[key]
                logger.debug("Cache entry for %s expired", key)
                return None
            logger.debug("Cache hit for %s", key)
            return entry

    def put(self, key: CacheKey, entry: CacheEntry) -> None:
        with self._lock:
            # Re-inserting a key moves it to the newest position
            self._entries.pop(key, None)
            self._entries[key] = entry
            if len(self._entries) > self.max_size:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug("Evicted %s from cache", evicted)

    def clear(self) -> int:
        """Empty the cache and return how many entries it held."""
        with self._lock:
            size = len(self._entries)
            self._entries.clear()
            return size

    @contextmanager
    def lock_for(self, key: CacheKey):
        """
        Serialize work on one key.

        Concurrent misses for the same key wait here so only the first one
        goes upstream; the rest find its entry when they get the lock.
        """
        with self._lock:
            key_lock, users = self._key_locks.get(key, (None, 0))
            if key_lock is None:
                key_lock = threading.Lock()
            self._key_locks[key] = (key_lock, users + 1)
        try:
            with key_lock:
                yield
        finally:
            with self._lock:
                key_lock, users = self._key_locks[key]
                if users == 1:
                    del self._key_locks[key]
                else:
                    self._key_locks[key] = (key_lock, users - 1)
