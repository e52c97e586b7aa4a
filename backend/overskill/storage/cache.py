"""Short-TTL in-process cache for object-store reads.

Entries are keyed by object key and tagged with the content hash the
bytes were verified against. A lookup for any other hash misses, so a
process that has not seen a newer write can never serve older bytes.
Never consulted by integrity verification.
"""

import threading
import time
from typing import Dict, Optional, Tuple

from ..core.config import settings


class ContentCache:
    """Thread-safe TTL cache keyed by object key and content hash."""

    def __init__(self, ttl_seconds: int):
        self.ttl_seconds = ttl_seconds
        # object key -> (content hash, expires at, bytes)
        self._entries: Dict[str, Tuple[str, float, bytes]] = {}
        self._lock = threading.Lock()

    def get(self, key: str, content_hash: str) -> Optional[bytes]:
        if self.ttl_seconds <= 0:
            return None
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            cached_hash, expires_at, data = entry
            if time.monotonic() >= expires_at or cached_hash != content_hash:
                del self._entries[key]
                return None
            return data

    def set(self, key: str, content_hash: str, data: bytes) -> None:
        if self.ttl_seconds <= 0:
            return
        with self._lock:
            self._entries[key] = (content_hash, time.monotonic() + self.ttl_seconds, data)

    def invalidate(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


content_cache = ContentCache(settings.object_cache_ttl_seconds)
