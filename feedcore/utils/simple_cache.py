"""In-memory TTL cache for GET responses from the forum.

Entries are immutable and checked for freshness lazily at read time. Keys
scope a response by endpoint, request body and whether the caller was
authenticated, so a public and a signed-in response never collide.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from hashlib import sha256
from typing import Any

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheEntry:
    """A stored response and when it was stored."""

    key: str
    endpoint: str
    payload: Any
    stored_at: float


class ResponseCache:
    """Thread-safe, in-memory TTL cache with LRU eviction.

    Attributes:
        ttl_seconds: Freshness window applied to all entries.
        max_entries: Maximum number of cached items (None for unlimited).
    """

    def __init__(self, ttl_seconds: int = 300, max_entries: int | None = 1024) -> None:
        self._ttl = ttl_seconds
        self._max_entries = max_entries
        self._store: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = threading.RLock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def __repr__(self) -> str:  # pragma: no cover - representation only
        return (
            f"ResponseCache(ttl_seconds={self._ttl}, max_entries={self._max_entries}, "
            f"size={len(self._store)}, hits={self._hits}, misses={self._misses}, "
            f"evictions={self._evictions})"
        )

    @property
    def ttl_seconds(self) -> int:
        return self._ttl

    def get(self, key: str) -> Any | None:
        """Return the cached payload if present and fresh.

        Args:
            key: Cache key from ``build_cache_key``.

        Returns:
            Cached payload or None if not found/stale.
        """

        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                self._misses += 1
                logger.debug("cache.miss", extra={"cache_key": key, "reason": "not_found"})
                return None

            age = time.time() - entry.stored_at
            if age >= self._ttl:
                self._evict_single(key)
                self._misses += 1
                logger.debug("cache.miss", extra={"cache_key": key, "reason": "expired"})
                return None

            self._hits += 1
            self._store.move_to_end(key)
            logger.debug("cache.hit", extra={"cache_key": key, "age_s": round(age, 1)})
            return entry.payload

    def set(self, key: str, endpoint: str, payload: Any) -> None:
        """Store a payload, replacing any previous entry for the key.

        Args:
            key: Cache key.
            endpoint: Endpoint the payload belongs to (used for invalidation).
            payload: Decoded response body.
        """

        with self._lock:
            self._store[key] = CacheEntry(
                key=key, endpoint=endpoint, payload=payload, stored_at=time.time()
            )
            self._store.move_to_end(key)
            self._evict_if_over_capacity_locked()

            logger.debug(
                "cache.set",
                extra={"cache_key": key, "size": len(self._store), "ttl_s": self._ttl},
            )

    def invalidate(self, key: str) -> bool:
        """Drop one entry by key. Returns True if something was removed."""

        with self._lock:
            return self._store.pop(key, None) is not None

    def invalidate_endpoint(self, endpoint: str) -> int:
        """Drop every entry stored for an endpoint, whatever its body or auth scope."""

        with self._lock:
            keys = [k for k, entry in self._store.items() if entry.endpoint == endpoint]
            for key in keys:
                del self._store[key]
            return len(keys)

    def clear(self) -> None:
        """Remove all cached entries and reset counters."""

        with self._lock:
            self._store.clear()
            self._hits = 0
            self._misses = 0
            self._evictions = 0

    def stats(self) -> dict[str, Any]:
        """Return cache metrics and keys without exposing payloads."""

        with self._lock:
            return {
                "ttl_seconds": self._ttl,
                "max_entries": self._max_entries,
                "entries": len(self._store),
                "keys": list(self._store.keys()),
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
            }

    def _evict_single(self, key: str) -> None:
        if key in self._store:
            self._store.pop(key, None)
            self._evictions += 1

    def _evict_if_over_capacity_locked(self) -> None:
        if self._max_entries is None:
            return

        while len(self._store) > self._max_entries:
            # popitem(last=False) removes the least recently used entry
            self._store.popitem(last=False)
            self._evictions += 1


def _body_fingerprint(body: Any) -> str:
    if body is None or body == "":
        return ""
    raw = body if isinstance(body, str) else json.dumps(body, sort_keys=True, default=str)
    return sha256(raw.encode()).hexdigest()[:8]


def build_cache_key(endpoint: str, body: Any = None, *, authenticated: bool) -> str:
    """Build the composite cache key for a request.

    Args:
        endpoint: Request path including any query string.
        body: Request payload, if any.
        authenticated: Whether the request carries a user credential.

    Returns:
        Key of the form ``<endpoint>_<bodyhash>_<auth|public>``.
    """

    scope = "auth" if authenticated else "public"
    return f"{endpoint}_{_body_fingerprint(body)}_{scope}"
