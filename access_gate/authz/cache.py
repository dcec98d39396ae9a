"""
In-memory, time-bounded cache of authorization profiles.

Background for newcomers:
    Building a profile means joining users, roles, permissions,
    organizations and departments in the database. Doing that on every
    request is wasteful, so profiles are kept here for ``ttl_seconds``.

    The trade-off is staleness: after a user's permissions are downgraded
    the old profile may still be served until its entry expires. Code that
    changes permissions should call ``invalidate`` for the affected user
    (or ``invalidate_all`` for changes that touch many users).

    Size is bounded by ``max_size``. When an insert pushes the store over the
    limit, expired entries are dropped first and then the oldest entries (by
    the time they were written, not by last read) until the limit holds.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from .profile import AuthorizationProfile

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 300.0
DEFAULT_MAX_SIZE = 1000


@dataclass(frozen=True)
class CacheEntry:
    """Cached profile plus the metadata needed to judge its freshness."""

    user_id: str
    profile: AuthorizationProfile
    timestamp: float
    ttl: float

    def is_valid(self, now: float) -> bool:
        return now - self.timestamp < self.ttl


class PermissionCache:
    """
    Thread-safe TTL cache mapping user id to ``AuthorizationProfile``.

    Entries are frozen and replaced as a whole per key, so a reader never
    sees a half-written entry.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        max_size: int = DEFAULT_MAX_SIZE,
        enabled: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self._ttl = float(ttl_seconds)
        self._max_size = int(max_size)
        self._enabled = enabled
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        # Bumped by every invalidation; see put().
        self._generation = 0

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    @property
    def max_size(self) -> int:
        return self._max_size

    @property
    def generation(self) -> int:
        with self._lock:
            return self._generation

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, user_id: object) -> bool:
        with self._lock:
            entry = self._entries.get(str(user_id))
            return entry is not None and entry.is_valid(self._clock())

    # ---- Reads and writes -----------------------------------------------------------

    def get(self, user_id: str) -> AuthorizationProfile | None:
        """Return the cached profile, or None when absent or expired."""
        if not self._enabled:
            return None

        with self._lock:
            entry = self._entries.get(user_id)
            if entry is None:
                self._misses += 1
                return None
            if not entry.is_valid(self._clock()):
                del self._entries[user_id]
                self._misses += 1
                logger.debug("Permission cache entry expired user_id=%s", user_id)
                return None
            self._hits += 1
            return entry.profile

    def put(self, user_id: str, profile: AuthorizationProfile, generation: int | None = None) -> bool:
        """
        Store ``profile`` with the current time and the configured TTL.

        Pass the ``generation`` read before loading the profile: if an
        invalidation happened since, the profile may predate it and is not
        stored. Returns whether the entry was written.
        """
        if not self._enabled:
            return False

        entry = CacheEntry(user_id=user_id, profile=profile, timestamp=self._clock(), ttl=self._ttl)
        with self._lock:
            if generation is not None and generation != self._generation:
                logger.debug("Permission cache skipped stale write user_id=%s", user_id)
                return False
            # Re-inserting moves the key to the newest position.
            self._entries.pop(user_id, None)
            self._entries[user_id] = entry
            if len(self._entries) > self._max_size:
                self._cleanup_locked()
            return True

    def cleanup(self) -> int:
        """Drop expired entries, then the oldest ones while over ``max_size``."""
        with self._lock:
            return self._cleanup_locked()

    def _cleanup_locked(self) -> int:
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if not entry.is_valid(now)]
        for key in expired:
            del self._entries[key]

        evicted = 0
        overflow = len(self._entries) - self._max_size
        if overflow > 0:
            # sorted() is stable, so equal timestamps keep insertion order.
            oldest = sorted(self._entries.values(), key=lambda e: e.timestamp)[:overflow]
            for entry in oldest:
                del self._entries[entry.user_id]
            evicted = len(oldest)

        if expired or evicted:
            logger.debug("Permission cache cleanup expired=%d evicted=%d", len(expired), evicted)
        return len(expired) + evicted

    # ---- Invalidation ---------------------------------------------------------------

    def invalidate(self, user_id: str) -> bool:
        with self._lock:
            removed = self._entries.pop(user_id, None) is not None
            self._generation += 1
        if removed:
            logger.debug("Permission cache invalidated user_id=%s", user_id)
        return removed

    def invalidate_all(self) -> int:
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
            self._generation += 1
        logger.info("Permission cache cleared entries=%d", count)
        return count

    # ---- Administration -------------------------------------------------------------

    def configure(
        self,
        ttl_seconds: float | None = None,
        max_size: int | None = None,
        enabled: bool | None = None,
    ) -> None:
        """
        Change cache settings at runtime.

        A new TTL applies to entries written afterwards. Disabling the cache
        drops everything it holds.
        """
        if ttl_seconds is not None and ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        if max_size is not None and max_size < 1:
            raise ValueError("max_size must be at least 1")

        with self._lock:
            if ttl_seconds is not None:
                self._ttl = float(ttl_seconds)
            if enabled is not None:
                self._enabled = enabled
                if not enabled:
                    self._entries.clear()
                    self._generation += 1
            if max_size is not None:
                self._max_size = int(max_size)
                if len(self._entries) > self._max_size:
                    self._cleanup_locked()

    def stats(self) -> dict[str, object]:
        with self._lock:
            lookups = self._hits + self._misses
            return {
                "size": len(self._entries),
                "max_size": self._max_size,
                "ttl_seconds": self._ttl,
                "enabled": self._enabled,
                "hits": self._hits,
                "misses": self._misses,
                "hit_rate": (self._hits / lookups) if lookups else 0.0,
            }
