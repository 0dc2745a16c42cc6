"""
TTL cache for upstream leaderboard payloads.

Constructed once by the composition root and handed to whichever component
needs it. Entries are process-local and never persisted.
"""

import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from mindshare.config import Config
from mindshare.data_models.leaderboard import LeaderboardWindow
from mindshare.utils.logger import setup_logger

logger = setup_logger(__name__)


@dataclass(frozen=True)
class CacheEntry:
    window: LeaderboardWindow
    payload: dict
    fetched_at: float
    source: str


class LeaderboardCache:
    """Window-keyed payload cache with a fixed TTL."""

    def __init__(self, ttl_seconds: Optional[float] = None, clock: Callable[[], float] = time.time):
        self.ttl = Config.CACHE_TTL_SECONDS if ttl_seconds is None else ttl_seconds
        self._clock = clock
        self._cache: Dict[LeaderboardWindow, CacheEntry] = {}
        # Bumped on every invalidation so in-flight fetches can tell they are stale
        self._generation = 0

    @property
    def generation(self) -> int:
        return self._generation

    def get(self, window: LeaderboardWindow, allow_stale: bool = False) -> Optional[CacheEntry]:
        """Get cached payload if it is younger than the TTL (or at all, with allow_stale)."""
        entry = self._cache.get(window)
        if entry is None:
            return None
        if allow_stale or self.age(entry) < self.ttl:
            logger.debug(f"Cache hit for window {window.value}")
            return entry
        return None

    def age(self, entry: CacheEntry) -> float:
        return self._clock() - entry.fetched_at

    def put(self, window: LeaderboardWindow, payload: dict, source: str,
            generation: Optional[int] = None) -> bool:
        """
        Store a payload for a window.

        Args:
            generation: Cache generation observed when the fetch started. If
                an invalidation happened since then the payload is dropped.

        Returns:
            True when the payload was stored
        """
        if generation is not None and generation != self._generation:
            logger.debug(f"Dropping payload for window {window.value}: cache invalidated during fetch")
            return False
        self._cache[window] = CacheEntry(
            window=window,
            payload=payload,
            fetched_at=self._clock(),
            source=source,
        )
        return True

    def invalidate(self, window: Optional[LeaderboardWindow] = None):
        """Clear one window, or the entire cache when no window is given."""
        self._generation += 1
        if window is None:
            logger.info("Clearing entire leaderboard cache")
            self._cache.clear()
        else:
            logger.debug(f"Invalidating cache for window {window.value}")
            self._cache.pop(window, None)

    def __len__(self):
        return len(self._cache)
