"""Month-keyed cache for expanded plan occurrences."""
import json
import logging
import os
import threading
import time
from typing import Any, Dict, Iterable, List, Optional, Tuple

from cachetools import TTLCache

logger = logging.getLogger(__name__)

PLAN_CACHE_TTL_SECONDS = int(os.environ.get("PLAN_CACHE_TTL_SECONDS", str(24 * 60 * 60)))
PLAN_CACHE_MAXSIZE = int(os.environ.get("PLAN_CACHE_MAXSIZE", "1024"))

KEY_PREFIX = "monthly_plans"


class PlanCacheService:
    """
    Cache-aside store for month views.

    Values are JSON strings of occurrence views. A value that no longer
    parses is dropped and reported as a miss, so callers recompute it.
    """

    def __init__(self, maxsize: int = PLAN_CACHE_MAXSIZE, ttl: float = PLAN_CACHE_TTL_SECONDS,
                 timer=time.monotonic):
        self._cache = TTLCache(maxsize=maxsize, ttl=ttl, timer=timer)
        self._lock = threading.Lock()

    @staticmethod
    def make_key(user_id: str, year: int, month: int) -> str:
        return f"{KEY_PREFIX}:{user_id}:{year}:{month}"

    @staticmethod
    def _user_prefix(user_id: str) -> str:
        return f"{KEY_PREFIX}:{user_id}:"

    def get(self, user_id: str, year: int, month: int) -> Optional[List[Dict[str, Any]]]:
        key = self.make_key(user_id, year, month)
        with self._lock:
            raw = self._cache.get(key)
            if raw is None:
                return None
            try:
                return json.loads(raw)
            except (TypeError, ValueError):
                logger.warning(f"Corrupted month cache entry {key}, deleting it")
                self._cache.pop(key, None)
                return None

    def set(self, user_id: str, year: int, month: int, occurrences: List[Dict[str, Any]]):
        key = self.make_key(user_id, year, month)
        payload = json.dumps(occurrences, default=str)
        with self._lock:
            self._cache[key] = payload
        logger.debug(f"Cached {len(occurrences)} occurrences under {key}")

    def evict(self, user_id: str, year: int, month: int) -> bool:
        key = self.make_key(user_id, year, month)
        with self._lock:
            return self._cache.pop(key, None) is not None

    def evict_months(self, user_id: str, months: Iterable[Tuple[int, int]]) -> int:
        """Drop the given (year, month) entries of one user; returns how many existed."""
        evicted = 0
        with self._lock:
            for year, month in months:
                if self._cache.pop(self.make_key(user_id, year, month), None) is not None:
                    evicted += 1
        if evicted:
            logger.info(f"Evicted {evicted} cached months for user {user_id}")
        return evicted

    def evict_user(self, user_id: str) -> int:
        """Drop every cached month of one user."""
        prefix = self._user_prefix(user_id)
        with self._lock:
            stale = [key for key in list(self._cache.keys()) if key.startswith(prefix)]
            for key in stale:
                self._cache.pop(key, None)
        if stale:
            logger.info(f"Evicted all {len(stale)} cached months for user {user_id}")
        return len(stale)

    def keys(self, user_id: Optional[str] = None) -> List[str]:
        prefix = self._user_prefix(user_id) if user_id else f"{KEY_PREFIX}:"
        with self._lock:
            return sorted(key for key in list(self._cache.keys()) if key.startswith(prefix))

    def clear(self):
        with self._lock:
            self._cache.clear()


# Global instance shared by requests in this process
plan_cache = PlanCacheService()
