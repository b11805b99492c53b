"""
Cache backends for ScopedCache.

RedisCache is used whenever REDIS_URL is configured so state is shared
between the API process and Celery workers. InMemoryCache is the
single-process fallback used in development and tests.
"""
import json
import threading
import time
from typing import Any, Dict, Optional, Tuple

import redis

from app.core.logging_config import log_info, log_warning


class InMemoryCache:
    """Process-local cache with per-key expiry."""

    def __init__(self):
        self._store: Dict[str, Tuple[Any, Optional[float]]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if expires_at is not None and expires_at <= time.monotonic():
                del self._store[key]
                return None
            return value

    def set(self, key: str, value: Any, ex: Optional[int] = None) -> None:
        expires_at = time.monotonic() + ex if ex else None
        with self._lock:
            self._store[key] = (value, expires_at)

    def delete(self, key: str) -> None:
        with self._lock:
            self._store.pop(key, None)

    def pop(self, key: str) -> Optional[Any]:
        """Atomically read and delete a key."""
        with self._lock:
            entry = self._store.pop(key, None)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and expires_at <= time.monotonic():
            return None
        return value


class RedisCache:
    """JSON-serializing wrapper over a redis client."""

    def __init__(self, redis_url: str):
        self._redis = redis.Redis.from_url(redis_url, decode_responses=True)

    def get(self, key: str) -> Optional[Any]:
        raw = self._redis.get(key)
        if raw is None:
            return None
        return json.loads(raw)

    def set(self, key: str, value: Any, ex: Optional[int] = None) -> None:
        self._redis.set(key, json.dumps(value), ex=ex)

    def delete(self, key: str) -> None:
        self._redis.delete(key)

    def pop(self, key: str) -> Optional[Any]:
        """Atomically read and delete a key (GETDEL)."""
        raw = self._redis.getdel(key)
        if raw is None:
            return None
        return json.loads(raw)


def create_cache(redis_url: Optional[str]):
    """Build a Redis-backed cache when a URL is configured, else an in-memory one."""
    if redis_url:
        try:
            cache = RedisCache(redis_url)
            log_info("Using Redis cache backend")
            return cache
        except redis.RedisError as exc:
            log_warning(f"Redis unavailable, falling back to in-memory cache: {exc}")
    return InMemoryCache()
