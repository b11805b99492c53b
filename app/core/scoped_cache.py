"""
Namespaced cache wrapper.

Keys are built as "{namespace}:{cache_type}:{scope_id}" so unrelated
features (OAuth state, credential lookups) can share one Redis database.
Backend failures are logged and treated as cache misses.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from app.core.cache import create_cache
from app.core.config import settings
from app.core.logging_config import LogCategory

logger = logging.getLogger(LogCategory.APP)


class ScopedCache:
    """Cache wrapper with namespaced keys."""

    def __init__(self, namespace: str, cache_backend=None, log: Optional[logging.Logger] = None):
        self._namespace = namespace
        self._cache = cache_backend or create_cache(settings.redis_url)
        self._logger = log or logger

    def _make_key(self, scope_id: str, cache_type: str) -> str:
        """
        Generate a namespaced cache key.

        Raises:
            ValueError: If scope_id or cache_type contains ':' character
        """
        if ':' in cache_type:
            raise ValueError(f"cache_type must not contain ':' character, got: {cache_type}")
        if ':' in scope_id:
            raise ValueError(f"scope_id must not contain ':' character, got: {scope_id}")
        return f"{self._namespace}:{cache_type}:{scope_id}"

    @staticmethod
    def with_timestamp(value: Dict[str, Any], field: str = "cached_at") -> Dict[str, Any]:
        """Return a copy of value stamped with the current UTC time."""
        stamped = dict(value)
        stamped[field] = datetime.now(timezone.utc).isoformat()
        return stamped

    def get(self, scope_id: str, cache_type: str) -> Optional[Dict[str, Any]]:
        """Fetch a cached value by scope and type."""
        key = self._make_key(scope_id, cache_type)
        try:
            return self._cache.get(key)
        except Exception as e:
            self._logger.error(f"Cache get failed: key={key}, error={type(e).__name__}: {e}")
            return None

    def set(self, scope_id: str, cache_type: str, value: Dict[str, Any], ttl_seconds: Optional[int]) -> None:
        """Store a cached value by scope and type."""
        key = self._make_key(scope_id, cache_type)
        try:
            self._cache.set(key, value, ex=ttl_seconds)
        except Exception as e:
            self._logger.error(f"Cache set failed: key={key}, error={type(e).__name__}: {e}")

    def delete(self, scope_id: str, cache_type: str) -> None:
        """Delete a cached value by scope and type."""
        key = self._make_key(scope_id, cache_type)
        try:
            self._cache.delete(key)
        except Exception as e:
            self._logger.error(f"Cache delete failed: key={key}, error={type(e).__name__}: {e}")

    def pop(self, scope_id: str, cache_type: str) -> Optional[Dict[str, Any]]:
        """Read and delete a value in one step (one-time tokens)."""
        key = self._make_key(scope_id, cache_type)
        try:
            return self._cache.pop(key)
        except Exception as e:
            self._logger.error(f"Cache pop failed: key={key}, error={type(e).__name__}: {e}")
            return None
