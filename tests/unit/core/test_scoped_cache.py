"""
Unit tests for ScopedCache and the in-memory backend.
"""
from unittest.mock import MagicMock, patch

import pytest

from app.core.cache import InMemoryCache
from app.core.scoped_cache import ScopedCache


class TestScopedCacheKeyGeneration:
    """Test cache key generation and validation."""

    def test_make_key_basic(self):
        cache = ScopedCache("oauth_state", cache_backend=MagicMock())

        assert cache._make_key("abc123", "github") == "oauth_state:github:abc123"

    def test_make_key_rejects_colon_in_cache_type(self):
        cache = ScopedCache("oauth_state", cache_backend=MagicMock())

        with pytest.raises(ValueError, match="cache_type must not contain ':'"):
            cache._make_key("abc123", "git:hub")

    def test_make_key_rejects_colon_in_scope_id(self):
        cache = ScopedCache("oauth_state", cache_backend=MagicMock())

        with pytest.raises(ValueError, match="scope_id must not contain ':'"):
            cache._make_key("abc:123", "github")


class TestScopedCacheOperations:
    """Test delegation to the backend."""

    def test_get(self):
        mock_cache = MagicMock()
        mock_cache.get.return_value = {"user_id": "u1"}
        cache = ScopedCache("oauth_state", cache_backend=mock_cache)

        assert cache.get("abc", "github") == {"user_id": "u1"}
        mock_cache.get.assert_called_once_with("oauth_state:github:abc")

    def test_set(self):
        mock_cache = MagicMock()
        cache = ScopedCache("oauth_state", cache_backend=mock_cache)

        cache.set("abc", "github", {"user_id": "u1"}, ttl_seconds=600)

        mock_cache.set.assert_called_once_with("oauth_state:github:abc", {"user_id": "u1"}, ex=600)

    def test_pop(self):
        mock_cache = MagicMock()
        mock_cache.pop.return_value = {"user_id": "u1"}
        cache = ScopedCache("oauth_state", cache_backend=mock_cache)

        assert cache.pop("abc", "github") == {"user_id": "u1"}
        mock_cache.pop.assert_called_once_with("oauth_state:github:abc")

    def test_backend_errors_are_cache_misses(self):
        mock_cache = MagicMock()
        mock_cache.get.side_effect = RuntimeError("connection refused")
        cache = ScopedCache("oauth_state", cache_backend=mock_cache)

        assert cache.get("abc", "github") is None


class TestInMemoryCache:
    """Test expiry and one-time reads on the fallback backend."""

    def test_pop_removes_key(self):
        backend = InMemoryCache()
        backend.set("k", {"v": 1}, ex=60)

        assert backend.pop("k") == {"v": 1}
        assert backend.get("k") is None

    def test_expired_entries_are_not_returned(self):
        backend = InMemoryCache()
        with patch("app.core.cache.time.monotonic", return_value=1000.0):
            backend.set("k", {"v": 1}, ex=10)
        with patch("app.core.cache.time.monotonic", return_value=1011.0):
            assert backend.get("k") is None
