"""
Unit tests for OAuth state issue and consumption.
"""
import uuid

import pytest

from app.core.cache import InMemoryCache
from app.core.exceptions import OAuthStateError
from app.core.scoped_cache import ScopedCache
from app.integrations.oauth import OAuthStateManager


@pytest.fixture
def cached_manager() -> OAuthStateManager:
    return OAuthStateManager(cache=ScopedCache("oauth_state", cache_backend=InMemoryCache()))


@pytest.fixture
def signed_manager() -> OAuthStateManager:
    return OAuthStateManager(cache=None)


class TestCachedState:
    def test_round_trip_returns_owner(self, cached_manager):
        user_id = uuid.uuid4()
        state = cached_manager.create(user_id, "github")

        assert cached_manager.consume(state, user_id, "github") == user_id

    def test_state_is_single_use(self, cached_manager):
        user_id = uuid.uuid4()
        state = cached_manager.create(user_id, "github")
        cached_manager.consume(state, user_id, "github")

        with pytest.raises(OAuthStateError):
            cached_manager.consume(state, user_id, "github")

    def test_callback_without_session_resolves_owner(self, cached_manager):
        user_id = uuid.uuid4()
        state = cached_manager.create(user_id, "notion")

        assert cached_manager.consume(state, None, "notion") == user_id

    def test_other_user_is_rejected(self, cached_manager):
        state = cached_manager.create(uuid.uuid4(), "github")

        with pytest.raises(OAuthStateError):
            cached_manager.consume(state, uuid.uuid4(), "github")

    def test_unknown_state_is_rejected(self, cached_manager):
        with pytest.raises(OAuthStateError):
            cached_manager.consume("never-issued", None, "github")


class TestSignedState:
    def test_round_trip(self, signed_manager):
        user_id = uuid.uuid4()
        state = signed_manager.create(user_id, "linear")

        assert signed_manager.consume(state, None, "linear") == user_id

    def test_tampered_state_is_rejected(self, signed_manager):
        state = signed_manager.create(uuid.uuid4(), "linear")
        nonce, user, provider, expires, signature = state.split(".")
        forged = ".".join([nonce, str(uuid.uuid4()), provider, expires, signature])

        with pytest.raises(OAuthStateError):
            signed_manager.consume(forged, None, "linear")

    def test_provider_mismatch_is_rejected(self, signed_manager):
        state = signed_manager.create(uuid.uuid4(), "linear")

        with pytest.raises(OAuthStateError):
            signed_manager.consume(state, None, "github")

    def test_expired_state_is_rejected(self):
        manager = OAuthStateManager(cache=None, ttl_seconds=-1)
        state = manager.create(uuid.uuid4(), "linear")

        with pytest.raises(OAuthStateError):
            manager.consume(state, None, "linear")

    def test_empty_state(self, signed_manager):
        with pytest.raises(OAuthStateError):
            signed_manager.consume("", None, "linear")
