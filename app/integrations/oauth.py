"""
OAuth `state` handling for the authorization redirect.

With Redis configured the state is an opaque random value stored for ten
minutes and consumed exactly once. Without Redis (single process dev
setups, tests) the state is a self-contained HMAC-signed token:

    {nonce}.{user_id}.{provider}.{expires_epoch}.{signature}
"""
import secrets
import time
import uuid
from typing import Optional

from app.core.cache import create_cache
from app.core.config import OAUTH_STATE_TTL_SECONDS, Settings, settings as default_settings
from app.core.exceptions import OAuthStateError
from app.core.logging_config import log_warning
from app.core.scoped_cache import ScopedCache
from app.core.signing import compute_hmac_sha256, verify_hmac_signature

STATE_CACHE_TYPE = "state"


class OAuthStateManager:
    def __init__(
        self,
        app_settings: Optional[Settings] = None,
        cache: Optional[ScopedCache] = None,
        ttl_seconds: int = OAUTH_STATE_TTL_SECONDS,
    ):
        self.settings = app_settings or default_settings
        self.ttl_seconds = ttl_seconds
        if cache is None and self.settings.redis_url:
            cache = ScopedCache("oauth_state", cache_backend=create_cache(self.settings.redis_url))
        self.cache = cache

    def create(self, user_id: uuid.UUID, provider: str) -> str:
        if self.cache is not None:
            state = secrets.token_hex(32)
            self.cache.set(
                state,
                STATE_CACHE_TYPE,
                {"user_id": str(user_id), "provider": provider},
                ttl_seconds=self.ttl_seconds,
            )
            return state
        return self._sign(user_id, provider)

    def consume(self, state: str, user_id: Optional[uuid.UUID], provider: str) -> uuid.UUID:
        """
        Validate and burn a state value; returns the user it was issued to.

        `user_id` may be None when the callback arrives without a session
        (provider redirect); the state itself then identifies the user.
        Raises OAuthStateError on any mismatch.
        """
        if not state:
            raise OAuthStateError("Missing OAuth state")
        if self.cache is not None:
            stored = self.cache.pop(state, STATE_CACHE_TYPE) if ":" not in state else None
            if not stored:
                raise OAuthStateError("OAuth state expired or already used")
            return self._check_owner(stored.get("user_id"), stored.get("provider"), user_id, provider)
        return self._verify_signed(state, user_id, provider)

    @staticmethod
    def _check_owner(state_user, state_provider, user_id: Optional[uuid.UUID], provider: str) -> uuid.UUID:
        if state_provider != provider or (user_id is not None and state_user != str(user_id)):
            log_warning("OAuth state mismatch", provider=provider)
            raise OAuthStateError("OAuth state does not match this request")
        try:
            return uuid.UUID(state_user)
        except (TypeError, ValueError):
            raise OAuthStateError("Invalid OAuth state")

    def _sign(self, user_id: uuid.UUID, provider: str) -> str:
        expires = int(time.time()) + self.ttl_seconds
        body = f"{secrets.token_hex(16)}.{user_id}.{provider}.{expires}"
        return f"{body}.{compute_hmac_sha256(body, self.settings.secret_key)}"

    def _verify_signed(self, state: str, user_id: Optional[uuid.UUID], provider: str) -> uuid.UUID:
        body, _, signature = state.rpartition(".")
        if not body or not verify_hmac_signature(body, signature, self.settings.secret_key):
            raise OAuthStateError("Invalid OAuth state")
        parts = body.split(".")
        if len(parts) != 4:
            raise OAuthStateError("Invalid OAuth state")
        _, state_user, state_provider, expires = parts
        owner = self._check_owner(state_user, state_provider, user_id, provider)
        try:
            expired = int(expires) < int(time.time())
        except ValueError:
            raise OAuthStateError("Invalid OAuth state")
        if expired:
            raise OAuthStateError("OAuth state expired")
        return owner


_manager: Optional[OAuthStateManager] = None


def get_oauth_state_manager() -> OAuthStateManager:
    global _manager
    if _manager is None:
        _manager = OAuthStateManager()
    return _manager


def create_oauth_state(user_id: uuid.UUID, provider: str) -> str:
    return get_oauth_state_manager().create(user_id, provider)


def consume_oauth_state(state: str, user_id: Optional[uuid.UUID], provider: str) -> uuid.UUID:
    return get_oauth_state_manager().consume(state, user_id, provider)
