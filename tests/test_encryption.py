"""
Unit tests for token encryption at rest.

Covers the Fernet helpers in app.core.encryption and the credential helpers
that move provider tokens between integration rows and sync contexts.
"""
import uuid
from datetime import timedelta

import pytest

import app.core.encryption as encryption
from app.core.encryption import (
    decrypt_optional,
    decrypt_token,
    encrypt_optional,
    encrypt_token,
    is_encrypted,
    reset_key_cache,
)
from app.core.time_utils import utc_now
from app.integrations.credentials import build_context, decrypt_tokens, needs_refresh, store_tokens
from app.integrations.types import IntegrationTokens
from app.models.integration import Integration


def make_fake_token(label: str) -> str:
    return f"FAKE_TOKEN_{label}_FOR_TESTS"  # noqa: S105


class TestEncryption:
    """Encrypt and decrypt provider tokens."""

    def setup_method(self):
        reset_key_cache()

    def test_encrypt_decrypt_roundtrip(self):
        token = make_fake_token("ROUNDTRIP")

        encrypted = encrypt_token(token)

        assert encrypted != token
        assert is_encrypted(encrypted)
        assert decrypt_token(encrypted) == token

    def test_same_token_encrypts_differently(self):
        """Fernet embeds a timestamp and IV, so ciphertexts never repeat."""
        token = make_fake_token("SAME")

        first, second = encrypt_token(token), encrypt_token(token)

        assert first != second
        assert decrypt_token(first) == decrypt_token(second) == token

    @pytest.mark.parametrize("value", ["", "   ", None])
    def test_encrypt_blank_raises(self, value):
        with pytest.raises(ValueError):
            encrypt_token(value)

    def test_decrypt_garbage_mentions_reconnect(self):
        with pytest.raises(ValueError) as exc_info:
            decrypt_token("gAAAAAnot-really-a-token")

        assert "reconnect" in str(exc_info.value)

    def test_plaintext_is_not_detected_as_encrypted(self):
        assert not is_encrypted("ghp_plaintext")
        assert not is_encrypted("")

    def test_optional_helpers_pass_none_through(self):
        assert encrypt_optional(None) is None
        assert encrypt_optional("") is None
        assert decrypt_optional(None) is None
        assert decrypt_optional(encrypt_optional("refresh")) == "refresh"

    def test_key_is_cached_and_deterministic(self):
        assert encryption._fernet_key_cache is None

        first = encryption._get_fernet_key()
        reset_key_cache()
        second = encryption._get_fernet_key()

        assert first == second
        assert encryption._fernet_key_cache == second


class TestCredentials:
    """Token storage on integration rows."""

    def _integration(self) -> Integration:
        return Integration(user_id=uuid.uuid4(), provider="linear", access_token_encrypted="")

    def test_store_then_decrypt(self):
        integration = self._integration()
        expires_at = utc_now() + timedelta(hours=1)

        store_tokens(integration, IntegrationTokens(access_token="at", refresh_token="rt", expires_at=expires_at))

        assert is_encrypted(integration.access_token_encrypted)
        tokens = decrypt_tokens(integration)
        assert tokens.access_token == "at"
        assert tokens.refresh_token == "rt"

    def test_missing_refresh_token_keeps_stored_one(self):
        integration = self._integration()
        store_tokens(integration, IntegrationTokens(access_token="at", refresh_token="rt"))

        store_tokens(integration, IntegrationTokens(access_token="at-2"))

        tokens = decrypt_tokens(integration)
        assert tokens.access_token == "at-2"
        assert tokens.refresh_token == "rt"

    def test_context_carries_metadata(self, integration_factory):
        integration = integration_factory(metadata={"team_id": "T1"})

        context = build_context(integration)

        assert context.user_id == integration.user_id
        assert context.tokens.access_token == "access-token"
        assert context.metadata == {"team_id": "T1"}

    def test_needs_refresh_inside_margin(self):
        soon = IntegrationTokens(access_token="at", refresh_token="rt", expires_at=utc_now() + timedelta(minutes=2))
        later = IntegrationTokens(access_token="at", refresh_token="rt", expires_at=utc_now() + timedelta(hours=2))
        no_refresh = IntegrationTokens(access_token="at", expires_at=utc_now() - timedelta(minutes=1))

        assert needs_refresh(soon) is True
        assert needs_refresh(later) is False
        assert needs_refresh(no_refresh) is False
