import uuid
from datetime import timedelta

import pytest
from fastapi import HTTPException
from unittest.mock import MagicMock, patch

from app.api import dependencies
from app.core.security import create_access_token
from app.models.user import User


def _user(**overrides) -> User:
    values = dict(id=uuid.uuid4(), email="founder@example.com", name="Founder", is_active=True)
    values.update(overrides)
    return User(**values)


@pytest.mark.asyncio
async def test_get_current_user_resolves_subject():
    user = _user()
    session = MagicMock()
    session.get.return_value = user

    result = await dependencies.get_current_user(token=create_access_token({"sub": str(user.id)}), session=session)

    assert result is user
    session.get.assert_called_once_with(User, user.id)


@pytest.mark.asyncio
async def test_get_current_user_without_token():
    with pytest.raises(HTTPException) as exc:
        await dependencies.get_current_user(token=None, session=MagicMock())

    assert exc.value.status_code == 401
    assert exc.value.headers == {"WWW-Authenticate": "Bearer"}


@pytest.mark.asyncio
async def test_get_current_user_expired_token():
    token = create_access_token({"sub": str(uuid.uuid4())}, expires_delta=timedelta(minutes=-5))

    with pytest.raises(HTTPException) as exc:
        await dependencies.get_current_user(token=token, session=MagicMock())

    assert exc.value.status_code == 401


@pytest.mark.asyncio
async def test_get_current_user_invalid_uuid_subject():
    """A token whose subject is not a UUID is rejected before touching the database."""
    session = MagicMock()

    with pytest.raises(HTTPException) as exc:
        await dependencies.get_current_user(token=create_access_token({"sub": "not-a-uuid"}), session=session)

    assert exc.value.status_code == 401
    session.get.assert_not_called()


@pytest.mark.asyncio
async def test_get_current_user_wrong_token_type():
    with patch("app.api.dependencies.verify_token") as mock_verify:
        mock_verify.side_effect = dependencies.JWTError("Expected a access token")

        with pytest.raises(HTTPException) as exc:
            await dependencies.get_current_user(token="refresh-token", session=MagicMock())

    assert exc.value.status_code == 401
    mock_verify.assert_called_once_with("refresh-token", "access")


@pytest.mark.asyncio
async def test_get_current_user_inactive_account():
    user = _user(is_active=False)
    session = MagicMock()
    session.get.return_value = user

    with pytest.raises(HTTPException) as exc:
        await dependencies.get_current_user(token=create_access_token({"sub": str(user.id)}), session=session)

    assert exc.value.status_code == 401


def test_get_bearer_token_parses_header():
    assert dependencies.get_bearer_token("Bearer  cle_abc ") == "cle_abc"
    assert dependencies.get_bearer_token("bearer token") == "token"


@pytest.mark.parametrize("header", [None, "", "Basic dXNlcjpwdw==", "Bearer   "])
def test_get_bearer_token_rejects_malformed_header(header):
    with pytest.raises(HTTPException) as exc:
        dependencies.get_bearer_token(header)

    assert exc.value.status_code == 401


def test_verify_cron_secret_accepts_matching_token():
    with patch.object(dependencies.settings, "cron_secret", "cron-token"):
        assert dependencies.verify_cron_secret("cron-token") is None


def test_verify_cron_secret_rejects_mismatch():
    with patch.object(dependencies.settings, "cron_secret", "cron-token"):
        with pytest.raises(HTTPException) as exc:
            dependencies.verify_cron_secret("guess")

    assert exc.value.status_code == 401


def test_verify_cron_secret_disabled_without_configuration():
    with patch.object(dependencies.settings, "cron_secret", None):
        with pytest.raises(HTTPException) as exc:
            dependencies.verify_cron_secret("anything")

    assert exc.value.detail == "Cron endpoint is disabled"
