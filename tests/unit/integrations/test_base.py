"""
Unit tests for the shared provider HTTP and OAuth helpers.
"""
from datetime import timedelta
from email.utils import format_datetime
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from app.core.config import Settings
from app.core.exceptions import PermanentRequestError, ProviderConfigurationError, TransientProviderError
from app.core.time_utils import utc_now
from app.integrations.base import parse_retry_after
from app.integrations.providers.linear import LinearIntegration


class SleepRecorder:
    def __init__(self):
        self.delays = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def _provider(handler, app_settings=None):
    sleeper = SleepRecorder()
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return LinearIntegration(http_client=client, sleep=sleeper, app_settings=app_settings), sleeper


def _sequence(*responses):
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return responses[min(len(calls), len(responses)) - 1]

    return handler, calls


class TestParseRetryAfter:
    def test_seconds(self):
        assert parse_retry_after("7") == 7.0

    def test_http_date(self):
        retry_at = utc_now() + timedelta(seconds=30)

        seconds = parse_retry_after(format_datetime(retry_at, usegmt=True))

        assert 25 <= seconds <= 31

    def test_past_date_is_zero(self):
        assert parse_retry_after(format_datetime(utc_now() - timedelta(hours=1), usegmt=True)) == 0.0

    def test_missing_or_garbage(self):
        assert parse_retry_after(None) is None
        assert parse_retry_after("soon") is None


class TestFetchWithRetry:
    @pytest.mark.asyncio
    async def test_success_is_returned_immediately(self):
        handler, calls = _sequence(httpx.Response(200, json={"ok": True}))
        provider, sleeper = _provider(handler)

        response = await provider.fetch_with_retry("GET", "https://api.example.com/items")

        assert response.status_code == 200
        assert len(calls) == 1
        assert sleeper.delays == []

    @pytest.mark.asyncio
    async def test_retry_after_is_honoured(self):
        handler, calls = _sequence(
            httpx.Response(429, headers={"Retry-After": "3"}),
            httpx.Response(200, json={}),
        )
        provider, sleeper = _provider(handler)

        response = await provider.fetch_with_retry("GET", "https://api.example.com/items")

        assert response.status_code == 200
        assert sleeper.delays == [3.0]

    @pytest.mark.asyncio
    async def test_server_errors_back_off_exponentially(self):
        handler, calls = _sequence(httpx.Response(502), httpx.Response(503), httpx.Response(200))
        provider, sleeper = _provider(handler)

        await provider.fetch_with_retry("GET", "https://api.example.com/items")

        assert sleeper.delays == [1, 2]
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_client_errors_are_not_retried(self):
        handler, calls = _sequence(httpx.Response(404))
        provider, sleeper = _provider(handler)

        response = await provider.fetch_with_retry("GET", "https://api.example.com/items")

        assert response.status_code == 404
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_exhausted_attempts_raise_transient_error(self):
        handler, calls = _sequence(httpx.Response(500))
        provider, sleeper = _provider(handler)

        with pytest.raises(TransientProviderError) as exc_info:
            await provider.fetch_with_retry("GET", "https://api.example.com/items", max_attempts=2)

        assert exc_info.value.status_code == 500
        assert len(calls) == 2
        assert sleeper.delays == [1]

    @pytest.mark.asyncio
    async def test_connection_errors_are_retried(self):
        attempts = []

        def handler(request):
            attempts.append(request)
            if len(attempts) == 1:
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(200)

        provider, _ = _provider(handler)

        response = await provider.fetch_with_retry("GET", "https://api.example.com/items")

        assert response.status_code == 200
        assert len(attempts) == 2


class TestRequestJson:
    @pytest.mark.asyncio
    async def test_decodes_body(self):
        handler, _ = _sequence(httpx.Response(200, json={"data": [1, 2]}))
        provider, _ = _provider(handler)

        assert await provider.request_json("GET", "https://api.example.com") == {"data": [1, 2]}

    @pytest.mark.asyncio
    async def test_empty_body_is_empty_dict(self):
        handler, _ = _sequence(httpx.Response(204))
        provider, _ = _provider(handler)

        assert await provider.request_json("DELETE", "https://api.example.com/hook") == {}

    @pytest.mark.asyncio
    async def test_client_error_is_permanent(self):
        handler, _ = _sequence(httpx.Response(401, json={"error": "unauthorized"}))
        provider, _ = _provider(handler)

        with pytest.raises(PermanentRequestError) as exc_info:
            await provider.request_json("GET", "https://api.example.com")

        assert exc_info.value.status_code == 401


class TestOAuthDefaults:
    @pytest.fixture
    def oauth_settings(self):
        return Settings(
            _env_file=None,
            linear_client_id="client-id",
            linear_client_secret="client-secret",
            app_url="https://catalyst.example.com",
        )

    def test_authorization_url_carries_state_and_redirect(self, oauth_settings):
        provider = LinearIntegration(app_settings=oauth_settings)

        url = provider.get_authorization_url("state-123")

        query = parse_qs(urlparse(url).query)
        assert query["state"] == ["state-123"]
        assert query["client_id"] == ["client-id"]
        assert query["redirect_uri"][0].endswith("/integrations/linear/callback")

    def test_unconfigured_provider_cannot_build_url(self):
        provider = LinearIntegration(app_settings=Settings(_env_file=None))

        with pytest.raises(ProviderConfigurationError):
            provider.get_authorization_url("state")

    @pytest.mark.asyncio
    async def test_code_exchange_maps_token_response(self, oauth_settings):
        seen = []

        def handler(request):
            seen.append(parse_qs(request.content.decode()))
            return httpx.Response(
                200, json={"access_token": "at", "refresh_token": "rt", "expires_in": 3600, "token_type": "Bearer"}
            )

        provider, _ = _provider(handler, app_settings=oauth_settings)

        tokens = await provider.exchange_code_for_tokens("the-code")

        assert tokens.access_token == "at"
        assert tokens.refresh_token == "rt"
        assert tokens.expires_at > utc_now()
        assert seen[0]["grant_type"] == ["authorization_code"]
        assert seen[0]["code"] == ["the-code"]

    @pytest.mark.asyncio
    async def test_refresh_keeps_old_refresh_token_when_not_rotated(self, oauth_settings):
        handler, _ = _sequence(httpx.Response(200, json={"access_token": "new"}))
        provider, _ = _provider(handler, app_settings=oauth_settings)

        tokens = await provider.refresh_access_token("original-refresh")

        assert tokens.access_token == "new"
        assert tokens.refresh_token == "original-refresh"

    @pytest.mark.asyncio
    async def test_oauth_error_body_is_permanent(self, oauth_settings):
        handler, _ = _sequence(httpx.Response(200, json={"error": "invalid_grant"}))
        provider, _ = _provider(handler, app_settings=oauth_settings)

        with pytest.raises(PermanentRequestError):
            await provider.exchange_code_for_tokens("stale-code")
