"""
Slack integration.

Auth: OAuth2 v2 (bot tokens don't expire)
Sync: Events API only; there is no polling.
"""
import time
from typing import Any, Dict, List, Mapping, Optional

from app.core.exceptions import PermanentRequestError
from app.core.time_utils import parse_timestamp_or_now
from app.integrations.base import BaseIntegration
from app.integrations.registry import register_provider
from app.integrations.types import (
    IngestItemMetadata,
    IntegrationContext,
    IntegrationTokens,
    StandardIngestItem,
    SyncOptions,
)
from app.models.enums import IngestItemType, IntegrationProvider

API_URL = "https://slack.com/api"
# Slack rejects replays older than five minutes; so do we
SIGNATURE_MAX_AGE_SECONDS = 60 * 5


@register_provider
class SlackIntegration(BaseIntegration):
    provider = IntegrationProvider.SLACK
    supports_token_refresh = False
    requires_webhook_secret = True
    webhook_signature_header = "x-slack-signature"

    def authorization_params(self, config, state: str) -> Dict[str, str]:
        params = super().authorization_params(config, state)
        # Slack wants comma separated scopes
        params["scope"] = ",".join(config.scopes)
        params.pop("response_type", None)
        return params

    async def exchange_code_for_tokens(self, code: str) -> IntegrationTokens:
        config = self.get_oauth_config()
        response = await self.fetch_with_retry(
            "POST",
            config.token_url,
            data={
                "client_id": config.client_id,
                "client_secret": config.client_secret,
                "code": code,
                "redirect_uri": config.redirect_uri,
            },
        )
        data = response.json()
        if not data.get("ok"):
            raise PermanentRequestError(f"Slack OAuth error: {data.get('error')}", response.status_code)
        # Team and user ids are picked up by get_account_info
        return IntegrationTokens(access_token=data["access_token"], scope=data.get("scope"))

    async def validate_connection(self, tokens: IntegrationTokens) -> bool:
        try:
            data = await self.request_json(
                "GET", f"{API_URL}/auth.test", headers={"Authorization": f"Bearer {tokens.access_token}"}
            )
            return data.get("ok") is True
        except Exception:
            return False

    async def get_account_info(self, tokens: IntegrationTokens) -> Dict[str, Any]:
        data = await self.request_json(
            "GET", f"{API_URL}/auth.test", headers={"Authorization": f"Bearer {tokens.access_token}"}
        )
        if not data.get("ok"):
            return {}
        return {
            "account_name": data.get("user"),
            "workspace": data.get("team"),
            "team_id": data.get("team_id"),
            "user_id": data.get("user_id"),
        }

    async def sync(self, context: IntegrationContext, options: SyncOptions) -> List[StandardIngestItem]:
        # Slack pushes events; nothing to pull
        return []

    # ----- events api -----

    def verify_webhook_request(self, raw_body: bytes, headers: Mapping[str, str], secret: Optional[str]) -> bool:
        timestamp = headers.get("x-slack-request-timestamp")
        if not timestamp:
            return False
        try:
            age = abs(time.time() - int(timestamp))
        except ValueError:
            return False
        if age > SIGNATURE_MAX_AGE_SECONDS:
            return False
        base = b"v0:" + timestamp.encode() + b":" + raw_body
        return self.verify_hmac_signature(base, headers.get(self.webhook_signature_header), secret, prefix="v0=")

    def webhook_event_type(self, headers: Mapping[str, str], payload: Any) -> Optional[str]:
        event = (payload or {}).get("event") or {}
        return event.get("type") or (payload or {}).get("type")

    def webhook_challenge(self, payload: Any, secret: Optional[str]) -> Optional[Dict[str, Any]]:
        if isinstance(payload, dict) and payload.get("type") == "url_verification":
            return {"challenge": payload.get("challenge")}
        return None

    def match_webhook_integrations(self, payload: Any, integrations):
        team_id = (payload or {}).get("team_id")
        return [
            integration
            for integration in integrations
            if integration.is_active and team_id and integration.get_metadata().get("team_id") == team_id
        ]

    async def handle_webhook(
        self,
        payload: Any,
        signature: Optional[str] = None,
        event_type: Optional[str] = None,
    ) -> List[StandardIngestItem]:
        event = (payload or {}).get("event") or {}
        text = event.get("text")
        kind = event.get("type")
        if not text:
            return []

        if kind == "message" and not event.get("bot_id") and not text.startswith("bot:"):
            source_id = f"slack-{event.get('channel')}-{event.get('ts')}"
            title = f"Slack message in #{event.get('channel')}"
        elif kind == "app_mention":
            source_id = f"slack-mention-{event.get('channel')}-{event.get('ts')}"
            title = f"Slack mention in #{event.get('channel')}"
        else:
            return []

        return [
            StandardIngestItem(
                source_provider=self.provider,
                source_id=source_id,
                type=IngestItemType.MESSAGE,
                title=title,
                content=text,
                metadata=IngestItemMetadata(
                    timestamp=parse_timestamp_or_now(event.get("ts")),
                    author_id=event.get("user"),
                    thread_id=event.get("thread_ts"),
                    custom={
                        "channel": event.get("channel"),
                        "team_id": payload.get("team_id"),
                    },
                ),
            )
        ]
