"""
Gmail integration.

Auth: Google OAuth2 (offline access, refresh tokens)
Sync: recent inbox messages via the Gmail REST API
"""
import base64
import binascii
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from app.core.time_utils import parse_timestamp_or_now, utc_now
from app.integrations.base import BaseIntegration
from app.integrations.registry import register_provider
from app.integrations.types import (
    IngestItemMetadata,
    IntegrationContext,
    IntegrationTokens,
    ProcessingHints,
    StandardIngestItem,
    SyncOptions,
)
from app.models.enums import IngestItemType, IntegrationProvider

API_URL = "https://gmail.googleapis.com/gmail/v1"
DEFAULT_LIMIT = 50
DEFAULT_WINDOW_DAYS = 7
MAX_BODY_LENGTH = 5000
# Pause between message fetches
REQUEST_DELAY_SECONDS = 0.05


def decode_body(data: Optional[str]) -> str:
    """Gmail bodies are unpadded base64url."""
    if not data:
        return ""
    try:
        return base64.urlsafe_b64decode(data + "=" * (-len(data) % 4)).decode("utf-8", errors="replace")
    except (binascii.Error, ValueError):
        return ""


def search_query(since: Optional[datetime]) -> str:
    """Inbox query; Gmail's `after:` takes a YYYY/MM/DD date."""
    since = since or utc_now() - timedelta(days=DEFAULT_WINDOW_DAYS)
    return f"in:inbox after:{since.strftime('%Y/%m/%d')}"


@register_provider
class GmailIntegration(BaseIntegration):
    provider = IntegrationProvider.GMAIL

    def authorization_params(self, config, state: str) -> Dict[str, str]:
        params = super().authorization_params(config, state)
        params["access_type"] = "offline"
        params["prompt"] = "consent"
        return params

    def _headers(self, access_token: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {access_token}"}

    async def get_account_info(self, tokens: IntegrationTokens) -> Dict[str, Any]:
        data = await self.request_json("GET", f"{API_URL}/users/me/profile", headers=self._headers(tokens.access_token))
        return {
            "account_email": data.get("emailAddress"),
            "messages_total": data.get("messagesTotal"),
            "threads_total": data.get("threadsTotal"),
        }

    async def sync(self, context: IntegrationContext, options: SyncOptions) -> List[StandardIngestItem]:
        headers = self._headers(context.tokens.access_token)
        listing = await self.request_json(
            "GET",
            f"{API_URL}/users/me/messages",
            params={"q": search_query(options.since), "maxResults": options.limit or DEFAULT_LIMIT},
            headers=headers,
        )
        items = []
        for ref in listing.get("messages") or []:
            message = await self.request_json(
                "GET", f"{API_URL}/users/me/messages/{ref['id']}", params={"format": "full"}, headers=headers
            )
            items.append(self.normalize_message(message))
            await self.sleep(REQUEST_DELAY_SECONDS)
        return items

    def normalize_message(self, message: Dict[str, Any]) -> StandardIngestItem:
        payload = message.get("payload") or {}
        headers = {h["name"].lower(): h.get("value") for h in payload.get("headers") or []}
        subject = headers.get("subject") or "(No Subject)"
        sender = headers.get("from") or ""
        recipient = headers.get("to") or ""
        labels = list(message.get("labelIds") or [])

        body = decode_body((payload.get("body") or {}).get("data"))
        if not body:
            text_part = next((p for p in payload.get("parts") or [] if p.get("mimeType") == "text/plain"), None)
            if text_part:
                body = decode_body((text_part.get("body") or {}).get("data"))
        if not body:
            body = message.get("snippet") or ""
        if len(body) > MAX_BODY_LENGTH:
            body = body[:MAX_BODY_LENGTH] + "..."

        internal_date = message.get("internalDate")
        return StandardIngestItem(
            source_provider=self.provider,
            source_id=message["id"],
            source_url=f"https://mail.google.com/mail/u/0/#inbox/{message['id']}",
            type=IngestItemType.EMAIL,
            title=subject,
            content=f"**From:** {sender}\n**To:** {recipient}\n\n{body}",
            summary=message.get("snippet"),
            metadata=IngestItemMetadata(
                # internalDate is epoch milliseconds
                timestamp=parse_timestamp_or_now(int(internal_date) / 1000 if internal_date else None),
                author=sender,
                tags=labels,
                thread_id=message.get("threadId"),
                custom={"thread_id": message.get("threadId"), "to": recipient, "labels": labels},
            ),
            processing_hints=ProcessingHints(extract_tasks="STARRED" in labels, extract_memories=True),
        )
