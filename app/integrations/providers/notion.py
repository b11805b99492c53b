"""
Notion integration.

Auth: OAuth2 public integration (tokens don't expire)
Sync: search API, most recently edited pages first
"""
import base64
from typing import Any, Dict, List, Optional

from app.core.exceptions import PermanentRequestError
from app.core.time_utils import ensure_utc, parse_optional_datetime, parse_timestamp_or_now
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

API_URL = "https://api.notion.com/v1"
NOTION_VERSION = "2022-06-28"
DEFAULT_PAGE_SIZE = 50


def page_title(page: Dict[str, Any]) -> str:
    properties = page.get("properties") or {}
    for key in ("title", "Name"):
        runs = (properties.get(key) or {}).get("title") or []
        if runs and runs[0].get("plain_text"):
            return runs[0]["plain_text"]
    return "Untitled"


@register_provider
class NotionIntegration(BaseIntegration):
    provider = IntegrationProvider.NOTION
    supports_token_refresh = False

    def authorization_params(self, config, state: str) -> Dict[str, str]:
        return {
            "client_id": config.client_id,
            "redirect_uri": config.redirect_uri,
            "response_type": "code",
            "owner": "user",
            "state": state,
        }

    async def exchange_code_for_tokens(self, code: str) -> IntegrationTokens:
        config = self.get_oauth_config()
        credentials = base64.b64encode(f"{config.client_id}:{config.client_secret}".encode()).decode()
        response = await self.fetch_with_retry(
            "POST",
            config.token_url,
            json={"grant_type": "authorization_code", "code": code, "redirect_uri": config.redirect_uri},
            headers={"Authorization": f"Basic {credentials}"},
        )
        data = response.json()
        if response.status_code >= 400 or data.get("error"):
            raise PermanentRequestError(f"Notion OAuth error: {data.get('error')}", response.status_code)
        return IntegrationTokens(access_token=data["access_token"], token_type=data.get("token_type"))

    def _headers(self, access_token: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {access_token}", "Notion-Version": NOTION_VERSION}

    async def get_account_info(self, tokens: IntegrationTokens) -> Dict[str, Any]:
        data = await self.request_json("GET", f"{API_URL}/users/me", headers=self._headers(tokens.access_token))
        bot = data.get("bot") or {}
        return {
            "account_name": data.get("name"),
            "bot_id": data.get("id"),
            "type": data.get("type"),
            "workspace": bot.get("workspace_name"),
        }

    async def sync(self, context: IntegrationContext, options: SyncOptions) -> List[StandardIngestItem]:
        data = await self.request_json(
            "POST",
            f"{API_URL}/search",
            json={
                "filter": {"property": "object", "value": "page"},
                "page_size": options.limit or DEFAULT_PAGE_SIZE,
                "sort": {"direction": "descending", "timestamp": "last_edited_time"},
            },
            headers=self._headers(context.tokens.access_token),
        )
        since = ensure_utc(options.since) if options.since else None
        items: List[StandardIngestItem] = []
        for page in data.get("results") or []:
            item = self.normalize_page(page)
            # Results are newest first, so everything after this is older too
            if since and item.metadata.timestamp < since:
                break
            items.append(item)
        return items

    def normalize_page(self, page: Dict[str, Any]) -> StandardIngestItem:
        icon = page.get("icon") or {}
        cover = page.get("cover") or {}
        return StandardIngestItem(
            source_provider=self.provider,
            source_id=page["id"],
            source_url=page.get("url"),
            type=IngestItemType.DOCUMENT,
            title=page_title(page),
            content="",
            metadata=IngestItemMetadata(
                timestamp=parse_timestamp_or_now(page.get("last_edited_time")),
                created_at=parse_optional_datetime(page.get("created_time")),
                updated_at=parse_optional_datetime(page.get("last_edited_time")),
                custom={
                    "icon": icon.get("emoji") or (icon.get("external") or {}).get("url"),
                    "cover": (cover.get("external") or {}).get("url"),
                },
            ),
        )

    async def create_page(
        self, access_token: str, parent_page_id: str, title: str, content: str
    ) -> Dict[str, Optional[str]]:
        """Export text to a new page under `parent_page_id`; paragraphs split on blank lines."""
        blocks = [
            {
                "object": "block",
                "type": "paragraph",
                "paragraph": {"rich_text": [{"type": "text", "text": {"content": paragraph}}]},
            }
            for paragraph in content.split("\n\n")
            if paragraph.strip()
        ]
        data = await self.request_json(
            "POST",
            f"{API_URL}/pages",
            json={
                "parent": {"page_id": parent_page_id},
                "properties": {"title": {"title": [{"text": {"content": title}}]}},
                # Notion accepts at most 100 blocks per request
                "children": blocks[:100],
            },
            headers=self._headers(access_token),
        )
        return {"id": data.get("id"), "url": data.get("url"), "title": title}
