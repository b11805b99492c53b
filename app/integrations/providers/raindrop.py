"""
Raindrop.io integration.

Auth: OAuth2 with refresh tokens (JSON token endpoint)
Sync: bookmarks across all collections; each highlight becomes its own item
"""
from typing import Any, Dict, List, Optional

from app.core.exceptions import PermanentRequestError
from app.core.time_utils import parse_optional_datetime, parse_timestamp_or_now
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

API_URL = "https://api.raindrop.io/rest/v1"
DEFAULT_LIMIT = 50
# Collection 0 means "all raindrops"
ALL_COLLECTIONS = 0


@register_provider
class RaindropIntegration(BaseIntegration):
    provider = IntegrationProvider.RAINDROP

    def authorization_params(self, config, state: str) -> Dict[str, str]:
        return {"client_id": config.client_id, "redirect_uri": config.redirect_uri, "state": state}

    async def _token_request(self, config, form: Dict[str, str]) -> Dict[str, Any]:
        response = await self.fetch_with_retry("POST", config.token_url, json=form)
        if response.status_code >= 400:
            raise PermanentRequestError("Raindrop token request failed", response.status_code)
        return response.json()

    def _headers(self, access_token: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {access_token}"}

    async def get_account_info(self, tokens: IntegrationTokens) -> Dict[str, Any]:
        data = await self.request_json("GET", f"{API_URL}/user", headers=self._headers(tokens.access_token))
        user = data.get("user") or {}
        return {"account_name": user.get("fullName"), "account_email": user.get("email"), "pro": user.get("pro")}

    async def sync(self, context: IntegrationContext, options: SyncOptions) -> List[StandardIngestItem]:
        headers = self._headers(context.tokens.access_token)
        collections = (await self.request_json("GET", f"{API_URL}/collections", headers=headers)).get("items") or []
        by_id = {collection["_id"]: collection for collection in collections}

        bookmarks = (
            await self.request_json(
                "GET",
                f"{API_URL}/raindrops/{ALL_COLLECTIONS}",
                params={"perpage": options.limit or DEFAULT_LIMIT},
                headers=headers,
            )
        ).get("items") or []

        items: List[StandardIngestItem] = []
        for bookmark in bookmarks:
            collection_id = (bookmark.get("collection") or {}).get("$id")
            items.append(self.normalize_raindrop(bookmark, by_id.get(collection_id)))
            for highlight in bookmark.get("highlights") or []:
                items.append(self.normalize_highlight(highlight, bookmark))
        return items

    def normalize_raindrop(self, item: Dict[str, Any], collection: Optional[Dict[str, Any]] = None) -> StandardIngestItem:
        content = item.get("excerpt") or ""
        if item.get("note"):
            content = f"**Note:** {item['note']}\n\n{content}"
        content += f"\n\n[View bookmark]({item.get('link')})"

        return StandardIngestItem(
            source_provider=self.provider,
            source_id=str(item["_id"]),
            source_url=item.get("link"),
            type=IngestItemType.ARTICLE if item.get("type") == "article" else IngestItemType.BOOKMARK,
            title=item.get("title"),
            content=content,
            summary=item.get("excerpt") or None,
            metadata=IngestItemMetadata(
                timestamp=parse_timestamp_or_now(item.get("created")),
                updated_at=parse_optional_datetime(item.get("lastUpdate")),
                tags=list(item.get("tags") or []),
                custom={
                    "domain": item.get("domain"),
                    "type": item.get("type"),
                    "important": bool(item.get("important")),
                    "collection_id": (item.get("collection") or {}).get("$id"),
                    "collection_name": (collection or {}).get("title"),
                    "cover_image": item.get("cover"),
                    "highlight_count": len(item.get("highlights") or []),
                },
            ),
            processing_hints=ProcessingHints(extract_memories=bool(item.get("important"))),
        )

    def normalize_highlight(self, highlight: Dict[str, Any], bookmark: Dict[str, Any]) -> StandardIngestItem:
        content = highlight.get("text") or ""
        if highlight.get("note"):
            content += f"\n\n**Note:** {highlight['note']}"
        return StandardIngestItem(
            source_provider=self.provider,
            source_id=f"highlight_{highlight['_id']}",
            source_url=bookmark.get("link"),
            type=IngestItemType.HIGHLIGHT,
            title=f'Highlight from "{bookmark.get("title")}"',
            content=content,
            metadata=IngestItemMetadata(
                timestamp=parse_timestamp_or_now(highlight.get("created")),
                parent_id=str(bookmark["_id"]),
                custom={
                    "bookmark_id": bookmark["_id"],
                    "bookmark_title": bookmark.get("title"),
                    "color": highlight.get("color"),
                },
            ),
            processing_hints=ProcessingHints(extract_memories=True),
        )
