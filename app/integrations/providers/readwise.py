"""
Readwise integration.

Auth: OAuth2 (the API itself takes `Authorization: Token ...`)
Sync: the export endpoint, cursor-paginated; books and their highlights
become separate items. New highlights can also be pushed by webhook.
"""
from typing import Any, Dict, List, Optional

from app.core.time_utils import parse_optional_datetime, parse_timestamp_or_now, utc_now
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

API_URL = "https://readwise.io/api/v2"
DEFAULT_LIMIT = 100
PAGE_DELAY_SECONDS = 0.1


def _tag_names(tags: Optional[List[Dict[str, Any]]]) -> List[str]:
    return [tag["name"] for tag in tags or [] if tag.get("name")]


def _highlight_content(highlight: Dict[str, Any]) -> str:
    content = highlight.get("text") or ""
    if highlight.get("note"):
        content += f"\n\n**Note:** {highlight['note']}"
    return content


@register_provider
class ReadwiseIntegration(BaseIntegration):
    provider = IntegrationProvider.READWISE

    def authorization_params(self, config, state: str) -> Dict[str, str]:
        return {
            "response_type": "code",
            "client_id": config.client_id,
            "redirect_uri": config.redirect_uri,
            "state": state,
        }

    def _headers(self, access_token: str) -> Dict[str, str]:
        return {"Authorization": f"Token {access_token}"}

    async def validate_connection(self, tokens: IntegrationTokens) -> bool:
        try:
            response = await self.fetch_with_retry("GET", f"{API_URL}/auth", headers=self._headers(tokens.access_token))
        except Exception:
            return False
        return response.status_code < 400

    async def get_account_info(self, tokens: IntegrationTokens) -> Dict[str, Any]:
        data = await self.request_json("GET", f"{API_URL}/auth", headers=self._headers(tokens.access_token))
        return {"account_email": data.get("email")}

    async def sync(self, context: IntegrationContext, options: SyncOptions) -> List[StandardIngestItem]:
        limit = options.limit or DEFAULT_LIMIT
        cursor: Optional[str] = options.cursor
        items: List[StandardIngestItem] = []

        while True:
            params: Dict[str, Any] = {}
            if cursor:
                params["pageCursor"] = cursor
            if options.since:
                params["updatedAfter"] = options.since.isoformat()
            page = await self.request_json(
                "GET", f"{API_URL}/export/", params=params, headers=self._headers(context.tokens.access_token)
            )
            for book in page.get("results") or []:
                items.append(self.normalize_book(book))
                items.extend(self.normalize_highlight(h, book) for h in book.get("highlights") or [])
                if len(items) >= limit:
                    break
            cursor = page.get("nextPageCursor")
            if not cursor or len(items) >= limit:
                break
            await self.sleep(PAGE_DELAY_SECONDS)

        options.cursor = cursor
        return items

    async def handle_webhook(
        self,
        payload: Any,
        signature: Optional[str] = None,
        event_type: Optional[str] = None,
    ) -> List[StandardIngestItem]:
        highlights = (payload or {}).get("highlights") or []
        return [
            StandardIngestItem(
                source_provider=self.provider,
                source_id=f"highlight_{highlight['id']}",
                source_url=highlight.get("url"),
                type=IngestItemType.HIGHLIGHT,
                title="New Readwise Highlight",
                content=_highlight_content(highlight),
                metadata=IngestItemMetadata(
                    timestamp=parse_timestamp_or_now(highlight.get("highlighted_at")),
                    tags=_tag_names(highlight.get("tags")),
                ),
                processing_hints=ProcessingHints(extract_memories=True),
            )
            for highlight in highlights
        ]

    def normalize_book(self, book: Dict[str, Any]) -> StandardIngestItem:
        return StandardIngestItem(
            source_provider=self.provider,
            source_id=f"book_{book['user_book_id']}",
            source_url=book.get("readwise_url") or book.get("source_url"),
            type=IngestItemType.ARTICLE,
            title=book.get("readable_title") or book.get("title"),
            content=book.get("document_note") or f"{book.get('title')} by {book.get('author')}",
            summary=book.get("document_note"),
            metadata=IngestItemMetadata(
                timestamp=utc_now(),
                author=book.get("author"),
                tags=_tag_names(book.get("book_tags")),
                custom={
                    "source": book.get("source"),
                    "category": book.get("category"),
                    "cover_image_url": book.get("cover_image_url"),
                    "highlight_count": len(book.get("highlights") or []),
                },
            ),
        )

    def normalize_highlight(self, highlight: Dict[str, Any], book: Dict[str, Any]) -> StandardIngestItem:
        return StandardIngestItem(
            source_provider=self.provider,
            source_id=f"highlight_{highlight['id']}",
            source_url=highlight.get("url") or book.get("readwise_url"),
            type=IngestItemType.HIGHLIGHT,
            title=f'Highlight from "{book.get("title")}"',
            content=_highlight_content(highlight),
            metadata=IngestItemMetadata(
                timestamp=parse_timestamp_or_now(highlight.get("highlighted_at")),
                updated_at=parse_optional_datetime(highlight.get("updated")),
                author=book.get("author"),
                tags=_tag_names(highlight.get("tags")),
                parent_id=f"book_{book['user_book_id']}",
                custom={
                    "book_id": book["user_book_id"],
                    "book_title": book.get("title"),
                    "location": highlight.get("location"),
                    "location_type": highlight.get("location_type"),
                    "color": highlight.get("color"),
                },
            ),
            processing_hints=ProcessingHints(extract_memories=True),
        )
