"""
Pocket integration.

Auth: Pocket's OAuth variant. A request token is obtained up front and
round-tripped through the redirect as `code`; access tokens don't expire.
Sync: saved items, newest first, optionally since a timestamp
"""
from typing import Any, Dict, List
from urllib.parse import urlencode

from app.core.exceptions import PermanentRequestError
from app.core.time_utils import parse_optional_datetime, parse_timestamp_or_now, to_epoch_seconds
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

API_URL = "https://getpocket.com/v3"
DEFAULT_LIMIT = 50
JSON_HEADERS = {"Content-Type": "application/json; charset=UTF-8", "X-Accept": "application/json"}


@register_provider
class PocketIntegration(BaseIntegration):
    provider = IntegrationProvider.POCKET
    supports_token_refresh = False

    def _redirect_uri(self, config, state: str, request_token: str) -> str:
        return f"{config.redirect_uri}?{urlencode({'state': state, 'code': request_token})}"

    async def prepare_authorization_url(self, state: str) -> str:
        config = self.get_oauth_config()
        # Pocket needs the redirect URI when issuing the request token
        provisional = f"{config.redirect_uri}?{urlencode({'state': state})}"
        data = await self.request_json(
            "POST",
            f"{API_URL}/oauth/request",
            json={"consumer_key": config.client_id, "redirect_uri": provisional, "state": state},
            headers=JSON_HEADERS,
        )
        request_token = data.get("code")
        if not request_token:
            raise PermanentRequestError("Pocket did not return a request token", 400)
        params = {"request_token": request_token, "redirect_uri": self._redirect_uri(config, state, request_token)}
        return f"{config.authorization_url}?{urlencode(params)}"

    async def exchange_code_for_tokens(self, code: str) -> IntegrationTokens:
        config = self.get_oauth_config()
        data = await self.request_json(
            "POST",
            config.token_url,
            json={"consumer_key": config.client_id, "code": code},
            headers=JSON_HEADERS,
        )
        return IntegrationTokens(access_token=data["access_token"])

    async def _get(self, access_token: str, **params) -> Dict[str, Any]:
        config = self.get_oauth_config()
        body = {"consumer_key": config.client_id, "access_token": access_token, **params}
        return await self.request_json("POST", f"{API_URL}/get", json=body, headers=JSON_HEADERS)

    async def validate_connection(self, tokens: IntegrationTokens) -> bool:
        try:
            await self._get(tokens.access_token, count=1)
            return True
        except Exception:
            return False

    async def get_account_info(self, tokens: IntegrationTokens) -> Dict[str, Any]:
        # Pocket exposes no profile endpoint
        return {"account_name": "Pocket User"}

    async def sync(self, context: IntegrationContext, options: SyncOptions) -> List[StandardIngestItem]:
        params: Dict[str, Any] = {"count": options.limit or DEFAULT_LIMIT, "detailType": "complete", "sort": "newest"}
        if options.since:
            params["since"] = to_epoch_seconds(options.since)
        data = await self._get(context.tokens.access_token, **params)
        listing = data.get("list") or {}
        # An empty list comes back as [] rather than {}
        values = listing.values() if isinstance(listing, dict) else listing
        return [self.normalize_item(item) for item in values]

    def normalize_item(self, item: Dict[str, Any]) -> StandardIngestItem:
        title = item.get("resolved_title") or item.get("given_title") or "Untitled"
        url = item.get("resolved_url") or item.get("given_url")
        tags = [tag.get("tag") for tag in (item.get("tags") or {}).values()]
        authors = [author.get("name") for author in (item.get("authors") or {}).values()]

        content = item.get("excerpt") or ""
        if authors:
            content = f"**By:** {', '.join(authors)}\n\n{content}"
        content += f"\n\n[Read full article]({url})"

        favorite = item.get("favorite") == "1"
        try:
            word_count = int(item.get("word_count") or 0)
        except ValueError:
            word_count = 0

        return StandardIngestItem(
            source_provider=self.provider,
            source_id=str(item["item_id"]),
            source_url=url,
            type=IngestItemType.ARTICLE if item.get("is_article") == "1" else IngestItemType.BOOKMARK,
            title=title,
            content=content,
            summary=item.get("excerpt") or None,
            metadata=IngestItemMetadata(
                timestamp=parse_timestamp_or_now(item.get("time_added")),
                updated_at=parse_optional_datetime(item.get("time_updated")),
                author=authors[0] if authors else None,
                tags=tags,
                custom={
                    "word_count": word_count,
                    "has_image": item.get("has_image") == "1",
                    "has_video": item.get("has_video") == "1",
                    "is_favorite": favorite,
                    "status": item.get("status"),
                    "image_url": (item.get("image") or {}).get("src"),
                },
            ),
            processing_hints=ProcessingHints(extract_memories=favorite),
        )
