"""
Granola integration.

Auth: user-supplied API key
Sync: cursor-paginated meeting notes, optionally since a timestamp
"""
from typing import Any, Dict, List, Optional

from app.core.time_utils import parse_optional_datetime, parse_timestamp_or_now
from app.integrations.base import ApiKeyIntegration
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

DEFAULT_LIMIT = 50
PAGE_SIZE = 20
PAGE_DELAY_SECONDS = 0.1
MAX_TRANSCRIPT_LENGTH = 2000


@register_provider
class GranolaIntegration(ApiKeyIntegration):
    provider = IntegrationProvider.GRANOLA

    @property
    def base_url(self) -> str:
        return self.settings.granola_api_url.rstrip("/")

    def _headers(self, api_key: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"}

    async def validate_api_key(self, api_key: str) -> bool:
        try:
            response = await self.fetch_with_retry("GET", f"{self.base_url}/user", headers=self._headers(api_key))
        except Exception:
            return False
        return response.status_code < 400

    async def get_account_info(self, tokens: IntegrationTokens) -> Dict[str, Any]:
        data = await self.request_json("GET", f"{self.base_url}/user", headers=self._headers(tokens.access_token))
        return {"account_name": data.get("name"), "account_email": data.get("email"), "plan": data.get("plan")}

    async def sync(self, context: IntegrationContext, options: SyncOptions) -> List[StandardIngestItem]:
        limit = options.limit or DEFAULT_LIMIT
        items: List[StandardIngestItem] = []
        cursor: Optional[str] = options.cursor
        has_more = True

        while has_more and len(items) < limit:
            params: Dict[str, Any] = {"limit": min(PAGE_SIZE, limit - len(items))}
            if cursor:
                params["cursor"] = cursor
            if options.since:
                params["since"] = options.since.isoformat()
            page = await self.request_json(
                "GET", f"{self.base_url}/meetings", params=params, headers=self._headers(context.tokens.access_token)
            )
            items.extend(self.normalize_meeting(meeting) for meeting in page.get("meetings") or [])
            has_more = bool(page.get("has_more"))
            cursor = page.get("cursor")
            if has_more:
                await self.sleep(PAGE_DELAY_SECONDS)

        # Resume from here next run when the limit cut pagination short
        options.cursor = cursor if has_more else None
        return items

    def normalize_meeting(self, meeting: Dict[str, Any]) -> StandardIngestItem:
        sections = []
        if meeting.get("summary"):
            sections.append(f"## Summary\n{meeting['summary']}")
        if meeting.get("notes"):
            sections.append(f"## Notes\n{meeting['notes']}")
        action_items = meeting.get("action_items") or []
        if action_items:
            sections.append("## Action Items\n" + "\n".join(f"- {entry}" for entry in action_items))
        transcript = meeting.get("transcript")
        if transcript:
            if len(transcript) > MAX_TRANSCRIPT_LENGTH:
                transcript = transcript[:MAX_TRANSCRIPT_LENGTH] + "..."
            sections.append(f"## Transcript\n{transcript}")

        return StandardIngestItem(
            source_provider=self.provider,
            source_id=str(meeting["id"]),
            type=IngestItemType.MEETING,
            title=meeting.get("title"),
            content="\n\n".join(sections),
            summary=meeting.get("summary"),
            metadata=IngestItemMetadata(
                timestamp=parse_timestamp_or_now(meeting.get("date")),
                created_at=parse_optional_datetime(meeting.get("created_at")),
                updated_at=parse_optional_datetime(meeting.get("updated_at")),
                participants=list(meeting.get("participants") or []),
                tags=list(meeting.get("tags") or []),
                custom={
                    "duration": meeting.get("duration"),
                    "participants": meeting.get("participants"),
                    "action_items": action_items,
                },
            ),
            processing_hints=ProcessingHints(extract_tasks=bool(action_items), extract_memories=True),
        )
