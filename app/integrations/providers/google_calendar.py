"""
Google Calendar integration.

Auth: Google OAuth2 (offline access, refresh tokens)
Sync: primary calendar events from `since` (or now) through the next month
"""
from datetime import timedelta
from typing import Any, Dict, List, Optional

from app.core.time_utils import ensure_utc, parse_optional_datetime, parse_timestamp_or_now, utc_now
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

API_URL = "https://www.googleapis.com/calendar/v3"
USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"
DEFAULT_LIMIT = 50
LOOKAHEAD_DAYS = 31


@register_provider
class GoogleCalendarIntegration(BaseIntegration):
    provider = IntegrationProvider.GOOGLE_CALENDAR

    def authorization_params(self, config, state: str) -> Dict[str, str]:
        params = super().authorization_params(config, state)
        params["access_type"] = "offline"
        params["prompt"] = "consent"
        return params

    def _headers(self, access_token: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {access_token}"}

    async def validate_connection(self, tokens: IntegrationTokens) -> bool:
        try:
            await self.request_json(
                "GET",
                f"{API_URL}/users/me/calendarList",
                params={"maxResults": 1},
                headers=self._headers(tokens.access_token),
            )
            return True
        except Exception:
            return False

    async def get_account_info(self, tokens: IntegrationTokens) -> Dict[str, Any]:
        data = await self.request_json("GET", USERINFO_URL, headers=self._headers(tokens.access_token))
        return {"account_name": data.get("name"), "account_email": data.get("email")}

    async def sync(self, context: IntegrationContext, options: SyncOptions) -> List[StandardIngestItem]:
        now = utc_now()
        time_min = ensure_utc(options.since) if options.since else now
        data = await self.request_json(
            "GET",
            f"{API_URL}/calendars/primary/events",
            params={
                "orderBy": "startTime",
                "singleEvents": "true",
                "maxResults": options.limit or DEFAULT_LIMIT,
                "timeMin": time_min.isoformat(),
                "timeMax": (now + timedelta(days=LOOKAHEAD_DAYS)).isoformat(),
            },
            headers=self._headers(context.tokens.access_token),
        )
        return [self.normalize_event(event) for event in data.get("items") or []]

    def normalize_event(self, event: Dict[str, Any]) -> StandardIngestItem:
        start = event.get("start") or {}
        end = event.get("end") or {}
        return StandardIngestItem(
            source_provider=self.provider,
            source_id=event["id"],
            source_url=event.get("htmlLink"),
            type=IngestItemType.MEETING,
            title=event.get("summary") or "Untitled Event",
            content=event.get("description") or "",
            metadata=IngestItemMetadata(
                timestamp=parse_timestamp_or_now(start.get("dateTime") or start.get("date")),
                created_at=parse_optional_datetime(event.get("created")),
                updated_at=parse_optional_datetime(event.get("updated")),
                participants=[a["email"] for a in event.get("attendees") or [] if a.get("email")],
                custom={
                    "start": start,
                    "end": end,
                    "location": event.get("location"),
                    "attendees": [a.get("email") for a in event.get("attendees") or []],
                },
            ),
        )

    async def create_event(
        self,
        access_token: str,
        summary: str,
        start: Dict[str, str],
        end: Dict[str, str],
        description: Optional[str] = None,
        color_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Insert an event on the primary calendar."""
        body: Dict[str, Any] = {"summary": summary, "start": start, "end": end}
        if description:
            body["description"] = description
        if color_id:
            body["colorId"] = color_id
        return await self.request_json(
            "POST", f"{API_URL}/calendars/primary/events", json=body, headers=self._headers(access_token)
        )
