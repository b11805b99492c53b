"""
Zoom integration.

Auth: OAuth2 with refresh tokens (client credentials sent as Basic auth)
Sync: cloud recordings in the last 30 days plus `recording.completed` webhooks
"""
from datetime import timedelta
from typing import Any, Dict, List, Mapping, Optional

from app.core.exceptions import PermanentRequestError
from app.core.signing import compute_hmac_sha256
from app.core.time_utils import ensure_utc, parse_timestamp_or_now, utc_now
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

API_URL = "https://api.zoom.us/v2"
DEFAULT_LIMIT = 30
DEFAULT_WINDOW_DAYS = 30

RECORDING_TYPE_LABELS = {
    "shared_screen_with_speaker_view": "Shared Screen with Speaker",
    "shared_screen_with_gallery_view": "Shared Screen with Gallery",
    "shared_screen": "Shared Screen",
    "speaker_view": "Speaker View",
    "gallery_view": "Gallery View",
    "audio_only": "Audio Only",
    "audio_transcript": "Transcript",
    "chat_file": "Chat",
    "timeline": "Timeline",
}


@register_provider
class ZoomIntegration(BaseIntegration):
    provider = IntegrationProvider.ZOOM
    requires_webhook_secret = True
    webhook_signature_header = "x-zm-signature"

    def authorization_params(self, config, state: str) -> Dict[str, str]:
        return {
            "response_type": "code",
            "client_id": config.client_id,
            "redirect_uri": config.redirect_uri,
            "state": state,
        }

    async def _token_request(self, config, form: Dict[str, str]) -> Dict[str, Any]:
        form = {k: v for k, v in form.items() if k not in ("client_id", "client_secret")}
        response = await self.fetch_with_retry(
            "POST", config.token_url, data=form, auth=(config.client_id, config.client_secret)
        )
        if response.status_code >= 400:
            raise PermanentRequestError("Zoom token request failed", response.status_code)
        return response.json()

    def _headers(self, access_token: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {access_token}"}

    async def get_account_info(self, tokens: IntegrationTokens) -> Dict[str, Any]:
        user = await self.request_json("GET", f"{API_URL}/users/me", headers=self._headers(tokens.access_token))
        return {
            "account_name": f"{user.get('first_name', '')} {user.get('last_name', '')}".strip(),
            "account_email": user.get("email"),
            "user_id": user.get("id"),
            "account_id": user.get("account_id"),
            "timezone": user.get("timezone"),
        }

    async def sync(self, context: IntegrationContext, options: SyncOptions) -> List[StandardIngestItem]:
        to = utc_now()
        since = ensure_utc(options.since) if options.since else to - timedelta(days=DEFAULT_WINDOW_DAYS)
        data = await self.request_json(
            "GET",
            f"{API_URL}/users/me/recordings",
            params={
                "from": since.date().isoformat(),
                "to": to.date().isoformat(),
                "page_size": options.limit or DEFAULT_LIMIT,
            },
            headers=self._headers(context.tokens.access_token),
        )
        return [self.normalize_meeting(meeting) for meeting in data.get("meetings") or []]

    # ----- webhooks -----

    def verify_webhook_request(self, raw_body: bytes, headers: Mapping[str, str], secret: Optional[str]) -> bool:
        timestamp = headers.get("x-zm-request-timestamp")
        if not timestamp:
            return False
        base = b"v0:" + timestamp.encode() + b":" + raw_body
        return self.verify_hmac_signature(base, headers.get(self.webhook_signature_header), secret, prefix="v0=")

    def webhook_event_type(self, headers: Mapping[str, str], payload: Any) -> Optional[str]:
        return (payload or {}).get("event")

    def webhook_challenge(self, payload: Any, secret: Optional[str]) -> Optional[Dict[str, Any]]:
        if not isinstance(payload, dict) or payload.get("event") != "endpoint.url_validation":
            return None
        plain_token = (payload.get("payload") or {}).get("plainToken", "")
        return {
            "plainToken": plain_token,
            "encryptedToken": compute_hmac_sha256(plain_token, secret or ""),
        }

    def match_webhook_integrations(self, payload: Any, integrations):
        account_id = (payload or {}).get("payload", {}).get("account_id")
        if not account_id:
            return super().match_webhook_integrations(payload, integrations)
        return [
            integration
            for integration in integrations
            if integration.is_active and integration.get_metadata().get("account_id") == account_id
        ]

    async def handle_webhook(
        self,
        payload: Any,
        signature: Optional[str] = None,
        event_type: Optional[str] = None,
    ) -> List[StandardIngestItem]:
        data = payload or {}
        if (event_type or data.get("event")) == "recording.completed":
            meeting = (data.get("payload") or {}).get("object")
            if meeting:
                return [self.normalize_meeting(meeting)]
        return []

    # ----- normalization -----

    def normalize_meeting(self, meeting: Dict[str, Any]) -> StandardIngestItem:
        files = meeting.get("recording_files") or []
        started = parse_timestamp_or_now(meeting.get("start_time"))

        lines = [
            f"**Meeting:** {meeting.get('topic')}",
            f"**Duration:** {meeting.get('duration')} minutes",
            f"**Date:** {started.strftime('%Y-%m-%d %H:%M UTC')}",
        ]
        if files:
            lines.append("\n**Recordings:**")
            for recording in files:
                label = RECORDING_TYPE_LABELS.get(recording.get("recording_type"), recording.get("recording_type"))
                lines.append(f"- {label} ({recording.get('file_extension')})")
        if meeting.get("share_url"):
            lines.append(f"\n[View Recording]({meeting['share_url']})")

        has_transcript = any(
            f.get("recording_type") == "audio_transcript" or f.get("file_type") == "TRANSCRIPT" for f in files
        )
        return StandardIngestItem(
            source_provider=self.provider,
            source_id=str(meeting["uuid"]),
            source_url=meeting.get("share_url"),
            type=IngestItemType.MEETING,
            title=meeting.get("topic"),
            content="\n".join(lines),
            metadata=IngestItemMetadata(
                timestamp=started,
                custom={
                    "meeting_id": meeting.get("id"),
                    "host_id": meeting.get("host_id"),
                    "duration": meeting.get("duration"),
                    "timezone": meeting.get("timezone"),
                    "recording_count": meeting.get("recording_count"),
                    "total_size": meeting.get("total_size"),
                    "has_transcript": has_transcript,
                    "recording_types": [f.get("recording_type") for f in files],
                },
            ),
            processing_hints=ProcessingHints(extract_memories=True, extract_tasks=True),
        )
