"""
Discord integration.

Auth: OAuth2 with refresh tokens
Sync: gateway events forwarded to the webhook route; there is no polling.
Deliveries are signed with Ed25519 against the application public key.
"""
from typing import Any, Dict, List, Mapping, Optional

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey

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

API_URL = "https://discord.com/api/v10"
PING = 1
TASK_MARKERS = ("todo", "action item")


def verify_ed25519_signature(public_key_hex: Optional[str], signature_hex: Optional[str], message: bytes) -> bool:
    if not public_key_hex or not signature_hex:
        return False
    try:
        key = Ed25519PublicKey.from_public_bytes(bytes.fromhex(public_key_hex))
        key.verify(bytes.fromhex(signature_hex), message)
    except (InvalidSignature, ValueError):
        return False
    return True


@register_provider
class DiscordIntegration(BaseIntegration):
    provider = IntegrationProvider.DISCORD
    requires_webhook_secret = True
    webhook_signature_header = "x-signature-ed25519"

    def _headers(self, access_token: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {access_token}"}

    async def get_account_info(self, tokens: IntegrationTokens) -> Dict[str, Any]:
        headers = self._headers(tokens.access_token)
        user = await self.request_json("GET", f"{API_URL}/users/@me", headers=headers)
        try:
            guilds = await self.request_json("GET", f"{API_URL}/users/@me/guilds", headers=headers)
        except Exception:
            guilds = []
        return {
            "account_name": f"{user.get('username')}#{user.get('discriminator')}",
            "account_email": user.get("email"),
            "user_id": user.get("id"),
            "avatar": user.get("avatar"),
            "guild_count": len(guilds),
            "guilds": [{"id": g.get("id"), "name": g.get("name")} for g in guilds],
        }

    async def sync(self, context: IntegrationContext, options: SyncOptions) -> List[StandardIngestItem]:
        # Real-time only
        return []

    # ----- webhooks -----

    def verify_webhook_request(self, raw_body: bytes, headers: Mapping[str, str], secret: Optional[str]) -> bool:
        timestamp = headers.get("x-signature-timestamp")
        if not timestamp:
            return False
        return verify_ed25519_signature(secret, headers.get(self.webhook_signature_header), timestamp.encode() + raw_body)

    def webhook_event_type(self, headers: Mapping[str, str], payload: Any) -> Optional[str]:
        return (payload or {}).get("t")

    def webhook_challenge(self, payload: Any, secret: Optional[str]) -> Optional[Dict[str, Any]]:
        if isinstance(payload, dict) and payload.get("type") == PING:
            return {"type": PING}
        return None

    def match_webhook_integrations(self, payload: Any, integrations):
        guild_id = ((payload or {}).get("d") or {}).get("guild_id")
        if not guild_id:
            return super().match_webhook_integrations(payload, integrations)
        return [
            integration
            for integration in integrations
            if integration.is_active
            and any(g.get("id") == guild_id for g in integration.get_metadata().get("guilds") or [])
        ]

    async def handle_webhook(
        self,
        payload: Any,
        signature: Optional[str] = None,
        event_type: Optional[str] = None,
    ) -> List[StandardIngestItem]:
        data = payload or {}
        if (event_type or data.get("t")) == "MESSAGE_CREATE" and data.get("d"):
            return [self.normalize_message(data["d"])]
        return []

    def normalize_message(self, message: Dict[str, Any]) -> StandardIngestItem:
        author = message.get("author") or {}
        attachments = message.get("attachments") or []
        content = message.get("content") or ""

        if attachments:
            content += "\n\n**Attachments:**\n"
            for attachment in attachments:
                content += f"- [{attachment.get('filename')}]({attachment.get('url')})\n"
        for embed in message.get("embeds") or []:
            if embed.get("title") or embed.get("description"):
                content += f"\n\n**Embed:** {embed.get('title') or ''}\n{embed.get('description') or ''}"
                if embed.get("url"):
                    content += f"\n[Link]({embed['url']})"

        lowered = content.lower()
        return StandardIngestItem(
            source_provider=self.provider,
            source_id=message["id"],
            type=IngestItemType.MESSAGE,
            title=f"Message from {author.get('username')}",
            content=content,
            metadata=IngestItemMetadata(
                timestamp=parse_timestamp_or_now(message.get("timestamp")),
                updated_at=parse_optional_datetime(message.get("edited_timestamp")),
                author=author.get("username"),
                author_id=author.get("id"),
                custom={
                    "channel_id": message.get("channel_id"),
                    "guild_id": message.get("guild_id"),
                    "pinned": bool(message.get("pinned")),
                    "attachment_count": len(attachments),
                    "mention_count": len(message.get("mentions") or []),
                },
            ),
            processing_hints=ProcessingHints(
                extract_memories=bool(message.get("pinned")),
                extract_tasks=any(marker in lowered for marker in TASK_MARKERS),
            ),
        )
