"""
Browser extension integration.

Auth: server-generated API key (`cle_` + 64 hex chars)
Sync: push only. Clips arrive through the clip route and go straight
to the ingestion pipeline.
"""
import re
import secrets
from typing import Any, Dict, List

from app.core.signing import sha256_hex
from app.core.time_utils import ensure_utc
from app.integrations.base import ApiKeyIntegration
from app.integrations.registry import register_provider
from app.integrations.types import (
    IngestItemMetadata,
    IntegrationContext,
    IntegrationTokens,
    ProcessingHints,
    StandardIngestItem,
    SyncOptions,
    WebClip,
)
from app.models.enums import IngestItemType, IntegrationProvider

API_KEY_PREFIX = "cle_"
API_KEY_PATTERN = re.compile(r"^cle_[0-9a-f]{64}$")
# Longer page clips are treated as articles
ARTICLE_MIN_LENGTH = 500
TASK_MARKERS = ("todo", "action")


def generate_api_key() -> str:
    return f"{API_KEY_PREFIX}{secrets.token_hex(32)}"


@register_provider
class BrowserExtensionIntegration(ApiKeyIntegration):
    provider = IntegrationProvider.BROWSER_EXTENSION

    async def validate_api_key(self, api_key: str) -> bool:
        return bool(API_KEY_PATTERN.match(api_key or ""))

    async def get_account_info(self, tokens: IntegrationTokens) -> Dict[str, Any]:
        return {"account_name": "Browser Extension", "type": "push"}

    async def sync(self, context: IntegrationContext, options: SyncOptions) -> List[StandardIngestItem]:
        return []

    @staticmethod
    def clip_id(clip: WebClip) -> str:
        """Stable id: the same clip content captured at the same instant dedups."""
        basis = (clip.selected_text or clip.content or clip.url) + ensure_utc(clip.timestamp).isoformat()
        return f"clip_{sha256_hex(basis)[:16]}"

    def process_clip(self, clip: WebClip) -> StandardIngestItem:
        if clip.type == "selection" and clip.selected_text:
            item_type = IngestItemType.HIGHLIGHT
            content = clip.selected_text
            if clip.note:
                content += f"\n\n**Note:** {clip.note}"
        elif clip.type == "link":
            item_type = IngestItemType.BOOKMARK
            content = clip.content or clip.title
        elif len(clip.content) > ARTICLE_MIN_LENGTH:
            item_type = IngestItemType.ARTICLE
            content = clip.content
        else:
            item_type = IngestItemType.CLIP
            content = clip.content or clip.selected_text or clip.title
        content += f"\n\n---\nClipped from: [{clip.title}]({clip.url})"

        note = (clip.note or "").lower()
        return StandardIngestItem(
            source_provider=self.provider,
            source_id=self.clip_id(clip),
            source_url=clip.url,
            type=item_type,
            title=clip.title,
            content=content,
            summary=clip.metadata.description,
            metadata=IngestItemMetadata(
                timestamp=ensure_utc(clip.timestamp),
                author=clip.metadata.author,
                tags=list(clip.tags),
                custom={
                    "browser": clip.source,
                    "clip_type": clip.type,
                    "site_name": clip.metadata.site_name,
                    "published_date": clip.metadata.published_date,
                    "image_url": clip.metadata.image_url,
                    "original_url": clip.url,
                    "has_selection": bool(clip.selected_text),
                    "has_note": bool(clip.note),
                },
            ),
            processing_hints=ProcessingHints(
                extract_memories=item_type == IngestItemType.HIGHLIGHT or bool(clip.note),
                extract_tasks=any(marker in note for marker in TASK_MARKERS),
            ),
        )

    def process_clips(self, clips: List[WebClip]) -> List[StandardIngestItem]:
        return [self.process_clip(clip) for clip in clips]
