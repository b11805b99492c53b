"""
Todoist integration.

Auth: OAuth2 (tokens don't expire)
Sync: pull of active tasks plus `item:*` webhooks
"""
from typing import Any, Dict, List, Mapping, Optional

from app.core.exceptions import PermanentRequestError
from app.core.signing import verify_hmac_signature_base64
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
from app.models.enums import IngestItemType, IntegrationProvider, Priority

API_URL = "https://api.todoist.com/rest/v2"
SYNC_API_URL = "https://api.todoist.com/sync/v9/sync"

# Todoist priority runs 1 (normal) .. 4 (urgent)
PRIORITY_MAP = {
    1: Priority.LOW,
    2: Priority.MEDIUM,
    3: Priority.MEDIUM,
    4: Priority.HIGH,
}


@register_provider
class TodoistIntegration(BaseIntegration):
    provider = IntegrationProvider.TODOIST
    supports_token_refresh = False
    webhook_signature_header = "x-todoist-hmac-sha256"

    def authorization_params(self, config, state: str) -> Dict[str, str]:
        return {
            "client_id": config.client_id,
            "scope": ",".join(config.scopes),
            "state": state,
        }

    async def exchange_code_for_tokens(self, code: str) -> IntegrationTokens:
        config = self.get_oauth_config()
        response = await self.fetch_with_retry(
            "POST",
            config.token_url,
            data={"client_id": config.client_id, "client_secret": config.client_secret, "code": code},
        )
        if response.status_code >= 400:
            raise PermanentRequestError("Todoist token exchange failed", response.status_code)
        data = response.json()
        return IntegrationTokens(access_token=data["access_token"], token_type=data.get("token_type"))

    def _headers(self, access_token: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {access_token}"}

    async def validate_connection(self, tokens: IntegrationTokens) -> bool:
        try:
            await self.request_json("GET", f"{API_URL}/projects", headers=self._headers(tokens.access_token))
            return True
        except Exception:
            return False

    async def get_account_info(self, tokens: IntegrationTokens) -> Dict[str, Any]:
        projects = await self.request_json("GET", f"{API_URL}/projects", headers=self._headers(tokens.access_token))
        inbox = next((project for project in projects if project.get("is_inbox_project")), None)
        info: Dict[str, Any] = {
            "account_name": "Todoist User",
            "project_count": len(projects),
            "inbox_project_id": inbox.get("id") if inbox else None,
        }
        # The REST API has no user endpoint; the sync API does
        user = (
            await self.request_json(
                "POST",
                SYNC_API_URL,
                data={"sync_token": "*", "resource_types": '["user"]'},
                headers=self._headers(tokens.access_token),
            )
        ).get("user") or {}
        if user:
            info.update(
                account_name=user.get("full_name") or info["account_name"],
                account_email=user.get("email"),
                user_id=str(user.get("id")),
            )
        return info

    async def sync(self, context: IntegrationContext, options: SyncOptions) -> List[StandardIngestItem]:
        headers = self._headers(context.tokens.access_token)
        projects = await self.request_json("GET", f"{API_URL}/projects", headers=headers)
        project_names = {project["id"]: project.get("name") for project in projects}

        tasks = await self.request_json("GET", f"{API_URL}/tasks", headers=headers)
        return [self.normalize_task(task, project_names.get(task.get("project_id"))) for task in tasks]

    # ----- webhooks -----

    def verify_webhook_request(self, raw_body: bytes, headers: Mapping[str, str], secret: Optional[str]) -> bool:
        return verify_hmac_signature_base64(raw_body, headers.get(self.webhook_signature_header), secret)

    def webhook_event_type(self, headers: Mapping[str, str], payload: Any) -> Optional[str]:
        return (payload or {}).get("event_name")

    def match_webhook_integrations(self, payload: Any, integrations):
        user_id = (payload or {}).get("user_id")
        return [
            integration
            for integration in integrations
            if integration.is_active and user_id is not None and integration.get_metadata().get("user_id") == str(user_id)
        ]

    async def handle_webhook(
        self,
        payload: Any,
        signature: Optional[str] = None,
        event_type: Optional[str] = None,
    ) -> List[StandardIngestItem]:
        data = payload or {}
        event_name = event_type or data.get("event_name") or ""
        if event_name.startswith("item:") and data.get("event_data"):
            return [self.normalize_task(data["event_data"])]
        return []

    # ----- normalization -----

    def normalize_task(self, task: Dict[str, Any], project_name: Optional[str] = None) -> StandardIngestItem:
        content = task.get("content", "")
        if task.get("description"):
            content += f"\n\n{task['description']}"
        due = task.get("due") or {}
        completed = bool(task.get("is_completed") or task.get("checked"))

        return StandardIngestItem(
            source_provider=self.provider,
            source_id=str(task["id"]),
            source_url=task.get("url"),
            type=IngestItemType.TASK,
            title=task.get("content"),
            content=content,
            metadata=IngestItemMetadata(
                timestamp=parse_timestamp_or_now(task.get("created_at") or task.get("added_at")),
                created_at=parse_optional_datetime(task.get("created_at") or task.get("added_at")),
                tags=list(task.get("labels") or []),
                parent_id=task.get("parent_id"),
                custom={
                    "project_id": task.get("project_id"),
                    "project_name": project_name,
                    "section_id": task.get("section_id"),
                    "priority": task.get("priority"),
                    "is_completed": completed,
                    "due_date": due.get("date"),
                    "due_string": due.get("string"),
                    "is_recurring": due.get("is_recurring"),
                    "comment_count": task.get("comment_count"),
                },
            ),
            processing_hints=ProcessingHints(
                extract_tasks=not completed,
                priority=PRIORITY_MAP.get(task.get("priority"), Priority.MEDIUM),
            ),
        )
