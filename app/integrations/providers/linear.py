"""
Linear integration.

Auth: OAuth2 with refresh tokens
Sync: GraphQL pull of recently updated issues plus Issue/Comment webhooks
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
from app.models.enums import IngestItemType, IntegrationProvider, Priority

API_URL = "https://api.linear.app/graphql"
DEFAULT_LIMIT = 50

ISSUES_QUERY = """
query Issues($first: Int!, $filter: IssueFilter) {
  issues(first: $first, filter: $filter, orderBy: updatedAt) {
    nodes {
      id
      identifier
      title
      description
      priority
      state { id name type }
      assignee { id name email }
      creator { id name }
      labels { nodes { id name color } }
      project { id name }
      team { id name key }
      url
      createdAt
      updatedAt
      completedAt
      dueDate
    }
  }
}
"""

ACCOUNT_QUERY = """
query {
  viewer { id name email }
  organization { id name }
}
"""


def linear_priority(value: Optional[int]) -> Priority:
    """Linear uses 1 (urgent) .. 4 (low), 0 for none."""
    value = value or 0
    if value <= 1:
        return Priority.HIGH
    if value <= 2:
        return Priority.MEDIUM
    return Priority.LOW


@register_provider
class LinearIntegration(BaseIntegration):
    provider = IntegrationProvider.LINEAR
    requires_webhook_secret = True
    webhook_signature_header = "linear-signature"

    def authorization_params(self, config, state: str) -> Dict[str, str]:
        params = super().authorization_params(config, state)
        params["scope"] = ",".join(config.scopes)
        params["prompt"] = "consent"
        return params

    async def graphql(self, access_token: str, query: str, variables: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        body = await self.request_json(
            "POST",
            API_URL,
            json={"query": query, "variables": variables or {}},
            headers={"Authorization": access_token, "Content-Type": "application/json"},
        )
        if body.get("errors"):
            raise PermanentRequestError(f"Linear API error: {body['errors'][0].get('message')}", 400)
        return body.get("data") or {}

    async def validate_connection(self, tokens: IntegrationTokens) -> bool:
        try:
            data = await self.graphql(tokens.access_token, "query { viewer { id } }")
            return bool((data.get("viewer") or {}).get("id"))
        except Exception:
            return False

    async def get_account_info(self, tokens: IntegrationTokens) -> Dict[str, Any]:
        data = await self.graphql(tokens.access_token, ACCOUNT_QUERY)
        viewer = data.get("viewer") or {}
        organization = data.get("organization") or {}
        return {
            "account_name": viewer.get("name"),
            "account_email": viewer.get("email"),
            "workspace": organization.get("name"),
            "organization_id": organization.get("id"),
        }

    async def sync(self, context: IntegrationContext, options: SyncOptions) -> List[StandardIngestItem]:
        variables: Dict[str, Any] = {"first": options.limit or DEFAULT_LIMIT}
        if options.since:
            variables["filter"] = {"updatedAt": {"gte": options.since.isoformat()}}
        data = await self.graphql(context.tokens.access_token, ISSUES_QUERY, variables)
        nodes = (data.get("issues") or {}).get("nodes") or []
        return [self.normalize_issue(issue) for issue in nodes]

    # ----- webhooks -----

    def match_webhook_integrations(self, payload: Any, integrations):
        organization_id = (payload or {}).get("organizationId")
        if not organization_id:
            return super().match_webhook_integrations(payload, integrations)
        return [
            integration
            for integration in integrations
            if integration.is_active and integration.get_metadata().get("organization_id") == organization_id
        ]

    async def handle_webhook(
        self,
        payload: Any,
        signature: Optional[str] = None,
        event_type: Optional[str] = None,
    ) -> List[StandardIngestItem]:
        data = payload or {}
        kind = event_type or data.get("type")
        body = data.get("data") or {}
        if kind == "Issue":
            return [self.normalize_issue(body)]
        if kind == "Comment":
            return [self.normalize_comment(body)]
        return []

    # ----- normalization -----

    def normalize_issue(self, issue: Dict[str, Any]) -> StandardIngestItem:
        state = issue.get("state") or {}
        assignee = issue.get("assignee") or {}
        project = issue.get("project") or {}
        team = issue.get("team") or {}

        content = f"**{issue['identifier']}**: {issue['title']}\n\n"
        if issue.get("description"):
            content += issue["description"]
        content += f"\n\n**Status:** {state.get('name')}"
        if assignee:
            content += f"\n**Assignee:** {assignee.get('name')}"
        if project:
            content += f"\n**Project:** {project.get('name')}"

        updated_at = parse_optional_datetime(issue.get("updatedAt"))
        return StandardIngestItem(
            source_provider=self.provider,
            source_id=issue["id"],
            source_url=issue.get("url"),
            type=IngestItemType.ISSUE,
            title=f"{issue['identifier']}: {issue['title']}",
            content=content,
            metadata=IngestItemMetadata(
                timestamp=updated_at or parse_timestamp_or_now(issue.get("createdAt")),
                created_at=parse_optional_datetime(issue.get("createdAt")),
                updated_at=updated_at,
                author=(issue.get("creator") or {}).get("name"),
                tags=[label["name"] for label in (issue.get("labels") or {}).get("nodes") or []],
                custom={
                    "identifier": issue["identifier"],
                    "priority": issue.get("priority"),
                    "status": state.get("name"),
                    "status_type": state.get("type"),
                    "team": team.get("name"),
                    "team_key": team.get("key"),
                    "assignee": assignee.get("name"),
                    "assignee_email": assignee.get("email"),
                    "project": project.get("name"),
                    "completed_at": issue.get("completedAt"),
                    "due_date": issue.get("dueDate"),
                },
            ),
            processing_hints=ProcessingHints(
                extract_tasks=state.get("type") != "completed",
                priority=linear_priority(issue.get("priority")),
            ),
        )

    def normalize_comment(self, comment: Dict[str, Any]) -> StandardIngestItem:
        issue = comment.get("issue") or {}
        return StandardIngestItem(
            source_provider=self.provider,
            source_id=comment["id"],
            type=IngestItemType.COMMENT,
            title=f"Comment on {issue.get('identifier')}",
            content=comment.get("body") or "",
            metadata=IngestItemMetadata(
                timestamp=parse_timestamp_or_now(comment.get("createdAt")),
                author=(comment.get("user") or {}).get("name"),
                parent_id=issue.get("id"),
                custom={
                    "issue_id": issue.get("id"),
                    "issue_identifier": issue.get("identifier"),
                    "issue_title": issue.get("title"),
                },
            ),
        )
