"""
GitHub integration.

Auth: OAuth2 (tokens don't expire)
Sync: repository webhooks plus a pull fallback over the repositories the
user selected (`selected_repositories` in the connection metadata).
"""
import secrets
from typing import Any, Dict, List, Mapping, Optional

from app.core.exceptions import PermanentRequestError
from app.core.logging_config import log_error, log_warning
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
    WebhookRegistration,
)
from app.models.enums import IngestItemType, IntegrationProvider, Priority

API_URL = "https://api.github.com"
DEFAULT_LIMIT = 20
RELEASES_PER_REPO = 5
COMMIT_TITLE_MAX = 72

WEBHOOK_EVENTS = [
    "push",
    "pull_request",
    "issues",
    "release",
    "issue_comment",
    "pull_request_review_comment",
]
_TRACKED_ACTIONS = ("opened", "closed", "reopened", "edited")


def commit_title(message: str) -> str:
    first_line = message.split("\n", 1)[0]
    if len(first_line) > COMMIT_TITLE_MAX:
        return f"Commit: {first_line[:COMMIT_TITLE_MAX]}..."
    return f"Commit: {first_line}"


def selected_repositories(metadata: Optional[Mapping[str, Any]]) -> List[str]:
    return list((metadata or {}).get("selected_repositories") or [])


@register_provider
class GitHubIntegration(BaseIntegration):
    provider = IntegrationProvider.GITHUB
    supports_token_refresh = False
    requires_webhook_secret = True
    webhook_signature_header = "x-hub-signature-256"

    def _headers(self, access_token: str) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {access_token}",
            "Accept": "application/vnd.github.v3+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }

    # ----- auth -----

    async def exchange_code_for_tokens(self, code: str) -> IntegrationTokens:
        config = self.get_oauth_config()
        response = await self.fetch_with_retry(
            "POST",
            config.token_url,
            json={
                "client_id": config.client_id,
                "client_secret": config.client_secret,
                "code": code,
                "redirect_uri": config.redirect_uri,
            },
            headers={"Accept": "application/json"},
        )
        if response.status_code >= 400:
            raise PermanentRequestError(f"Token exchange failed: {response.text}", response.status_code)
        data = response.json()
        if data.get("error"):
            raise PermanentRequestError(
                f"GitHub OAuth error: {data.get('error_description') or data['error']}",
                response.status_code,
            )
        # GitHub tokens don't expire by default
        return IntegrationTokens(
            access_token=data["access_token"],
            token_type=data.get("token_type"),
            scope=data.get("scope"),
        )

    async def get_account_info(self, tokens: IntegrationTokens) -> Dict[str, Any]:
        user = await self.request_json("GET", f"{API_URL}/user", headers=self._headers(tokens.access_token))
        return {
            "account_name": user.get("name") or user.get("login"),
            "account_email": user.get("email"),
            "avatar_url": user.get("avatar_url"),
            "login": user.get("login"),
            "user_id": user.get("id"),
        }

    async def list_repositories(self, tokens: IntegrationTokens) -> List[Dict[str, Any]]:
        """Every repository the user can see, most recently updated first."""
        repos: List[Dict[str, Any]] = []
        page = 1
        per_page = 100
        while True:
            batch = await self.request_json(
                "GET",
                f"{API_URL}/user/repos",
                params={"per_page": per_page, "page": page, "sort": "updated"},
                headers=self._headers(tokens.access_token),
            )
            repos.extend(batch)
            if len(batch) < per_page:
                return repos
            page += 1

    # ----- pull -----

    async def sync(self, context: IntegrationContext, options: SyncOptions) -> List[StandardIngestItem]:
        repos = selected_repositories(context.metadata)
        if not repos:
            log_warning("GitHub sync skipped: no repositories selected", integration_id=str(context.integration_id))
            return []

        limit = options.limit or DEFAULT_LIMIT
        headers = self._headers(context.tokens.access_token)
        items: List[StandardIngestItem] = []

        for repo in repos:
            try:
                commit_params: Dict[str, Any] = {"per_page": limit}
                if options.since:
                    commit_params["since"] = options.since.isoformat()
                commits = await self.request_json(
                    "GET", f"{API_URL}/repos/{repo}/commits", params=commit_params, headers=headers
                )
                items.extend(self.normalize_commit(commit, repo) for commit in commits)

                pulls = await self.request_json(
                    "GET",
                    f"{API_URL}/repos/{repo}/pulls",
                    params={"state": "open", "per_page": limit},
                    headers=headers,
                )
                items.extend(self.normalize_pull_request(pr, repo) for pr in pulls)

                issues = await self.request_json(
                    "GET",
                    f"{API_URL}/repos/{repo}/issues",
                    params={"state": "open", "per_page": limit},
                    headers=headers,
                )
                # The issues endpoint also returns pull requests
                items.extend(self.normalize_issue(issue, repo) for issue in issues if "pull_request" not in issue)

                releases = await self.request_json(
                    "GET",
                    f"{API_URL}/repos/{repo}/releases",
                    params={"per_page": RELEASES_PER_REPO},
                    headers=headers,
                )
                items.extend(self.normalize_release(release, repo) for release in releases)
            except Exception as exc:
                log_error(exc, provider=self.provider.value, repository=repo)

        return items

    # ----- webhooks -----

    def verify_webhook_request(self, raw_body: bytes, headers: Mapping[str, str], secret: Optional[str]) -> bool:
        return self.verify_hmac_signature(raw_body, headers.get(self.webhook_signature_header), secret, prefix="sha256=")

    def webhook_event_type(self, headers: Mapping[str, str], payload: Any) -> Optional[str]:
        event = headers.get("x-github-event")
        if not event:
            raise ValueError("Missing x-github-event header")
        return event

    def match_webhook_integrations(self, payload: Any, integrations):
        repo = ((payload or {}).get("repository") or {}).get("full_name")
        return [
            integration
            for integration in integrations
            if integration.is_active and repo and repo in selected_repositories(integration.get_metadata())
        ]

    async def handle_webhook(
        self,
        payload: Any,
        signature: Optional[str] = None,
        event_type: Optional[str] = None,
    ) -> List[StandardIngestItem]:
        data = payload or {}
        repo = (data.get("repository") or {}).get("full_name", "")
        event = event_type or self._infer_event(data)
        action = data.get("action")

        if event == "push":
            branch = (data.get("ref") or "").replace("refs/heads/", "")
            return [self.normalize_push_commit(commit, repo, branch) for commit in data.get("commits") or []]
        if event == "pull_request" and action in _TRACKED_ACTIONS:
            return [self.normalize_pull_request(data["pull_request"], repo)]
        if event == "issues" and action in _TRACKED_ACTIONS and "pull_request" not in data.get("issue", {}):
            return [self.normalize_issue(data["issue"], repo)]
        if event == "release" and action == "published":
            return [self.normalize_release(data["release"], repo)]
        if event in ("issue_comment", "pull_request_review_comment") and action in ("created", "edited"):
            return [self.normalize_comment(data)]
        return []

    @staticmethod
    def _infer_event(data: Mapping[str, Any]) -> Optional[str]:
        if "commits" in data:
            return "push"
        if "comment" in data:
            return "issue_comment"
        if "pull_request" in data:
            return "pull_request"
        if "issue" in data:
            return "issues"
        if "release" in data:
            return "release"
        return None

    async def register_webhook(
        self,
        context: IntegrationContext,
        delivery_url: str,
        secret: Optional[str] = None,
    ) -> WebhookRegistration:
        webhook_secret = secret or self.settings.github_webhook_secret or secrets.token_hex(32)
        headers = self._headers(context.tokens.access_token)
        hook_ids: List[str] = []

        for repo in selected_repositories(context.metadata):
            try:
                hook = await self.request_json(
                    "POST",
                    f"{API_URL}/repos/{repo}/hooks",
                    headers=headers,
                    json={
                        "name": "web",
                        "active": True,
                        "events": WEBHOOK_EVENTS,
                        "config": {
                            "url": delivery_url,
                            "content_type": "json",
                            "secret": webhook_secret,
                            "insecure_ssl": "0",
                        },
                    },
                )
                hook_ids.append(f"{repo}:{hook['id']}")
            except Exception as exc:
                log_error(exc, provider=self.provider.value, repository=repo)

        return WebhookRegistration(webhook_id=",".join(hook_ids), secret=webhook_secret, events=list(WEBHOOK_EVENTS))

    async def unregister_webhook(self, context: IntegrationContext, webhook_id: str) -> None:
        headers = self._headers(context.tokens.access_token)
        for mapping in filter(None, webhook_id.split(",")):
            repo, _, hook_id = mapping.rpartition(":")
            if not repo or not hook_id:
                continue
            try:
                await self.fetch_with_retry("DELETE", f"{API_URL}/repos/{repo}/hooks/{hook_id}", headers=headers)
            except Exception as exc:
                log_error(exc, provider=self.provider.value, repository=repo, hook_id=hook_id)

    # ----- normalization -----

    def normalize_commit(self, commit: Dict[str, Any], repository: str) -> StandardIngestItem:
        details = commit.get("commit") or {}
        author = details.get("author") or {}
        message = details.get("message", "")
        stats = commit.get("stats")

        content = f"**Repository:** {repository}\n\n{message}"
        if stats:
            content += f"\n\n**Changes:** +{stats.get('additions')} -{stats.get('deletions')}"

        files = commit.get("files")
        return StandardIngestItem(
            source_provider=self.provider,
            source_id=commit["sha"],
            source_url=commit.get("html_url"),
            type=IngestItemType.NOTE,
            title=commit_title(message),
            content=content,
            metadata=IngestItemMetadata(
                timestamp=parse_timestamp_or_now(author.get("date")),
                author=author.get("name"),
                author_email=author.get("email"),
                custom={
                    "sha": commit["sha"],
                    "short_sha": commit["sha"][:7],
                    "repository": repository,
                    "additions": (stats or {}).get("additions"),
                    "deletions": (stats or {}).get("deletions"),
                    "files_changed": len(files) if files is not None else None,
                },
            ),
        )

    def normalize_push_commit(self, commit: Dict[str, Any], repository: str, branch: str) -> StandardIngestItem:
        message = commit.get("message", "")
        added = commit.get("added") or []
        modified = commit.get("modified") or []
        removed = commit.get("removed") or []

        content = f"**Repository:** {repository}\n\n{message}\n\n"
        if added:
            content += f"**Added:** {len(added)} files\n"
        if modified:
            content += f"**Modified:** {len(modified)} files\n"
        if removed:
            content += f"**Removed:** {len(removed)} files\n"

        author = commit.get("author") or {}
        return StandardIngestItem(
            source_provider=self.provider,
            source_id=commit["id"],
            source_url=commit.get("url"),
            type=IngestItemType.NOTE,
            title=commit_title(message),
            content=content,
            metadata=IngestItemMetadata(
                timestamp=parse_timestamp_or_now(commit.get("timestamp")),
                author=author.get("name"),
                author_email=author.get("email"),
                custom={
                    "sha": commit["id"],
                    "repository": repository,
                    "branch": branch,
                    "files_added": len(added),
                    "files_removed": len(removed),
                    "files_modified": len(modified),
                },
            ),
        )

    def normalize_pull_request(self, pr: Dict[str, Any], repository: str) -> StandardIngestItem:
        content = f"**{pr['title']}**\n\n"
        if pr.get("body"):
            content += f"{pr['body']}\n\n"
        content += f"**Status:** {pr.get('state')}"
        if pr.get("merged"):
            content += " (merged)"
        content += f"\n**Branch:** {pr.get('head', {}).get('ref')} -> {pr.get('base', {}).get('ref')}"
        content += (
            f"\n**Changes:** +{pr.get('additions', 0)} -{pr.get('deletions', 0)} "
            f"({pr.get('changed_files', 0)} files)"
        )

        updated_at = parse_optional_datetime(pr.get("updated_at"))
        return StandardIngestItem(
            source_provider=self.provider,
            source_id=str(pr["id"]),
            source_url=pr.get("html_url"),
            type=IngestItemType.ISSUE,
            title=f"PR #{pr['number']}: {pr['title']}",
            content=content,
            metadata=IngestItemMetadata(
                timestamp=updated_at or utc_now(),
                created_at=parse_optional_datetime(pr.get("created_at")),
                updated_at=updated_at,
                author=(pr.get("user") or {}).get("login"),
                tags=[label["name"] for label in pr.get("labels") or []],
                custom={
                    "number": pr["number"],
                    "state": pr.get("state"),
                    "merged": bool(pr.get("merged")),
                    "merged_at": pr.get("merged_at"),
                    "additions": pr.get("additions"),
                    "deletions": pr.get("deletions"),
                    "changed_files": pr.get("changed_files"),
                    "repository": repository,
                    "head_branch": pr.get("head", {}).get("ref"),
                    "base_branch": pr.get("base", {}).get("ref"),
                },
            ),
            processing_hints=ProcessingHints(
                extract_tasks=not pr.get("merged") and pr.get("state") == "open",
                priority=Priority.MEDIUM,
            ),
        )

    def normalize_issue(self, issue: Dict[str, Any], repository: str) -> StandardIngestItem:
        content = f"**{issue['title']}**\n\n"
        if issue.get("body"):
            content += f"{issue['body']}\n\n"
        content += f"**Status:** {issue.get('state')}"
        assignees = [assignee["login"] for assignee in issue.get("assignees") or []]
        if assignees:
            content += f"\n**Assignees:** {', '.join(assignees)}"

        updated_at = parse_optional_datetime(issue.get("updated_at"))
        return StandardIngestItem(
            source_provider=self.provider,
            source_id=str(issue["id"]),
            source_url=issue.get("html_url"),
            type=IngestItemType.ISSUE,
            title=f"Issue #{issue['number']}: {issue['title']}",
            content=content,
            metadata=IngestItemMetadata(
                timestamp=updated_at or utc_now(),
                created_at=parse_optional_datetime(issue.get("created_at")),
                updated_at=updated_at,
                author=(issue.get("user") or {}).get("login"),
                tags=[label["name"] for label in issue.get("labels") or []],
                custom={
                    "number": issue["number"],
                    "state": issue.get("state"),
                    "repository": repository,
                    "assignees": assignees,
                    "closed_at": issue.get("closed_at"),
                },
            ),
            processing_hints=ProcessingHints(
                extract_tasks=issue.get("state") == "open",
                priority=Priority.MEDIUM,
            ),
        )

    def normalize_release(self, release: Dict[str, Any], repository: str) -> StandardIngestItem:
        name = release.get("name") or release.get("tag_name")
        content = f"**{name}**\n\n"
        if release.get("body"):
            content += release["body"]
        if release.get("prerelease"):
            content += "\n\n*Pre-release*"

        return StandardIngestItem(
            source_provider=self.provider,
            source_id=str(release["id"]),
            source_url=release.get("html_url"),
            type=IngestItemType.DOCUMENT,
            title=f"Release: {name}",
            content=content,
            metadata=IngestItemMetadata(
                timestamp=parse_timestamp_or_now(release.get("published_at")),
                created_at=parse_optional_datetime(release.get("created_at")),
                author=(release.get("author") or {}).get("login"),
                custom={
                    "tag_name": release.get("tag_name"),
                    "repository": repository,
                    "prerelease": bool(release.get("prerelease")),
                    "draft": bool(release.get("draft")),
                },
            ),
        )

    def normalize_comment(self, payload: Dict[str, Any]) -> StandardIngestItem:
        comment = payload["comment"]
        if payload.get("pull_request"):
            parent_type, parent_number = "pull_request", payload["pull_request"]["number"]
            title = f"Comment on PR #{parent_number}"
        elif payload.get("issue"):
            parent_type, parent_number = "issue", payload["issue"]["number"]
            title = f"Comment on Issue #{parent_number}"
        else:
            parent_type, parent_number = "unknown", 0
            title = "GitHub Comment"

        return StandardIngestItem(
            source_provider=self.provider,
            source_id=str(comment["id"]),
            source_url=comment.get("html_url"),
            type=IngestItemType.COMMENT,
            title=title,
            content=comment.get("body") or "",
            metadata=IngestItemMetadata(
                timestamp=parse_timestamp_or_now(comment.get("updated_at")),
                created_at=parse_optional_datetime(comment.get("created_at")),
                author=(comment.get("user") or {}).get("login"),
                custom={
                    "repository": (payload.get("repository") or {}).get("full_name"),
                    "parent_type": parent_type,
                    "parent_number": parent_number,
                },
            ),
        )
