"""
Unit tests for provider normalization, webhook verification and routing.
"""
import base64
import json
import time
import uuid
from datetime import datetime, timezone
from types import SimpleNamespace

import httpx
import pytest
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

from app.core.signing import compute_hmac_sha256, compute_hmac_sha256_base64
from app.integrations.providers.browser_extension import BrowserExtensionIntegration, generate_api_key
from app.integrations.providers.discord import DiscordIntegration
from app.integrations.providers.github import GitHubIntegration, commit_title
from app.integrations.providers.gmail import GmailIntegration, decode_body, search_query
from app.integrations.providers.google_sheets import GoogleSheetsIntegration, parse_sheet_rows
from app.integrations.providers.linear import LinearIntegration, linear_priority
from app.integrations.providers.stripe import StripeIntegration
from app.integrations.providers.todoist import TodoistIntegration
from app.integrations.providers.zoom import ZoomIntegration
from app.integrations.types import IntegrationContext, IntegrationTokens, SyncOptions, WebClip
from app.models.enums import IngestItemType, Priority


def _connection(is_active=True, **metadata):
    return SimpleNamespace(is_active=is_active, get_metadata=lambda: dict(metadata))


def _b64url(text: str) -> str:
    return base64.urlsafe_b64encode(text.encode()).decode().rstrip("=")


class TestGitHub:
    def test_long_commit_titles_are_truncated(self):
        message = "x" * 100 + "\n\nbody"

        assert commit_title(message) == f"Commit: {'x' * 72}..."
        assert commit_title("Fix login\n\ndetails") == "Commit: Fix login"

    def test_signature_uses_sha256_prefix(self):
        body = b'{"zen": "Keep it logically awesome."}'
        signature = "sha256=" + compute_hmac_sha256(body, "gh-secret")
        provider = GitHubIntegration()

        assert provider.verify_webhook_request(body, {"x-hub-signature-256": signature}, "gh-secret")
        assert not provider.verify_webhook_request(body, {"x-hub-signature-256": signature[7:]}, "gh-secret")

    def test_event_header_is_required(self):
        with pytest.raises(ValueError):
            GitHubIntegration().webhook_event_type({}, {})

    def test_routing_uses_selected_repositories(self):
        watching = _connection(selected_repositories=["acme/api"])
        other = _connection(selected_repositories=["acme/web"])
        payload = {"repository": {"full_name": "acme/api"}}

        assert GitHubIntegration().match_webhook_integrations(payload, [watching, other]) == [watching]

    @pytest.mark.asyncio
    async def test_push_becomes_one_note_per_commit(self):
        payload = {
            "ref": "refs/heads/main",
            "repository": {"full_name": "acme/api"},
            "commits": [
                {"id": "abc", "message": "Add billing", "timestamp": "2026-10-01T10:00:00Z", "added": ["a.py"]},
                {"id": "def", "message": "Fix billing", "timestamp": "2026-10-01T11:00:00Z", "modified": ["a.py"]},
            ],
        }

        items = await GitHubIntegration().handle_webhook(payload, event_type="push")

        assert [item.source_id for item in items] == ["abc", "def"]
        assert items[0].metadata.custom["branch"] == "main"
        assert "**Added:** 1 files" in items[0].content

    @pytest.mark.asyncio
    async def test_open_pull_request_suggests_a_task(self):
        payload = {
            "action": "opened",
            "repository": {"full_name": "acme/api"},
            "pull_request": {
                "id": 42,
                "number": 7,
                "title": "Add Stripe checkout",
                "state": "open",
                "merged": False,
                "head": {"ref": "checkout"},
                "base": {"ref": "main"},
            },
        }

        items = await GitHubIntegration().handle_webhook(payload, event_type="pull_request")

        assert items[0].title == "PR #7: Add Stripe checkout"
        assert items[0].type == IngestItemType.ISSUE
        assert items[0].processing_hints.extract_tasks is True

    @pytest.mark.asyncio
    async def test_untracked_events_are_ignored(self):
        payload = {"action": "labeled", "repository": {"full_name": "acme/api"}, "issue": {"id": 1}}

        assert await GitHubIntegration().handle_webhook(payload, event_type="issues") == []


class TestTodoist:
    def test_priority_mapping(self):
        provider = TodoistIntegration()

        urgent = provider.normalize_task({"id": 1, "content": "Call investor", "priority": 4})
        normal = provider.normalize_task({"id": 2, "content": "Tidy inbox", "priority": 1})

        assert urgent.processing_hints.priority == Priority.HIGH
        assert normal.processing_hints.priority == Priority.LOW
        assert urgent.type == IngestItemType.TASK

    def test_completed_task_does_not_extract(self):
        item = TodoistIntegration().normalize_task({"id": 3, "content": "Done", "is_completed": True})

        assert item.processing_hints.extract_tasks is False

    def test_signature_is_base64(self):
        body = b'{"event_name": "item:added"}'
        signature = compute_hmac_sha256_base64(body, "client-secret")

        assert TodoistIntegration().verify_webhook_request(body, {"x-todoist-hmac-sha256": signature}, "client-secret")

    @pytest.mark.asyncio
    async def test_item_events_are_ingested_and_routed_by_user(self):
        provider = TodoistIntegration()
        payload = {"event_name": "item:added", "user_id": 99, "event_data": {"id": "t-1", "content": "Ship it"}}
        mine, theirs = _connection(user_id="99"), _connection(user_id="7")

        items = await provider.handle_webhook(payload, event_type="item:added")

        assert items[0].source_id == "t-1"
        assert provider.match_webhook_integrations(payload, [mine, theirs]) == [mine]
        assert await provider.handle_webhook({"event_name": "project:added"}) == []


class TestLinear:
    @pytest.mark.parametrize(
        "value, expected",
        [(0, Priority.HIGH), (1, Priority.HIGH), (2, Priority.MEDIUM), (3, Priority.LOW), (None, Priority.HIGH)],
    )
    def test_priority(self, value, expected):
        assert linear_priority(value) == expected

    def test_completed_issue_does_not_extract_tasks(self):
        issue = {"id": "i-1", "identifier": "ENG-1", "title": "Done", "state": {"name": "Done", "type": "completed"}}

        item = LinearIntegration().normalize_issue(issue)

        assert item.processing_hints.extract_tasks is False
        assert item.title == "ENG-1: Done"

    @pytest.mark.asyncio
    async def test_comment_event(self):
        payload = {
            "type": "Comment",
            "data": {"id": "c-1", "body": "Looks good", "issue": {"id": "i-1", "identifier": "ENG-1"}},
        }

        items = await LinearIntegration().handle_webhook(payload)

        assert items[0].type == IngestItemType.COMMENT
        assert items[0].metadata.parent_id == "i-1"

    @pytest.mark.asyncio
    async def test_sync_without_since_sends_no_filter(self):
        requests = []

        def handler(request):
            requests.append(json.loads(request.content))
            return httpx.Response(
                200,
                json={
                    "data": {
                        "issues": {
                            "nodes": [
                                {"id": "i-1", "identifier": "ENG-1", "title": "One", "state": {"type": "started"}}
                            ]
                        }
                    }
                },
            )

        provider = LinearIntegration(http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
        context = IntegrationContext(
            user_id=uuid.uuid4(), integration_id=uuid.uuid4(), tokens=IntegrationTokens(access_token="token")
        )
        options = SyncOptions(limit=10)

        items = await provider.sync(context, options)

        assert [item.source_id for item in items] == ["i-1"]
        assert requests[0]["variables"]["first"] == 10
        assert "filter" not in requests[0]["variables"]


class TestGmail:
    def test_decode_body_handles_unpadded_base64url(self):
        assert decode_body(_b64url("héllo?")) == "héllo?"
        assert decode_body(None) == ""

    def test_search_query_uses_date(self):
        assert search_query(datetime(2026, 3, 4, tzinfo=timezone.utc)) == "in:inbox after:2026/03/04"

    def test_starred_message_extracts_tasks(self):
        message = {
            "id": "m-1",
            "threadId": "t-1",
            "labelIds": ["INBOX", "STARRED"],
            "internalDate": "1760000000000",
            "snippet": "Quick question",
            "payload": {
                "headers": [
                    {"name": "Subject", "value": "Term sheet"},
                    {"name": "From", "value": "vc@example.com"},
                ],
                "parts": [{"mimeType": "text/plain", "body": {"data": _b64url("Let's talk Monday")}}],
            },
        }

        item = GmailIntegration().normalize_message(message)

        assert item.title == "Term sheet"
        assert "Let's talk Monday" in item.content
        assert item.processing_hints.extract_tasks is True
        assert item.metadata.thread_id == "t-1"

    def test_missing_subject_and_body_fall_back(self):
        item = GmailIntegration().normalize_message({"id": "m-2", "snippet": "snip", "payload": {}})

        assert item.title == "(No Subject)"
        assert item.content.endswith("snip")


class TestGoogleSheets:
    ROWS = [
        ["Date", "Customers", "MRR", "Active Users", "NPS"],
        ["2026-09-01", "10", "$1,000.00", "120", "42"],
        ["not a date", "11", "$1,100.00", "", ""],
        ["2026-10-01", "12", "$1,250.50", "", "45.5"],
    ]

    def test_rows_are_parsed_by_header(self):
        metrics = parse_sheet_rows(self.ROWS)

        assert len(metrics) == 2
        assert metrics[0]["customers"] == 10
        assert metrics[0]["active_users"] == 120
        assert metrics[1]["mrr_cents"] == 125050
        assert metrics[1]["active_users"] is None
        assert metrics[1]["nps_score"] == 45.5

    def test_date_column_is_required(self):
        with pytest.raises(ValueError):
            parse_sheet_rows([["Customers"], ["3"]])

    @pytest.mark.asyncio
    async def test_sync_emits_one_note_per_day_since_anchor(self):
        paths = []

        def handler(request):
            paths.append(request.url.path)
            return httpx.Response(200, json={"values": self.ROWS})

        provider = GoogleSheetsIntegration(http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
        context = IntegrationContext(
            user_id=uuid.uuid4(),
            integration_id=uuid.uuid4(),
            tokens=IntegrationTokens(access_token="token"),
            metadata={"sheets_config": {"spreadsheet_id": "sheet-1", "sheet_name": "Metrics"}},
        )

        items = await provider.sync(context, SyncOptions(since=datetime(2026, 9, 15, tzinfo=timezone.utc)))

        assert paths == ["/v4/spreadsheets/sheet-1/values/Metrics!A:Z"]
        assert [item.source_id for item in items] == ["sheet-1:2026-10-01"]
        assert items[0].type == IngestItemType.NOTE
        assert "MRR: $1,250.50" in items[0].content
        assert items[0].metadata.custom["customers"] == 12

    @pytest.mark.asyncio
    async def test_sync_without_spreadsheet_is_skipped(self):
        def handler(request):
            raise AssertionError("no request expected")

        provider = GoogleSheetsIntegration(http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
        context = IntegrationContext(
            user_id=uuid.uuid4(), integration_id=uuid.uuid4(), tokens=IntegrationTokens(access_token="token")
        )

        assert await provider.sync(context, SyncOptions()) == []


class TestStripe:
    def _header(self, body: bytes, secret: str, timestamp=None) -> str:
        timestamp = str(timestamp or int(time.time()))
        return f"t={timestamp},v1={compute_hmac_sha256(timestamp.encode() + b'.' + body, secret)}"

    def test_valid_signature(self):
        body = b'{"id": "evt_1"}'

        assert StripeIntegration().verify_webhook_request(body, {"stripe-signature": self._header(body, "whsec")}, "whsec")

    def test_old_timestamp_is_rejected(self):
        body = b'{"id": "evt_1"}'
        header = self._header(body, "whsec", timestamp=int(time.time()) - 3600)

        assert not StripeIntegration().verify_webhook_request(body, {"stripe-signature": header}, "whsec")

    @pytest.mark.asyncio
    async def test_only_relevant_events_are_ingested(self):
        provider = StripeIntegration()

        paid = await provider.handle_webhook({"id": "evt_1", "type": "invoice.paid", "created": 1760000000})
        ignored = await provider.handle_webhook({"id": "evt_2", "type": "payout.created"})

        assert paid[0].title == "Stripe: invoice.paid"
        assert ignored == []

    def test_routing_by_connected_account(self):
        mine, other = _connection(stripe_account_id="acct_1"), _connection(stripe_account_id="acct_2")

        assert StripeIntegration().match_webhook_integrations({"account": "acct_1"}, [mine, other]) == [mine]


class TestDiscord:
    @pytest.fixture
    def keypair(self):
        private_key = Ed25519PrivateKey.generate()
        public_hex = private_key.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw).hex()
        return private_key, public_hex

    def test_ed25519_signature(self, keypair):
        private_key, public_hex = keypair
        body, timestamp = b'{"type": 1}', "1760000000"
        signature = private_key.sign(timestamp.encode() + body).hex()
        headers = {"x-signature-ed25519": signature, "x-signature-timestamp": timestamp}

        assert DiscordIntegration().verify_webhook_request(body, headers, public_hex)
        assert not DiscordIntegration().verify_webhook_request(b'{"type": 2}', headers, public_hex)

    def test_ping_is_answered(self):
        assert DiscordIntegration().webhook_challenge({"type": 1}, "key") == {"type": 1}
        assert DiscordIntegration().webhook_challenge({"t": "MESSAGE_CREATE"}, "key") is None

    @pytest.mark.asyncio
    async def test_message_create(self):
        payload = {
            "t": "MESSAGE_CREATE",
            "d": {
                "id": "msg-1",
                "content": "TODO: send the deck",
                "author": {"id": "u-1", "username": "ada"},
                "guild_id": "g-1",
                "attachments": [{"filename": "deck.pdf", "url": "https://cdn.example.com/deck.pdf"}],
            },
        }

        items = await DiscordIntegration().handle_webhook(payload, event_type="MESSAGE_CREATE")

        assert items[0].title == "Message from ada"
        assert "deck.pdf" in items[0].content
        assert items[0].processing_hints.extract_tasks is True

    def test_routing_by_guild(self):
        member, stranger = _connection(guilds=[{"id": "g-1"}]), _connection(guilds=[{"id": "g-2"}])

        assert DiscordIntegration().match_webhook_integrations({"d": {"guild_id": "g-1"}}, [member, stranger]) == [member]


class TestZoom:
    def test_url_validation_challenge(self):
        challenge = ZoomIntegration().webhook_challenge(
            {"event": "endpoint.url_validation", "payload": {"plainToken": "plain"}}, "zoom-secret"
        )

        assert challenge == {"plainToken": "plain", "encryptedToken": compute_hmac_sha256("plain", "zoom-secret")}

    def test_signature(self):
        body, timestamp = b'{"event": "recording.completed"}', "1760000000"
        signature = "v0=" + compute_hmac_sha256(b"v0:" + timestamp.encode() + b":" + body, "zoom-secret")
        headers = {"x-zm-request-timestamp": timestamp, "x-zm-signature": signature}

        assert ZoomIntegration().verify_webhook_request(body, headers, "zoom-secret")


class TestBrowserExtension:
    @pytest.mark.asyncio
    async def test_generated_keys_validate(self):
        provider = BrowserExtensionIntegration()

        assert await provider.validate_api_key(generate_api_key())
        assert not await provider.validate_api_key("cle_short")

    def test_selection_becomes_highlight(self):
        clip = WebClip(
            url="https://example.com/essay",
            title="Essay",
            selectedText="Make something people want",
            note="todo: quote in deck",
            type="selection",
        )

        item = BrowserExtensionIntegration().process_clip(clip)

        assert item.type == IngestItemType.HIGHLIGHT
        assert item.content.startswith("Make something people want")
        assert "Clipped from: [Essay](https://example.com/essay)" in item.content
        assert item.processing_hints.extract_tasks is True
        assert item.processing_hints.extract_memories is True

    def test_long_page_is_article_and_short_page_is_clip(self):
        provider = BrowserExtensionIntegration()

        article = provider.process_clip(WebClip(url="https://example.com/a", title="A", content="x" * 600))
        clip = provider.process_clip(WebClip(url="https://example.com/b", title="B", content="short"))

        assert article.type == IngestItemType.ARTICLE
        assert clip.type == IngestItemType.CLIP

    def test_clip_id_is_stable(self):
        clip = WebClip(url="https://example.com", title="Same", content="Same body")

        assert BrowserExtensionIntegration.clip_id(clip) == BrowserExtensionIntegration.clip_id(clip.model_copy())
