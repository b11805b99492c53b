"""
Stripe integration.

Tracks revenue metrics for a connected Stripe account and flags traction
milestones (first customer, MRR thresholds, ...).

Auth: Stripe Connect OAuth (read_only, tokens don't expire)
Sync: one metrics snapshot per day plus account webhooks
"""
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

from app.core.exceptions import PermanentRequestError
from app.core.time_utils import parse_timestamp_or_now, utc_now
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

API_URL = "https://api.stripe.com/v1"
DASHBOARD_URL = "https://dashboard.stripe.com"
LIST_LIMIT = 100
SIGNATURE_TOLERANCE_SECONDS = 60 * 5
CHURN_WINDOW_SECONDS = 30 * 24 * 60 * 60

RELEVANT_EVENTS = (
    "customer.created",
    "customer.subscription.created",
    "customer.subscription.updated",
    "invoice.paid",
    "charge.succeeded",
)

CUSTOMER_MILESTONES = (
    ("first_customer", 1),
    ("ten_customers", 10),
    ("hundred_customers", 100),
)

# Thresholds in cents
MRR_MILESTONES = (
    ("first_revenue", 1),
    ("mrr_1k", 100_000),
    ("mrr_10k", 1_000_000),
    ("mrr_100k", 10_000_000),
)

# Multipliers that turn one billing interval into a month
MONTHLY_FACTOR = {"year": 1 / 12, "month": 1, "week": 4.33, "day": 30}


@dataclass
class StripeMetrics:
    customer_count: int = 0
    total_revenue_cents: int = 0
    mrr_cents: int = 0
    active_subscriptions: int = 0
    churned_subscriptions: int = 0


def monthly_recurring_cents(subscriptions: List[Dict[str, Any]]) -> int:
    total = 0
    for subscription in subscriptions:
        for item in (subscription.get("items") or {}).get("data") or []:
            price = item.get("price") or {}
            recurring = price.get("recurring")
            if not recurring:
                continue
            factor = MONTHLY_FACTOR.get(recurring.get("interval"))
            if factor is None:
                continue
            total += round((price.get("unit_amount") or 0) * (item.get("quantity") or 1) * factor)
    return total


def check_milestones(metrics: StripeMetrics) -> List[Dict[str, Any]]:
    checks = [
        {"type": name, "achieved": metrics.customer_count >= threshold, "value": metrics.customer_count}
        for name, threshold in CUSTOMER_MILESTONES
    ]
    for name, threshold in MRR_MILESTONES:
        if name == "first_revenue":
            achieved = metrics.total_revenue_cents > 0 or metrics.mrr_cents > 0
            value = metrics.total_revenue_cents
        else:
            achieved = metrics.mrr_cents >= threshold
            value = metrics.mrr_cents
        checks.append({"type": name, "achieved": achieved, "value": value})
    return checks


@register_provider
class StripeIntegration(BaseIntegration):
    provider = IntegrationProvider.STRIPE
    supports_token_refresh = False
    requires_webhook_secret = True
    webhook_signature_header = "stripe-signature"

    def authorization_params(self, config, state: str) -> Dict[str, str]:
        return {
            "response_type": "code",
            "client_id": config.client_id,
            "scope": "read_only",
            "state": state,
            "redirect_uri": config.redirect_uri,
        }

    async def exchange_code_for_tokens(self, code: str) -> IntegrationTokens:
        config = self.get_oauth_config()
        response = await self.fetch_with_retry(
            "POST",
            config.token_url,
            data={"grant_type": "authorization_code", "code": code, "client_secret": config.client_secret},
        )
        data = response.json()
        if response.status_code >= 400:
            raise PermanentRequestError(
                data.get("error_description") or "Failed to exchange Stripe code", response.status_code
            )
        return IntegrationTokens(access_token=data["access_token"], scope=data.get("scope"))

    async def _api(self, access_token: str, path: str, **params) -> Dict[str, Any]:
        return await self.request_json(
            "GET", f"{API_URL}/{path}", params=params or None, headers={"Authorization": f"Bearer {access_token}"}
        )

    async def validate_connection(self, tokens: IntegrationTokens) -> bool:
        try:
            await self._api(tokens.access_token, "balance")
            return True
        except Exception:
            return False

    async def get_account_info(self, tokens: IntegrationTokens) -> Dict[str, Any]:
        account = await self._api(tokens.access_token, "account")
        profile = account.get("business_profile") or {}
        dashboard = (account.get("settings") or {}).get("dashboard") or {}
        return {
            "account_name": profile.get("name") or dashboard.get("display_name"),
            "account_email": account.get("email"),
            "workspace": account.get("business_type"),
            "stripe_account_id": account.get("id"),
            "country": account.get("country"),
            "livemode": account.get("charges_enabled"),
        }

    async def fetch_metrics(self, access_token: str) -> StripeMetrics:
        customers = (await self._api(access_token, "customers", limit=LIST_LIMIT)).get("data") or []
        active = (await self._api(access_token, "subscriptions", status="active", limit=LIST_LIMIT)).get("data") or []
        canceled = (await self._api(access_token, "subscriptions", status="canceled", limit=LIST_LIMIT)).get("data") or []
        balance = await self._api(access_token, "balance")

        cutoff = int(time.time()) - CHURN_WINDOW_SECONDS
        return StripeMetrics(
            customer_count=sum(1 for customer in customers if not customer.get("deleted")),
            total_revenue_cents=sum(b.get("amount", 0) for b in balance.get("available") or [])
            + sum(b.get("amount", 0) for b in balance.get("pending") or []),
            mrr_cents=monthly_recurring_cents(active),
            active_subscriptions=len(active),
            churned_subscriptions=sum(1 for s in canceled if (s.get("canceled_at") or 0) > cutoff),
        )

    async def sync(self, context: IntegrationContext, options: SyncOptions) -> List[StandardIngestItem]:
        metrics = await self.fetch_metrics(context.tokens.access_token)
        now = utc_now()
        content = (
            "**Revenue Metrics Update**\n\n"
            f"- Customers: {metrics.customer_count}\n"
            f"- MRR: ${metrics.mrr_cents / 100:.2f}\n"
            f"- Active Subscriptions: {metrics.active_subscriptions}\n"
            f"- Churned (30d): {metrics.churned_subscriptions}\n"
            f"- Total Revenue: ${metrics.total_revenue_cents / 100:.2f}"
        )
        return [
            StandardIngestItem(
                source_provider=self.provider,
                # One snapshot per day; later runs the same day update it in place
                source_id=f"metrics-{now.date().isoformat()}",
                source_url=DASHBOARD_URL,
                type=IngestItemType.NOTE,
                title="Stripe Metrics Sync",
                content=content,
                metadata=IngestItemMetadata(
                    timestamp=now,
                    custom={
                        "customer_count": metrics.customer_count,
                        "mrr_cents": metrics.mrr_cents,
                        "total_revenue_cents": metrics.total_revenue_cents,
                        "active_subscriptions": metrics.active_subscriptions,
                        "churned_subscriptions": metrics.churned_subscriptions,
                        "milestones": [c["type"] for c in check_milestones(metrics) if c["achieved"]],
                    },
                ),
            )
        ]

    # ----- webhooks -----

    def verify_webhook_request(self, raw_body: bytes, headers: Mapping[str, str], secret: Optional[str]) -> bool:
        header = headers.get(self.webhook_signature_header)
        if not header:
            return False
        parts: Dict[str, List[str]] = {}
        for element in header.split(","):
            key, _, value = element.strip().partition("=")
            parts.setdefault(key, []).append(value)
        timestamp = (parts.get("t") or [None])[0]
        if not timestamp:
            return False
        try:
            if abs(time.time() - int(timestamp)) > SIGNATURE_TOLERANCE_SECONDS:
                return False
        except ValueError:
            return False
        signed = timestamp.encode() + b"." + raw_body
        return any(self.verify_hmac_signature(signed, candidate, secret) for candidate in parts.get("v1") or [])

    def match_webhook_integrations(self, payload: Any, integrations):
        account_id = (payload or {}).get("account")
        if not account_id:
            return super().match_webhook_integrations(payload, integrations)
        return [
            integration
            for integration in integrations
            if integration.is_active and integration.get_metadata().get("stripe_account_id") == account_id
        ]

    async def handle_webhook(
        self,
        payload: Any,
        signature: Optional[str] = None,
        event_type: Optional[str] = None,
    ) -> List[StandardIngestItem]:
        event = payload or {}
        kind = event_type or event.get("type")
        if kind not in RELEVANT_EVENTS:
            return []
        return [
            StandardIngestItem(
                source_provider=self.provider,
                source_id=event["id"],
                type=IngestItemType.NOTE,
                title=f"Stripe: {kind}",
                content=f"Received Stripe event: {kind}",
                metadata=IngestItemMetadata(
                    timestamp=parse_timestamp_or_now(event.get("created")),
                    custom={"event_type": kind, "event_id": event["id"], "livemode": event.get("livemode")},
                ),
            )
        ]
