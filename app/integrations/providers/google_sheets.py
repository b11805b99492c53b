"""
Google Sheets integration.

Auth: Google OAuth2 (offline access, refresh tokens)
Sync: traction metrics rows from one configured spreadsheet, one note per dated row

The connection metadata carries `sheets_config`:
    {"spreadsheet_id": "...", "sheet_name": "Metrics", "range": "A:Z"}

Columns are detected from the header row. A date column is required; the
customers, MRR, revenue, active users and NPS columns are optional.
"""
import re
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional
from urllib.parse import quote

from app.core.logging_config import log_warning
from app.core.time_utils import ensure_utc, parse_optional_datetime
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

API_URL = "https://sheets.googleapis.com/v4/spreadsheets"
TOKENINFO_URL = "https://www.googleapis.com/oauth2/v1/tokeninfo"
USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"
SPREADSHEET_URL = "https://docs.google.com/spreadsheets/d/{spreadsheet_id}"

# Normalized header -> metric name
HEADER_ALIASES: Dict[str, str] = {
    "date": "date",
    "metricdate": "date",
    "customers": "customers",
    "customercount": "customers",
    "customer": "customers",
    "mrr": "mrr",
    "monthlyrecurringrevenue": "mrr",
    "revenue": "revenue",
    "totalrevenue": "revenue",
    "activeusers": "active_users",
    "dau": "active_users",
    "mau": "active_users",
    "nps": "nps_score",
    "npsscore": "nps_score",
}
CURRENCY_NOISE = re.compile(r"[$€£¥,\s]")


def sheets_config(metadata: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    return dict((metadata or {}).get("sheets_config") or {})


def _normalize_header(header: str) -> str:
    return re.sub(r"[^a-z]", "", header.lower())


def _parse_number(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        return float(CURRENCY_NOISE.sub("", value))
    except ValueError:
        return None


def parse_sheet_rows(rows: List[List[str]]) -> List[Dict[str, Any]]:
    """
    Turn raw sheet values into metric rows.

    Money columns become integer cents and counts are rounded. Rows without a
    parseable date are dropped.

    Raises:
        ValueError: the header row has no date column
    """
    if len(rows) < 2:
        return []

    columns: Dict[str, int] = {}
    for index, header in enumerate(rows[0]):
        metric = HEADER_ALIASES.get(_normalize_header(header))
        if metric and metric not in columns:
            columns[metric] = index
    if "date" not in columns:
        raise ValueError("No date column found in sheet")

    def cell(row: List[str], metric: str) -> Optional[str]:
        index = columns.get(metric)
        if index is None or index >= len(row):
            return None
        return row[index].strip()

    metrics: List[Dict[str, Any]] = []
    for row in rows[1:]:
        date = parse_optional_datetime(cell(row, "date"))
        if date is None:
            continue
        customers = _parse_number(cell(row, "customers"))
        mrr = _parse_number(cell(row, "mrr"))
        revenue = _parse_number(cell(row, "revenue"))
        active_users = _parse_number(cell(row, "active_users"))
        metrics.append(
            {
                "date": date,
                "customers": round(customers) if customers is not None else None,
                "mrr_cents": round(mrr * 100) if mrr is not None else None,
                "revenue_cents": round(revenue * 100) if revenue is not None else None,
                "active_users": round(active_users) if active_users is not None else None,
                "nps_score": _parse_number(cell(row, "nps_score")),
            }
        )
    return metrics


def _format_metrics(metric: Dict[str, Any]) -> str:
    lines = []
    if metric["customers"] is not None:
        lines.append(f"Customers: {metric['customers']}")
    if metric["mrr_cents"] is not None:
        lines.append(f"MRR: ${metric['mrr_cents'] / 100:,.2f}")
    if metric["revenue_cents"] is not None:
        lines.append(f"Revenue: ${metric['revenue_cents'] / 100:,.2f}")
    if metric["active_users"] is not None:
        lines.append(f"Active users: {metric['active_users']}")
    if metric["nps_score"] is not None:
        lines.append(f"NPS: {metric['nps_score']:g}")
    return "\n".join(lines) or "No metrics recorded"


@register_provider
class GoogleSheetsIntegration(BaseIntegration):
    provider = IntegrationProvider.GOOGLE_SHEETS

    def authorization_params(self, config, state: str) -> Dict[str, str]:
        params = super().authorization_params(config, state)
        params["access_type"] = "offline"
        params["prompt"] = "consent"
        return params

    def _headers(self, access_token: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {access_token}"}

    async def validate_connection(self, tokens: IntegrationTokens) -> bool:
        try:
            await self.request_json("GET", TOKENINFO_URL, headers=self._headers(tokens.access_token))
            return True
        except Exception:
            return False

    async def get_account_info(self, tokens: IntegrationTokens) -> Dict[str, Any]:
        data = await self.request_json("GET", USERINFO_URL, headers=self._headers(tokens.access_token))
        return {"account_name": data.get("name"), "account_email": data.get("email")}

    async def fetch_sheet_values(self, access_token: str, config: Mapping[str, Any]) -> List[List[str]]:
        sheet_name = config.get("sheet_name")
        value_range = config.get("range") or (f"{sheet_name}!A:Z" if sheet_name else "A:Z")
        data = await self.request_json(
            "GET",
            f"{API_URL}/{config['spreadsheet_id']}/values/{quote(value_range, safe='')}",
            headers=self._headers(access_token),
        )
        return data.get("values") or []

    async def sync(self, context: IntegrationContext, options: SyncOptions) -> List[StandardIngestItem]:
        config = sheets_config(context.metadata)
        if not config.get("spreadsheet_id"):
            log_warning(
                "Google Sheets sync skipped: no spreadsheet configured", integration_id=str(context.integration_id)
            )
            return []

        rows = await self.fetch_sheet_values(context.tokens.access_token, config)
        metrics = parse_sheet_rows(rows)
        if options.since:
            since_day = ensure_utc(options.since).date()
            metrics = [metric for metric in metrics if metric["date"].date() >= since_day]
        metrics.sort(key=lambda metric: metric["date"])
        if options.limit:
            metrics = metrics[-options.limit:]
        return [self.normalize_row(metric, config["spreadsheet_id"]) for metric in metrics]

    def normalize_row(self, metric: Dict[str, Any], spreadsheet_id: str) -> StandardIngestItem:
        date: datetime = metric["date"]
        day = date.date().isoformat()
        return StandardIngestItem(
            source_provider=self.provider,
            source_id=f"{spreadsheet_id}:{day}",
            source_url=SPREADSHEET_URL.format(spreadsheet_id=spreadsheet_id),
            type=IngestItemType.NOTE,
            title=f"Traction metrics for {day}",
            content=_format_metrics(metric),
            metadata=IngestItemMetadata(
                timestamp=date,
                tags=["metrics"],
                custom={
                    "spreadsheet_id": spreadsheet_id,
                    **{key: value for key, value in metric.items() if key != "date" and value is not None},
                },
            ),
        )
