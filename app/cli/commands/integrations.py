"""
Integration administration commands.
"""
from __future__ import annotations

import asyncio
import uuid
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from app.core.config import settings
from app.core.database import get_session_context
from app.core.exceptions import IntegrationError
from app.integrations import service
from app.integrations.registry import get_registry
from app.integrations.types import SyncOptions

app = typer.Typer(help="Integration sync commands")
console = Console()


def _parse_user_id(value: str) -> uuid.UUID:
    try:
        return uuid.UUID(value)
    except ValueError:
        console.print(f"[red]Invalid user id: {value}[/red]")
        raise typer.Exit(code=2)


@app.command("list-definitions")
def list_definitions(
    available_only: bool = typer.Option(False, "--available", help="Hide coming-soon providers"),
):
    """Show the integration catalog and whether this instance is configured for each provider."""
    registry = get_registry()
    table = Table(title="Integration Catalog")
    table.add_column("Provider", style="cyan")
    table.add_column("Category", style="white")
    table.add_column("Auth", style="white")
    table.add_column("Sync", style="white")
    table.add_column("Interval (min)", justify="right")
    table.add_column("Configured", justify="center")

    for category, definitions in registry.definitions_grouped_by_category().items():
        for definition in definitions:
            if available_only and not definition.is_available:
                continue
            configured = settings.is_provider_configured(definition.id.value)
            table.add_row(
                definition.id.value,
                category.value,
                definition.auth_method.value,
                definition.sync_method.value,
                str(definition.default_sync_interval or "-"),
                "[green]yes[/green]" if configured else "[dim]no[/dim]",
            )
    console.print(table)


@app.command("sync-due")
def sync_due(
    limit: Optional[int] = typer.Option(None, "--limit", "-l", help="Maximum integrations to sync"),
):
    """Run one scheduled scan now (the same work as the Celery beat task)."""
    with get_session_context() as session:
        summary = asyncio.run(service.sync_due_integrations(session, limit=limit))

    table = Table(title="Scheduled Sync")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="white")
    for key, value in summary.items():
        table.add_row(key, str(value))
    console.print(table)
    if summary["failed"]:
        raise typer.Exit(code=1)


@app.command("sync")
def sync(
    user_id: str = typer.Argument(..., help="User UUID"),
    provider: str = typer.Argument(..., help="Provider id, e.g. github"),
    full: bool = typer.Option(False, "--full", help="Ignore the stored cursor"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Report what would be ingested without writing"),
):
    """Sync one provider for one user."""
    user_uuid = _parse_user_id(user_id)
    with get_session_context() as session:
        try:
            result = asyncio.run(
                service.sync_integration(session, user_uuid, provider, SyncOptions(full_sync=full), dry_run=dry_run)
            )
        except (IntegrationError, ValueError) as exc:
            console.print(f"[red]{exc}[/red]")
            raise typer.Exit(code=1)

    colour = "green" if result.success else "red"
    console.print(
        f"[{colour}]{provider}: created={result.items_created} updated={result.items_updated} "
        f"skipped={result.items_skipped} failed={result.items_failed}[/{colour}]"
    )
    for error in result.errors:
        console.print(f"  [yellow]{error.item_id or '-'}: {error.message}[/yellow]")
    if not result.success:
        raise typer.Exit(code=1)


@app.command("reset")
def reset(
    user_id: str = typer.Argument(..., help="User UUID"),
    provider: str = typer.Argument(..., help="Provider id"),
):
    """Resume a paused integration."""
    user_uuid = _parse_user_id(user_id)
    with get_session_context() as session:
        try:
            state = asyncio.run(service.reset_integration_sync(session, user_uuid, provider))
        except (IntegrationError, ValueError) as exc:
            console.print(f"[red]{exc}[/red]")
            raise typer.Exit(code=1)
    console.print(f"[green]✓ {provider} sync state is now {state.status}[/green]")


@app.command("status")
def status(user_id: str = typer.Argument(..., help="User UUID")):
    """Show every integration of a user with its sync health."""
    user_uuid = _parse_user_id(user_id)
    with get_session_context() as session:
        statuses = asyncio.run(service.list_integration_statuses(session, user_uuid))

    if not statuses:
        console.print("[yellow]No integrations connected.[/yellow]")
        raise typer.Exit(code=0)

    table = Table(title="Integrations")
    table.add_column("Provider", style="cyan")
    table.add_column("Active", justify="center")
    table.add_column("Status")
    table.add_column("Errors", justify="right")
    table.add_column("Last success")
    table.add_column("Next sync")
    table.add_column("Items", justify="right")
    for item in statuses:
        sync_state = item.sync
        table.add_row(
            item.provider.value,
            "yes" if item.is_active else "no",
            sync_state.status.value if sync_state else "-",
            str(sync_state.error_count) if sync_state else "-",
            sync_state.last_successful_sync_at.isoformat() if sync_state and sync_state.last_successful_sync_at else "-",
            sync_state.next_sync_at.isoformat() if sync_state and sync_state.next_sync_at else "-",
            str(sync_state.total_items_synced) if sync_state else "0",
        )
    console.print(table)
