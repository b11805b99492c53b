import uuid
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from typer.testing import CliRunner

from app.cli.cli import app as cli_app
from app.core.exceptions import IntegrationNotFoundError

runner = CliRunner()


@pytest.fixture
def cli_session():
    session = MagicMock()
    with patch("app.cli.commands.integrations.get_session_context") as mock_context:
        mock_context.return_value.__enter__.return_value = session
        yield session


def test_list_definitions_renders_catalog():
    result = runner.invoke(cli_app, ["integrations", "list-definitions", "--available"])

    assert result.exit_code == 0
    assert "github" in result.output
    assert "notion" in result.output


def test_version_command():
    result = runner.invoke(cli_app, ["version"])

    assert result.exit_code == 0
    assert "Catalyst Launch CLI version" in result.output


def test_sync_due_exits_non_zero_on_failures(cli_session):
    summary = {"recovered": 0, "processed": 2, "succeeded": 1, "failed": 1, "skipped": 0}
    with patch(
        "app.cli.commands.integrations.service.sync_due_integrations", new=AsyncMock(return_value=summary)
    ) as mock_scan:
        result = runner.invoke(cli_app, ["integrations", "sync-due", "--limit", "5"])

    assert result.exit_code == 1
    mock_scan.assert_awaited_once_with(cli_session, limit=5)


def test_sync_due_clean_run(cli_session):
    summary = {"recovered": 1, "processed": 1, "succeeded": 1, "failed": 0, "skipped": 0}
    with patch("app.cli.commands.integrations.service.sync_due_integrations", new=AsyncMock(return_value=summary)):
        result = runner.invoke(cli_app, ["integrations", "sync-due"])

    assert result.exit_code == 0
    assert "succeeded" in result.output


def test_sync_rejects_bad_user_id():
    result = runner.invoke(cli_app, ["integrations", "sync", "not-a-uuid", "github"])

    assert result.exit_code == 2
    assert "Invalid user id" in result.output


def test_sync_reports_missing_integration(cli_session):
    with patch(
        "app.cli.commands.integrations.service.sync_integration",
        new=AsyncMock(side_effect=IntegrationNotFoundError("No github integration connected")),
    ):
        result = runner.invoke(cli_app, ["integrations", "sync", str(uuid.uuid4()), "github"])

    assert result.exit_code == 1
    assert "No github integration connected" in result.output


def test_sync_passes_full_and_dry_run(cli_session):
    outcome = SimpleNamespace(
        success=True, items_created=3, items_updated=0, items_skipped=1, items_failed=0, errors=[]
    )
    user_id = uuid.uuid4()
    with patch(
        "app.cli.commands.integrations.service.sync_integration", new=AsyncMock(return_value=outcome)
    ) as mock_sync:
        result = runner.invoke(cli_app, ["integrations", "sync", str(user_id), "linear", "--full", "--dry-run"])

    assert result.exit_code == 0
    assert "created=3" in result.output
    args, kwargs = mock_sync.await_args
    assert args[1] == user_id
    assert args[3].full_sync is True
    assert kwargs["dry_run"] is True


def test_status_without_integrations(cli_session):
    with patch("app.cli.commands.integrations.service.list_integration_statuses", new=AsyncMock(return_value=[])):
        result = runner.invoke(cli_app, ["integrations", "status", str(uuid.uuid4())])

    assert result.exit_code == 0
    assert "No integrations connected" in result.output
