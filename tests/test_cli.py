"""Tests for CLI interface."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

import pytest

from podflow_admin.cli.main import main_async, parse_args, run_command

ORG_ID = "3f2b8c1e-9a4d-4e5f-8b6a-1c2d3e4f5a6b"


@pytest.mark.unit
def test_parse_retain():
    args = parse_args(["retain", "--days", "90"])

    assert args.command == "retain"
    assert args.days == 90
    assert args.log_level == "INFO"


@pytest.mark.unit
def test_parse_retain_defaults_to_settings():
    assert parse_args(["retain"]).days is None


@pytest.mark.unit
def test_parse_report_dates():
    args = parse_args(
        ["report", "--org", ORG_ID, "--start", "2026-09-01", "--end", "2026-09-30T23:59:59+02:00"]
    )

    assert str(args.org) == ORG_ID
    assert args.start == datetime(2026, 9, 1, tzinfo=timezone.utc)
    assert args.end.utcoffset().total_seconds() == 7200


@pytest.mark.unit
def test_parse_export():
    args = parse_args(["--log-level", "DEBUG", "export", "--org", ORG_ID, "--format", "csv"])

    assert args.format == "csv"
    assert args.output is None
    assert args.log_level == "DEBUG"


@pytest.mark.unit
@pytest.mark.parametrize(
    "argv",
    [
        [],
        ["report"],
        ["report", "--org", "not-a-uuid"],
        ["export", "--org", ORG_ID, "--format", "xml"],
        ["cleanup-backups", "--org", ORG_ID],
        ["cleanup-backups", "--org", ORG_ID, "--frequency", "hourly"],
    ],
)
def test_invalid_arguments(argv):
    with pytest.raises(SystemExit):
        parse_args(argv)


def _session_factory(session):
    factory = MagicMock()
    factory.return_value.__aenter__.return_value = session
    return factory


@pytest.mark.asyncio
async def test_retain_commits():
    session = AsyncMock()
    audit = MagicMock(retain_audit_logs=AsyncMock(return_value=4))

    with patch("podflow_admin.api.deps._db_session_factory", _session_factory(session)), patch(
        "podflow_admin.cli.main.get_audit_service", return_value=audit
    ):
        code = await run_command(parse_args(["retain", "--days", "30"]))

    assert code == 0
    audit.retain_audit_logs.assert_awaited_once_with(session, 30)
    session.commit.assert_awaited_once()


@pytest.mark.asyncio
async def test_export_writes_file(tmp_path):
    session = AsyncMock()
    audit = MagicMock(export_audit_logs=AsyncMock(return_value='"Timestamp"'))
    output = tmp_path / "audit.csv"

    with patch("podflow_admin.api.deps._db_session_factory", _session_factory(session)), patch(
        "podflow_admin.cli.main.get_audit_service", return_value=audit
    ):
        await run_command(
            parse_args(["export", "--org", ORG_ID, "--format", "csv", "--output", str(output)])
        )

    assert output.read_text() == '"Timestamp"'
    assert audit.export_audit_logs.await_args.args[2] == "csv"


@pytest.mark.asyncio
async def test_cleanup_backups(tmp_path):
    session = AsyncMock()
    manager = MagicMock(cleanup_old_backups=AsyncMock(return_value=2))

    with patch("podflow_admin.api.deps._db_session_factory", _session_factory(session)), patch(
        "podflow_admin.core.backups.BackupManager", return_value=manager
    ):
        await run_command(
            parse_args(["cleanup-backups", "--org", ORG_ID, "--frequency", "monthly"])
        )

    org_id = manager.cleanup_old_backups.await_args.args[1]
    assert str(org_id) == ORG_ID
    assert manager.cleanup_old_backups.await_args.args[2] == "monthly"
    session.commit.assert_awaited_once()


@pytest.mark.asyncio
async def test_main_async_reports_failure():
    with patch("podflow_admin.api.deps.init_db", AsyncMock(side_effect=ConnectionError("no db"))), patch(
        "podflow_admin.api.deps.close_db", AsyncMock()
    ):
        assert await main_async(["retain"]) == 1


@pytest.mark.asyncio
async def test_main_async_interrupted():
    with patch("podflow_admin.api.deps.init_db", AsyncMock()), patch(
        "podflow_admin.api.deps.close_db", AsyncMock()
    ), patch("podflow_admin.cli.main.run_command", AsyncMock(side_effect=KeyboardInterrupt)):
        assert await main_async(["report", "--org", str(uuid4())]) == 130
