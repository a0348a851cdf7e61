"""Tests for the pulse command line."""

from unittest.mock import AsyncMock, patch

from typer.testing import CliRunner

from src.cli.main import app
from src.sync.phases import SyncPhase
from src.sync.state import SyncResult

runner = CliRunner()


class TestSyncCommand:
    def test_success_prints_counts(self):
        result_obj = SyncResult(success=True, new_count=2, updated_count=5, total_count=40, api_query_count=9)
        sync = AsyncMock(return_value=result_obj)
        with patch("src.sync.orchestrator.perform_sync", sync), patch(
            "src.storage.db.close_db", AsyncMock()
        ):
            result = runner.invoke(app, ["sync", "--phase", "initiatives", "--incremental"])

        assert result.exit_code == 0
        assert "2 new, 5 updated" in result.output
        assert "Sync complete!" in result.output
        options = sync.call_args.args[0]
        assert options.phases == [SyncPhase.INITIATIVES]
        assert options.incremental_sync is True

    def test_failure_exits_nonzero(self):
        failed = SyncResult(success=False, error="Rate limit exceeded during sync")
        with patch("src.sync.orchestrator.perform_sync", AsyncMock(return_value=failed)), patch(
            "src.storage.db.close_db", AsyncMock()
        ):
            result = runner.invoke(app, ["sync"])

        assert result.exit_code == 1
        assert "Rate limit exceeded" in result.output

    def test_unknown_phase(self):
        with patch("src.storage.db.close_db", AsyncMock()):
            result = runner.invoke(app, ["sync", "--phase", "bogus"])
        assert result.exit_code == 1
        assert "Unknown phase" in result.output

    def test_single_project(self):
        single = AsyncMock(return_value=SyncResult(success=True, project_count=1))
        with patch("src.sync.project_sync.sync_single_project", single), patch(
            "src.storage.db.close_db", AsyncMock()
        ):
            result = runner.invoke(app, ["sync", "--project", "p1"])

        assert result.exit_code == 0
        assert single.call_args.args[0] == "p1"


class TestMetricsCommand:
    def test_show_without_snapshots(self, session_factory):
        with patch("src.storage.db.get_session", session_factory), patch(
            "src.storage.db.close_db", AsyncMock()
        ), patch("src.storage.snapshots.get_latest", AsyncMock(return_value=None)):
            result = runner.invoke(app, ["metrics", "show"])

        assert result.exit_code == 0
        assert "No snapshot captured yet" in result.output

    def test_show_bad_level(self, session_factory):
        with patch("src.storage.db.get_session", session_factory), patch(
            "src.storage.db.close_db", AsyncMock()
        ), patch(
            "src.storage.snapshots.get_latest",
            AsyncMock(side_effect=ValueError("Unknown snapshot level: galaxy")),
        ):
            result = runner.invoke(app, ["metrics", "show", "--level", "galaxy"])

        assert result.exit_code == 1
        assert "Unknown snapshot level" in result.output
