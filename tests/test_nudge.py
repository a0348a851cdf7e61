"""Tests for unassigned-issue nudges."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from src.linear.client import RateLimitError
from src.nudge import (
    MESSAGE_MARKER,
    UNASSIGNED_MESSAGE,
    UNASSIGNED_WARNING,
    comment_on_unassigned_issues,
)
from tests.conftest import FakeLinearClient, make_issue


@pytest.fixture
def comment_log(monkeypatch):
    """Patch the comment-log queries with an in-memory log."""
    from src.storage import queries

    log = {"recent": set(), "logged": [], "unassigned": []}

    async def get_unassigned(session):
        return list(log["unassigned"])

    async def has_recent(session, issue_id, comment_type, hours_ago=24):
        return issue_id in log["recent"]

    async def log_comment(session, issue_id, comment_type):
        log["logged"].append((issue_id, comment_type))

    monkeypatch.setattr(queries, "get_unassigned_started_issues", get_unassigned)
    monkeypatch.setattr(queries, "has_recent_comment_log", has_recent)
    monkeypatch.setattr(queries, "log_comment", log_comment)
    monkeypatch.setattr(queries, "cleanup_comment_logs", AsyncMock(return_value=0))
    return log


def _client():
    client = MagicMock()
    client.has_recent_comment_with_text = AsyncMock(return_value=False)
    client.comment_on_issue = AsyncMock(return_value=True)
    return client


class TestCommentOnUnassigned:
    @pytest.mark.asyncio
    async def test_comments_and_logs(self, comment_log, session_factory, settings):
        issue = make_issue(id="i1", identifier="ENG-7", assignee_id=None, assignee_name=None)
        comment_log["unassigned"] = [issue]
        client = _client()

        result = await comment_on_unassigned_issues(
            client, session_factory, settings, sync_first=False
        )

        assert result.success is True
        assert result.commented == ["ENG-7"]
        client.comment_on_issue.assert_awaited_once_with("i1", UNASSIGNED_MESSAGE)
        assert comment_log["logged"] == [("i1", UNASSIGNED_WARNING)]

    @pytest.mark.asyncio
    async def test_skips_locally_logged_and_remote_comments(self, comment_log, session_factory, settings):
        local = make_issue(id="i1", identifier="ENG-1")
        remote = make_issue(id="i2", identifier="ENG-2")
        comment_log["unassigned"] = [local, remote]
        comment_log["recent"] = {"i1"}
        client = _client()
        client.has_recent_comment_with_text = AsyncMock(return_value=True)

        result = await comment_on_unassigned_issues(
            client, session_factory, settings, sync_first=False
        )

        assert result.commented == []
        assert result.message == "All 2 unassigned issues already have recent warnings"
        client.has_recent_comment_with_text.assert_awaited_once_with("i2", MESSAGE_MARKER, 24)
        client.comment_on_issue.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_no_unassigned_issues(self, comment_log, session_factory, settings):
        result = await comment_on_unassigned_issues(
            _client(), session_factory, settings, sync_first=False
        )
        assert result.success is True
        assert result.message == "No unassigned started issues"

    @pytest.mark.asyncio
    async def test_failed_comment_counted(self, comment_log, session_factory, settings):
        comment_log["unassigned"] = [make_issue(id="i1")]
        client = _client()
        client.comment_on_issue = AsyncMock(return_value=False)

        result = await comment_on_unassigned_issues(
            client, session_factory, settings, sync_first=False
        )

        assert result.failed_count == 1
        assert comment_log["logged"] == []

    @pytest.mark.asyncio
    async def test_rate_limit_stops_commenting(self, comment_log, session_factory, settings):
        comment_log["unassigned"] = [make_issue(id="i1"), make_issue(id="i2")]
        client = _client()
        client.comment_on_issue = AsyncMock(side_effect=RateLimitError())

        result = await comment_on_unassigned_issues(
            client, session_factory, settings, sync_first=False
        )

        assert result.success is False
        assert client.comment_on_issue.await_count == 1

    @pytest.mark.asyncio
    async def test_failed_sync_aborts(self, comment_log, fake_store, session_factory, settings):
        client = FakeLinearClient(connected=False)

        result = await comment_on_unassigned_issues(client, session_factory, settings)

        assert result.success is False
        assert result.message == "Failed to sync issues before commenting"
