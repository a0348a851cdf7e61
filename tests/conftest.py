"""Shared test fixtures."""

import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from typing import Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy import inspect

from src.config import MetricsSettings, Settings
from src.linear.client import LinearAPIError, RateLimitError
from src.linear.types import InitiativeData, IssueData, IssueLabel, ProjectFullData
from src.storage.models import Project

# Attribute names of a Project row, unset columns read as None like the ORM
PROJECT_COLUMNS = [attr.key for attr in inspect(Project).column_attrs]

# Monday
NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


def make_issue(**overrides):
    """Create a mock Issue row for testing."""
    defaults = {
        "id": f"issue-{uuid.uuid4().hex[:8]}",
        "identifier": "ENG-1",
        "title": "Test Issue",
        "description": "Something to do",
        "team_id": "team-eng",
        "team_name": "Engineering",
        "team_key": "ENG",
        "state_id": "state-started",
        "state_name": "In Progress",
        "state_type": "started",
        "assignee_id": "user-1",
        "assignee_name": "Jane Doe",
        "assignee_avatar_url": None,
        "priority": 2,
        "estimate": 3.0,
        "last_comment_at": NOW - timedelta(hours=2),
        "created_at": NOW - timedelta(days=20),
        "updated_at": NOW - timedelta(days=1),
        "started_at": NOW - timedelta(days=3),
        "completed_at": None,
        "canceled_at": None,
        "url": "https://linear.app/acme/issue/ENG-1",
        "parent_id": None,
        "project_id": "proj-1",
        "project_name": "Test Project",
        "project_state_category": "started",
        "project_status": "In Progress",
        "project_health": "onTrack",
        "project_updated_at": NOW - timedelta(days=2),
        "project_lead_id": "user-9",
        "project_lead_name": "Lead Person",
        "project_target_date": None,
        "project_start_date": None,
        "project_completed_at": None,
        "labels": [],
    }
    defaults.update(overrides)
    mock = MagicMock()
    for k, v in defaults.items():
        setattr(mock, k, v)
    return mock


def make_project(**overrides):
    """Create a mock Project row for testing."""
    defaults = {
        "project_id": f"proj-{uuid.uuid4().hex[:8]}",
        "project_name": "Test Project",
        "project_state_category": "started",
        "project_status": "In Progress",
        "project_health": "onTrack",
        "project_lead_name": "Lead Person",
        "in_progress_issues": 2,
        "total_issues": 5,
        "completed_issues": 1,
        "engineers": ["Jane Doe"],
        "teams": ["ENG"],
        "target_date": None,
        "estimated_end_date": None,
        "missing_lead": False,
        "is_stale_update": False,
        "has_status_mismatch": False,
        "missing_health": False,
        "has_date_discrepancy": False,
        "labels": [],
        "project_description": None,
        "project_content": None,
        "project_updates": None,
    }
    defaults.update(overrides)
    mock = MagicMock()
    for k, v in defaults.items():
        setattr(mock, k, v)
    return mock


def make_engineer(**overrides):
    """Create a mock Engineer row for testing."""
    defaults = {
        "assignee_id": f"user-{uuid.uuid4().hex[:8]}",
        "assignee_name": "Jane Doe",
        "team_names": ["Engineering"],
        "wip_issue_count": 3,
        "wip_limit_violation": 0,
        "multi_project_violation": 0,
        "missing_estimate_count": 0,
        "missing_priority_count": 0,
        "no_recent_comment_count": 0,
        "wip_age_violation_count": 0,
    }
    defaults.update(overrides)
    mock = MagicMock()
    for k, v in defaults.items():
        setattr(mock, k, v)
    return mock


def make_issue_data(**overrides) -> IssueData:
    """Create a fetched IssueData record for sync tests."""
    defaults = {
        "id": f"issue-{uuid.uuid4().hex[:8]}",
        "identifier": "ENG-1",
        "title": "Test Issue",
        "description": "Something to do",
        "team_id": "team-eng",
        "team_name": "Engineering",
        "team_key": "ENG",
        "state_id": "state-started",
        "state_name": "In Progress",
        "state_type": "started",
        "assignee_id": "user-1",
        "assignee_name": "Jane Doe",
        "priority": 2,
        "estimate": 3.0,
        "last_comment_at": NOW - timedelta(hours=2),
        "created_at": NOW - timedelta(days=20),
        "updated_at": NOW - timedelta(days=1),
        "started_at": NOW - timedelta(days=3),
        "project_id": "proj-1",
        "project_name": "Test Project",
        "project_state_category": "started",
        "project_health": "onTrack",
        "project_lead_name": "Lead Person",
        "labels": [],
    }
    defaults.update(overrides)
    return IssueData(**defaults)


def make_project_data(**overrides) -> ProjectFullData:
    defaults = {
        "id": f"proj-{uuid.uuid4().hex[:8]}",
        "name": "Test Project",
        "state_category": "started",
        "status": "In Progress",
        "health": "onTrack",
        "lead_id": "user-9",
        "lead_name": "Lead Person",
        "team_keys": ["ENG"],
    }
    defaults.update(overrides)
    return ProjectFullData(**defaults)


def make_initiative(**overrides) -> InitiativeData:
    defaults = {
        "id": f"init-{uuid.uuid4().hex[:8]}",
        "name": "Test Initiative",
        "status": "Active",
        "project_ids": [],
    }
    defaults.update(overrides)
    return InitiativeData(**defaults)


def bug_label() -> IssueLabel:
    return IssueLabel(name="type:bug", parent_name="scoped")


# ---------------------------------------------------------------------------
# In-memory storage standing in for src.storage.queries
# ---------------------------------------------------------------------------


class FakeStore:
    """Dict-backed replacements for the entity queries.

    Sync metadata goes through the real checkpoint helpers; only the
    metadata row lookup is replaced.
    """

    def __init__(self):
        self.issues: dict[str, IssueData] = {}
        self.projects: dict[str, SimpleNamespace] = {}
        self.engineers: dict[str, SimpleNamespace] = {}
        self.initiatives: dict[str, SimpleNamespace] = {}
        self.metadata = SimpleNamespace(
            id=1,
            last_sync_time=None,
            sync_status="idle",
            sync_error=None,
            sync_progress_percent=None,
            api_query_count=None,
            partial_sync_state=None,
        )

    def add_issues(self, *issues: IssueData) -> None:
        for issue in issues:
            self.issues[issue.id] = issue

    async def get_sync_metadata(self, session):
        return self.metadata

    async def get_existing_issue_ids(self, session, ids=None):
        if ids is None:
            return set(self.issues)
        return {i for i in ids if i in self.issues}

    async def upsert_issue(self, session, values):
        self.issues[values["id"]] = IssueData(**values)
        return self.issues[values["id"]]

    async def get_all_issues(self, session):
        return list(self.issues.values())

    async def get_started_issues(self, session):
        return [
            i for i in self.issues.values()
            if i.state_type == "started" and i.completed_at is None and i.canceled_at is None
        ]

    async def get_issues_by_project(self, session, project_id):
        return [i for i in self.issues.values() if i.project_id == project_id]

    async def get_total_issue_count(self, session):
        return len(self.issues)

    async def get_project(self, session, project_id):
        return self.projects.get(project_id)

    async def upsert_project(self, session, values):
        existing = self.projects.get(values["project_id"])
        if existing is None:
            row = SimpleNamespace(**dict.fromkeys(PROJECT_COLUMNS))
            row.__dict__.update(values)
            self.projects[values["project_id"]] = row
        else:
            existing.__dict__.update(values)
        return self.projects[values["project_id"]]

    async def get_existing_project_ids(self, session):
        return set(self.projects)

    async def get_all_projects(self, session):
        return list(self.projects.values())

    async def get_all_engineers(self, session):
        return list(self.engineers.values())

    async def upsert_engineer(self, session, values):
        existing = self.engineers.get(values["assignee_id"])
        if existing is None:
            self.engineers[values["assignee_id"]] = SimpleNamespace(**values)
        else:
            existing.__dict__.update(values)
        return self.engineers[values["assignee_id"]]

    async def get_all_initiatives(self, session):
        return list(self.initiatives.values())

    async def upsert_initiative(self, session, data):
        self.initiatives[data.id] = SimpleNamespace(id=data.id, name=data.name, project_ids=data.project_ids)
        return self.initiatives[data.id]

    async def delete_issues_by_teams(self, session, team_keys):
        return self._delete_issues(lambda i: i.team_key in team_keys) if team_keys else 0

    async def delete_issues_not_in_teams(self, session, team_keys):
        return self._delete_issues(lambda i: i.team_key not in team_keys) if team_keys else 0

    async def delete_issues_by_assignee_names(self, session, names):
        return self._delete_issues(lambda i: i.assignee_name in names) if names else 0

    async def delete_engineers_by_names(self, session, names):
        doomed = [k for k, e in self.engineers.items() if e.assignee_name in names]
        for key in doomed:
            del self.engineers[key]
        return len(doomed)

    def _delete_issues(self, predicate) -> int:
        doomed = [k for k, i in self.issues.items() if predicate(i)]
        for key in doomed:
            del self.issues[key]
        return len(doomed)

    def install(self, monkeypatch) -> None:
        from src.storage import queries

        for name in (
            "get_sync_metadata",
            "get_existing_issue_ids",
            "upsert_issue",
            "get_all_issues",
            "get_started_issues",
            "get_issues_by_project",
            "get_total_issue_count",
            "get_project",
            "upsert_project",
            "get_existing_project_ids",
            "get_all_projects",
            "get_all_engineers",
            "upsert_engineer",
            "get_all_initiatives",
            "upsert_initiative",
            "delete_issues_by_teams",
            "delete_issues_not_in_teams",
            "delete_issues_by_assignee_names",
            "delete_engineers_by_names",
        ):
            monkeypatch.setattr(queries, name, getattr(self, name))


# ---------------------------------------------------------------------------
# Fake Linear client
# ---------------------------------------------------------------------------


class FakeLinearClient:
    """Serves canned issues and projects and records what was asked for."""

    def __init__(
        self,
        started: Optional[list[IssueData]] = None,
        recent: Optional[list[IssueData]] = None,
        project_issues: Optional[dict[str, list[IssueData]]] = None,
        project_data: Optional[dict[str, ProjectFullData]] = None,
        planned: Optional[list[ProjectFullData]] = None,
        completed: Optional[list[ProjectFullData]] = None,
        initiatives: Optional[list[InitiativeData]] = None,
        rate_limit_projects: Optional[set[str]] = None,
        connected: bool = True,
    ):
        self.started = started or []
        self.recent = recent or []
        self.project_issues = project_issues or {}
        self.project_data = project_data or {}
        self.planned = planned or []
        self.completed = completed or []
        self.initiatives = initiatives or []
        self.rate_limit_projects = set(rate_limit_projects or ())
        self.connected = connected
        self.project_issue_calls: list[str] = []
        self.full_data_calls: list[str] = []
        self.batched_data_calls: list[list[str]] = []
        self.recent_since: list[datetime] = []
        self.closed = False
        self._query_count = 0

    @property
    def query_count(self) -> int:
        return self._query_count

    def reset_query_count(self) -> None:
        self._query_count = 0

    async def close(self) -> None:
        self.closed = True

    async def test_connection(self) -> bool:
        self._query_count += 1
        return self.connected

    async def fetch_started_issues(self, on_progress=None):
        self._query_count += 1
        return list(self.started)

    async def fetch_recently_updated_issues(self, since, on_progress=None):
        self._query_count += 1
        self.recent_since.append(since)
        return list(self.recent)

    async def fetch_issues_by_projects(self, project_ids, on_progress=None):
        issues = []
        for project_id in project_ids:
            self._query_count += 1
            self.project_issue_calls.append(project_id)
            if project_id in self.rate_limit_projects:
                raise RateLimitError()
            issues.extend(self.project_issues.get(project_id, []))
        return issues

    async def fetch_project_full_data(self, project_id):
        self._query_count += 1
        self.full_data_calls.append(project_id)
        if project_id not in self.project_data:
            raise LinearAPIError(f"Project not found: {project_id}")
        return self.project_data[project_id]

    async def fetch_multiple_projects_full_data(self, project_ids):
        self._query_count += (len(project_ids) + 9) // 10
        self.batched_data_calls.append(list(project_ids))
        return {pid: self.project_data[pid] for pid in project_ids if pid in self.project_data}

    async def fetch_planned_projects(self):
        self._query_count += 1
        return list(self.planned)

    async def fetch_completed_projects(self, since):
        self._query_count += 1
        return list(self.completed)

    async def fetch_initiatives(self):
        self._query_count += 1
        return list(self.initiatives)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_session():
    session = AsyncMock()
    session.add = MagicMock()
    return session


@pytest.fixture
def session_factory(mock_session):
    @asynccontextmanager
    async def factory():
        yield mock_session

    return factory


@pytest.fixture
def fake_store(monkeypatch):
    store = FakeStore()
    store.install(monkeypatch)
    return store


@pytest.fixture
def settings():
    return Settings(metrics=MetricsSettings(capture_after_sync=False))