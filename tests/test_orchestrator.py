"""End-to-end tests of a phased sync against in-memory storage."""

import asyncio
from datetime import timedelta

import pytest

from src.config import MetricsSettings, Settings, SyncSettings
from src.linear.client import LinearAPIError, RateLimitError
from src.metrics.team_health import get_project_engineers_in_violation
from src.sync.orchestrator import (
    CONNECTION_ERROR,
    RATE_LIMIT_ERROR,
    SCHEMA_HINT,
    is_schema_error,
    perform_sync,
)
from src.sync.context import SyncContext
from src.sync.events import EventChannel, RunStatus
from src.sync.phases import SyncPhase
from src.sync.project_sync import sync_single_project
from src.sync.projects import process_projects_in_parallel
from src.sync.state import PartialSyncState, ProjectBucket, SyncOptions, UnitStatus
from tests.conftest import NOW, FakeLinearClient, make_initiative, make_issue_data, make_project_data


def _started():
    return [
        make_issue_data(id=f"{pid}-1", project_id=pid, project_name=f"Project {pid}")
        for pid in ("A", "B", "C")
    ]


def _project_issues():
    return {
        pid: [make_issue_data(id=f"{pid}-2", project_id=pid, state_type="unstarted", started_at=None)]
        for pid in ("A", "B", "C")
    }


async def _sync(client, session_factory, settings, options=None, events=None):
    return await perform_sync(
        options or SyncOptions(),
        client=client,
        session_factory=session_factory,
        events=events,
        settings=settings,
    )


class TestFullSync:
    @pytest.mark.asyncio
    async def test_success_stores_everything(self, fake_store, session_factory, settings):
        client = FakeLinearClient(
            started=_started(),
            project_issues=_project_issues(),
            project_data={"A": make_project_data(id="A", name="Alpha")},
            initiatives=[make_initiative(id="i1", project_ids=["A"])],
        )
        status = RunStatus()
        events = EventChannel()
        events.subscribe(status.apply)

        result = await _sync(client, session_factory, settings, events=events)

        assert result.success is True
        assert result.error is None
        assert result.new_count == 6
        assert result.project_count == 3
        assert result.total_count == 6
        assert result.api_query_count == client.query_count
        assert sorted(client.project_issue_calls) == ["A", "B", "C"]
        assert sorted(fake_store.projects) == ["A", "B", "C"]
        assert fake_store.projects["A"].project_name == "Alpha"
        assert "Jane Doe" in {e.assignee_name for e in fake_store.engineers.values()}
        assert list(fake_store.initiatives) == ["i1"]
        assert fake_store.metadata.sync_status == "idle"
        assert fake_store.metadata.partial_sync_state is None
        assert fake_store.metadata.last_sync_time is not None
        assert status.current_phase == SyncPhase.COMPLETE
        assert status.progress_percent == 100
        assert [sorted(batch) for batch in client.batched_data_calls] == [["A", "B", "C"]]
        assert client.full_data_calls == []

    @pytest.mark.asyncio
    async def test_project_data_fetched_in_batches(self, fake_store, session_factory, settings):
        ids = [f"P{n:02d}" for n in range(12)]
        client = FakeLinearClient(
            started=[make_issue_data(id=f"{pid}-1", project_id=pid) for pid in ids],
            project_data={pid: make_project_data(id=pid, name=f"Name {pid}") for pid in ids},
        )

        result = await _sync(client, session_factory, settings)

        assert result.success is True
        assert len(client.batched_data_calls) == 1
        assert sorted(client.batched_data_calls[0]) == ids
        assert client.full_data_calls == []
        assert fake_store.projects["P07"].project_name == "Name P07"

    @pytest.mark.asyncio
    async def test_rate_limit_on_batch_keeps_checkpoint(self, fake_store, session_factory, settings):
        client = FakeLinearClient(started=_started(), project_issues=_project_issues())

        async def limited(project_ids):
            raise RateLimitError()

        client.fetch_multiple_projects_full_data = limited

        result = await _sync(client, session_factory, settings)

        assert result.error == RATE_LIMIT_ERROR
        assert client.project_issue_calls == []
        saved = PartialSyncState.model_validate(fake_store.metadata.partial_sync_state)
        assert saved.completed_ids(ProjectBucket.ACTIVE) == set()
        assert len(saved.project_syncs) == 3

    @pytest.mark.asyncio
    async def test_failed_batch_falls_back_to_single_fetches(self, fake_store, session_factory, settings):
        client = FakeLinearClient(
            started=_started(),
            project_data={"A": make_project_data(id="A", name="Alpha")},
        )

        async def broken(project_ids):
            raise LinearAPIError("Linear API returned 500")

        client.fetch_multiple_projects_full_data = broken

        result = await _sync(client, session_factory, settings)

        assert result.success is True
        assert sorted(client.full_data_calls) == ["A", "B", "C"]
        assert fake_store.projects["A"].project_name == "Alpha"

    @pytest.mark.asyncio
    async def test_connection_failure(self, fake_store, session_factory, settings):
        client = FakeLinearClient(connected=False)

        result = await _sync(client, session_factory, settings)

        assert result.success is False
        assert result.error == CONNECTION_ERROR
        assert fake_store.metadata.sync_status == "error"
        assert fake_store.metadata.sync_error == CONNECTION_ERROR
        assert client.project_issue_calls == []

    @pytest.mark.asyncio
    async def test_schema_error_carries_reset_hint(self, fake_store, session_factory, settings):
        client = FakeLinearClient()

        async def broken(on_progress=None):
            raise RuntimeError('column "project_lead_id" of relation "issues" does not exist')

        client.fetch_started_issues = broken

        result = await _sync(client, session_factory, settings)

        assert result.success is False
        assert result.error.endswith(SCHEMA_HINT)
        assert fake_store.metadata.partial_sync_state is None

    @pytest.mark.asyncio
    async def test_cleanup_runs_first(self, fake_store, session_factory):
        settings = Settings(
            sync=SyncSettings(whitelist_team_keys="ENG"),
            metrics=MetricsSettings(capture_after_sync=False),
        )
        fake_store.add_issues(make_issue_data(id="ops-1", team_key="OPS", project_id=None))

        result = await _sync(FakeLinearClient(), session_factory, settings)

        assert result.success is True
        assert "ops-1" not in fake_store.issues


class TestResume:
    @pytest.mark.asyncio
    async def test_rate_limit_saves_checkpoint_then_resumes(self, fake_store, session_factory, settings):
        client = FakeLinearClient(
            started=_started(), project_issues=_project_issues(), rate_limit_projects={"B"}
        )

        result = await _sync(client, session_factory, settings)

        assert result.success is False
        assert result.error == RATE_LIMIT_ERROR
        assert fake_store.metadata.sync_status == "error"
        assert fake_store.metadata.sync_error == RATE_LIMIT_ERROR
        saved = PartialSyncState.model_validate(fake_store.metadata.partial_sync_state)
        assert saved.current_phase == SyncPhase.ACTIVE_PROJECTS
        assert saved.initial_issues_sync == UnitStatus.COMPLETE
        assert saved.completed_ids(ProjectBucket.ACTIVE) == {"A"}
        assert len(saved.project_syncs) == 3

        retry = FakeLinearClient(started=_started(), project_issues=_project_issues())
        result = await _sync(retry, session_factory, settings)

        assert result.success is True
        assert retry.project_issue_calls == ["B", "C"]
        assert fake_store.metadata.partial_sync_state is None

    @pytest.mark.asyncio
    async def test_resume_fetches_only_incomplete_projects(self, fake_store, session_factory, settings):
        fake_store.add_issues(*_started())
        state = PartialSyncState(
            current_phase=SyncPhase.ACTIVE_PROJECTS,
            initial_issues_sync=UnitStatus.COMPLETE,
        )
        state.mark_project(ProjectBucket.ACTIVE, "A", UnitStatus.COMPLETE)
        state.mark_project(ProjectBucket.ACTIVE, "B", UnitStatus.COMPLETE)
        state.mark_project(ProjectBucket.ACTIVE, "C", UnitStatus.INCOMPLETE)
        fake_store.metadata.partial_sync_state = state.model_dump(mode="json")
        fake_store.metadata.sync_error = RATE_LIMIT_ERROR
        client = FakeLinearClient(project_issues=_project_issues())

        result = await _sync(client, session_factory, settings)

        assert result.success is True
        assert client.project_issue_calls == ["C"]

    @pytest.mark.asyncio
    async def test_checkpoint_from_other_failure_discarded(self, fake_store, session_factory, settings):
        fake_store.add_issues(*_started())
        state = PartialSyncState(current_phase=SyncPhase.ACTIVE_PROJECTS)
        state.mark_project(ProjectBucket.ACTIVE, "A", UnitStatus.COMPLETE)
        fake_store.metadata.partial_sync_state = state.model_dump(mode="json")
        fake_store.metadata.sync_error = "Connection reset by peer"
        client = FakeLinearClient(started=_started(), project_issues=_project_issues())

        result = await _sync(client, session_factory, settings)

        assert result.success is True
        assert sorted(client.project_issue_calls) == ["A", "B", "C"]


class TestOptions:
    @pytest.mark.asyncio
    async def test_selected_phase_only(self, fake_store, session_factory, settings):
        fake_store.add_issues(*_started())
        client = FakeLinearClient(initiatives=[make_initiative(id="i1")])

        result = await _sync(
            client, session_factory, settings, SyncOptions(phases=[SyncPhase.INITIATIVES])
        )

        assert result.success is True
        assert client.project_issue_calls == []
        assert client.recent_since == []
        assert list(fake_store.initiatives) == ["i1"]

    @pytest.mark.asyncio
    async def test_incremental_reads_since_last_sync(self, fake_store, session_factory, settings):
        fake_store.metadata.last_sync_time = NOW - timedelta(hours=3)
        client = FakeLinearClient()

        await _sync(client, session_factory, settings, SyncOptions(incremental_sync=True))

        assert client.recent_since == [NOW - timedelta(hours=3)]

    @pytest.mark.asyncio
    async def test_incremental_skips_projects_covered_by_issue_phases(
        self, fake_store, session_factory, settings
    ):
        fake_store.metadata.last_sync_time = NOW - timedelta(hours=3)
        client = FakeLinearClient(started=_started(), project_issues=_project_issues())

        result = await _sync(client, session_factory, settings, SyncOptions(incremental_sync=True))

        assert result.success is True
        assert client.project_issue_calls == []
        assert sorted(fake_store.projects) == ["A", "B", "C"]


class TestSingleProject:
    @pytest.mark.asyncio
    async def test_syncs_one_project_without_checkpoint(self, fake_store, session_factory, settings):
        client = FakeLinearClient(
            project_issues=_project_issues(),
            project_data={"B": make_project_data(id="B", name="Beta")},
        )

        result = await sync_single_project(
            "B", client=client, session_factory=session_factory, settings=settings
        )

        assert result.success is True
        assert result.project_issue_count == 1
        assert client.project_issue_calls == ["B"]
        assert fake_store.projects["B"].project_name == "Beta"
        assert fake_store.metadata.partial_sync_state is None
        assert fake_store.metadata.sync_status == "idle"
        assert fake_store.metadata.sync_error is None
        assert fake_store.metadata.last_sync_time is None

    @pytest.mark.asyncio
    async def test_rate_limited(self, fake_store, session_factory, settings):
        state = PartialSyncState(current_phase=SyncPhase.PLANNED_PROJECTS)
        fake_store.metadata.partial_sync_state = state.model_dump(mode="json")
        client = FakeLinearClient(rate_limit_projects={"B"})

        result = await sync_single_project(
            "B", client=client, session_factory=session_factory, settings=settings
        )

        assert result.success is False
        assert result.error == RATE_LIMIT_ERROR
        assert fake_store.metadata.sync_status == "error"
        assert fake_store.metadata.sync_error == result.error
        assert fake_store.metadata.partial_sync_state == state.model_dump(mode="json")

    @pytest.mark.asyncio
    async def test_connection_failure_is_recorded(self, fake_store, session_factory, settings):
        client = FakeLinearClient(connected=False)

        result = await sync_single_project(
            "B", client=client, session_factory=session_factory, settings=settings
        )

        assert result.error == CONNECTION_ERROR
        assert client.project_issue_calls == []
        assert fake_store.metadata.sync_status == "error"
        assert fake_store.metadata.sync_error == CONNECTION_ERROR


class TestWorkloadScenario:
    @staticmethod
    def _workspace():
        started, by_project = [], {}
        for n in range(5):
            pid = f"P{n}"
            owner = ("user-eve", "Eve") if n == 0 else (f"user-{n}", f"Dev {n}")
            busy = 8 if n == 0 else 2
            issues = [
                make_issue_data(
                    id=f"{pid}-s{k}",
                    project_id=pid,
                    project_name=f"Project {pid}",
                    assignee_id=owner[0],
                    assignee_name=owner[1],
                )
                for k in range(busy)
            ]
            started.extend(issues)
            issues += [
                make_issue_data(
                    id=f"{pid}-u{k}",
                    project_id=pid,
                    project_name=f"Project {pid}",
                    state_type="unstarted",
                    state_name="Todo",
                    started_at=None,
                    assignee_id=None,
                    assignee_name=None,
                )
                for k in range(10 - busy)
            ]
            by_project[pid] = issues
        return started, by_project

    @pytest.mark.asyncio
    async def test_overloaded_engineer_flagged_once(self, fake_store, session_factory, settings):
        started, by_project = self._workspace()
        client = FakeLinearClient(started=started, project_issues=by_project)

        result = await _sync(client, session_factory, settings)

        assert result.success is True
        assert len(fake_store.issues) == 50
        assert sorted(fake_store.projects) == ["P0", "P1", "P2", "P3", "P4"]
        eve = fake_store.engineers["user-eve"]
        assert eve.wip_issue_count == 8
        assert eve.wip_limit_violation == 1
        assert fake_store.engineers["user-1"].wip_limit_violation == 0

        engineers = list(fake_store.engineers.values())
        flagged = get_project_engineers_in_violation(fake_store.projects["P0"], engineers)
        assert [e.assignee_name for e in flagged] == ["Eve"]
        assert get_project_engineers_in_violation(fake_store.projects["P1"], engineers) == []


class CountingClient(FakeLinearClient):
    """Records the peak number of concurrent project issue fetches."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.in_flight = 0
        self.peak = 0

    async def fetch_issues_by_projects(self, project_ids, on_progress=None):
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        try:
            await asyncio.sleep(0.01)
            return await super().fetch_issues_by_projects(project_ids, on_progress)
        finally:
            self.in_flight -= 1


class TestProjectConcurrency:
    @pytest.mark.asyncio
    async def test_at_most_five_project_fetches_in_flight(self, fake_store, session_factory, settings):
        ids = [f"P{n:02d}" for n in range(20)]
        client = CountingClient(
            project_issues={pid: [make_issue_data(id=f"{pid}-1", project_id=pid)] for pid in ids}
        )
        ctx = SyncContext(client, session_factory, settings)

        attempted = await process_projects_in_parallel(ctx, ids, ProjectBucket.ACTIVE)

        assert attempted == 20
        assert client.peak == settings.sync.project_concurrency == 5
        assert sorted(client.project_issue_calls) == ids
        assert ctx.state.completed_ids(ProjectBucket.ACTIVE) == set(ids)


class TestSchemaErrorDetection:
    def test_markers(self):
        assert is_schema_error(RuntimeError("no such column: issues.labels"))
        assert is_schema_error(RuntimeError('relation "projects" does not exist'))
        assert not is_schema_error(RuntimeError("connection refused"))
