"""FastAPI REST API for Pulse."""

import logging
from datetime import date, datetime
from typing import Optional

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from src.storage.db import get_session
from src.sync.manager import SyncBusyError, SyncTooSoonError, get_sync_manager
from src.sync.phases import SyncPhase
from src.sync.state import SyncOptions

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Pulse API",
    description="Sync control and engineering health metrics from Linear",
    version="0.1.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- Pydantic response models ---

class EngineerResponse(BaseModel):
    assignee_id: str
    assignee_name: str
    avatar_url: Optional[str] = None
    team_names: list = []
    wip_issue_count: int = 0
    wip_total_points: float = 0
    wip_limit_violation: int = 0
    oldest_wip_age_days: Optional[float] = None
    last_activity_at: Optional[datetime] = None
    active_project_count: int = 0
    multi_project_violation: int = 0
    missing_estimate_count: int = 0
    missing_priority_count: int = 0
    no_recent_comment_count: int = 0
    wip_age_violation_count: int = 0
    active_issues: list = []

    model_config = {"from_attributes": True}


class ProjectResponse(BaseModel):
    project_id: str
    project_name: str
    project_state_category: Optional[str] = None
    project_status: Optional[str] = None
    project_health: Optional[str] = None
    project_lead_name: Optional[str] = None
    total_issues: int = 0
    completed_issues: int = 0
    in_progress_issues: int = 0
    engineer_count: int = 0
    total_points: float = 0
    velocity: Optional[float] = None
    linear_progress: Optional[float] = None
    has_status_mismatch: bool = False
    is_stale_update: bool = False
    missing_lead: bool = False
    has_violations: bool = False
    missing_health: bool = False
    has_date_discrepancy: bool = False
    start_date: Optional[datetime] = None
    estimated_end_date: Optional[datetime] = None
    target_date: Optional[date] = None
    teams: list = []
    engineers: list = []

    model_config = {"from_attributes": True}


class SnapshotResponse(BaseModel):
    level: str
    level_id: Optional[str] = None
    captured_at: datetime
    schema_version: int
    metrics: dict

    model_config = {"from_attributes": True}


class SyncRequest(BaseModel):
    phases: list[SyncPhase] = []
    deep_history_sync: bool = False
    incremental_sync: bool = False


class SyncStartedResponse(BaseModel):
    status: str = "started"
    project_id: Optional[str] = None


class SyncStatusResponse(BaseModel):
    status: str
    is_running: bool
    last_sync_time: Optional[datetime] = None
    error: Optional[str] = None
    progress_percent: int = 0
    current_phase: Optional[str] = None
    phases: list[dict] = []
    stats: dict = {}
    status_message: Optional[str] = None
    syncing_project_id: Optional[str] = None
    api_query_count: int = 0
    has_partial_sync: bool = False


class CaptureResponse(BaseModel):
    snapshots_created: int
    org: bool
    domains: list[str]
    teams: list[str]


def _start_or_reject(start):
    try:
        start()
    except SyncBusyError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except SyncTooSoonError as e:
        raise HTTPException(
            status_code=429,
            detail=str(e),
            headers={"Retry-After": str(int(e.retry_after) + 1)},
        )


# --- Endpoints ---

@app.get("/health")
async def health():
    return {"status": "ok"}


@app.post("/api/sync", response_model=SyncStartedResponse, status_code=202)
async def trigger_sync(request: Optional[SyncRequest] = None):
    """Start a phased sync in the background."""
    request = request or SyncRequest()
    options = SyncOptions(
        phases=request.phases,
        deep_history_sync=request.deep_history_sync,
        incremental_sync=request.incremental_sync,
    )
    manager = get_sync_manager()
    _start_or_reject(lambda: manager.start_sync(options))
    return SyncStartedResponse()


@app.get("/api/sync/status", response_model=SyncStatusResponse)
async def sync_status():
    return SyncStatusResponse(**await get_sync_manager().status())


@app.post("/api/sync/projects/{project_id}", response_model=SyncStartedResponse, status_code=202)
async def trigger_project_sync(project_id: str):
    """Refetch one project in the background."""
    manager = get_sync_manager()
    _start_or_reject(lambda: manager.start_project_sync(project_id))
    return SyncStartedResponse(project_id=project_id)


@app.get("/api/metrics/latest", response_model=list[SnapshotResponse])
async def latest_metrics(
    level: Optional[str] = Query(None, description="org, domain or team; all levels when omitted"),
    level_id: Optional[str] = Query(None),
):
    """Newest snapshot for one level, or for every level and id."""
    from src.storage import snapshots

    async with get_session() as session:
        if level is None:
            return await snapshots.get_all_latest(session)
        try:
            snapshot = await snapshots.get_latest(session, level, level_id)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        if not snapshot:
            raise HTTPException(status_code=404, detail="No snapshot captured yet")
        return [snapshot]


@app.get("/api/metrics/trend", response_model=list[SnapshotResponse])
async def metrics_trend(
    level: str = Query("org"),
    level_id: Optional[str] = Query(None),
    limit: Optional[int] = Query(None, ge=1, le=500),
    since: Optional[datetime] = Query(None),
    until: Optional[datetime] = Query(None),
):
    """Snapshots oldest-first, by count or date range."""
    from src.storage import snapshots

    if limit is None and since is None and until is None:
        from src.config import get_settings

        limit = get_settings().metrics.trend_limit

    async with get_session() as session:
        try:
            return await snapshots.get_trend(session, level, level_id, limit, since, until)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))


@app.post("/api/metrics/capture", response_model=CaptureResponse)
async def capture_metrics():
    """Capture snapshots now, outside the post-sync hook."""
    from src.metrics.snapshot import capture_snapshots

    async with get_session() as session:
        result = await capture_snapshots(session)
    return CaptureResponse(
        snapshots_created=result.snapshots_created,
        org=result.org,
        domains=result.domains,
        teams=result.teams,
    )


@app.get("/api/engineers", response_model=list[EngineerResponse])
async def list_engineers(violations_only: bool = Query(False)):
    from src.storage import queries

    async with get_session() as session:
        engineers = await queries.get_all_engineers(session)
    if violations_only:
        engineers = [e for e in engineers if e.wip_limit_violation or e.multi_project_violation]
    return engineers


@app.get("/api/projects", response_model=list[ProjectResponse])
async def list_projects(
    state: Optional[str] = Query(None, description="Filter by project state category"),
    team: Optional[str] = Query(None, description="Filter by team key"),
):
    from src.storage import queries

    async with get_session() as session:
        projects = await queries.get_all_projects(session)
    if state:
        projects = [p for p in projects if p.project_state_category == state]
    if team:
        projects = [p for p in projects if team.upper() in [t.upper() for t in (p.teams or [])]]
    return projects
