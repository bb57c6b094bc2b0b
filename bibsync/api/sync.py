"""
Sync API endpoints.
"""

import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from bibsync.api.errors import http_error
from bibsync.errors import BibSyncError
from bibsync.models import ConflictResolution, SyncConflict, SyncResult
from bibsync.runtime import Runtime, get_runtime

router = APIRouter()
logger = logging.getLogger(__name__)


class SyncStatusResponse(BaseModel):
    """Current sync state."""
    phase: str
    busy: bool
    scheduler_running: bool
    last_sync: datetime
    last_result: Optional[SyncResult] = None
    pending_uploads: int
    failed_uploads: int
    open_conflicts: int


class ResolveConflictRequest(BaseModel):
    """Caller's choice for an item conflict."""
    resolution: ConflictResolution


@router.post("/sync", response_model=SyncResult)
async def run_sync(runtime: Runtime = Depends(get_runtime)):
    """
    Run a sync pass now.

    Waits for a scheduled pass that is already running, then runs a new one.
    """
    return await runtime.scheduler.run_pass()


@router.get("/sync/status", response_model=SyncStatusResponse)
async def get_sync_status(runtime: Runtime = Depends(get_runtime)):
    engine = runtime.sync_engine
    return SyncStatusResponse(
        phase=engine.phase.value,
        busy=runtime.scheduler.busy,
        scheduler_running=runtime.scheduler.running,
        last_sync=engine.get_last_sync(),
        last_result=engine.last_result,
        pending_uploads=len(runtime.queue.list_entries(status="pending")),
        failed_uploads=len(runtime.queue.list_entries(status="failed")),
        open_conflicts=len(engine.list_conflicts()),
    )


@router.get("/sync/conflicts", response_model=List[SyncConflict])
async def list_conflicts(
    include_resolved: bool = Query(False, description="Also return resolved conflicts"),
    runtime: Runtime = Depends(get_runtime),
):
    return runtime.sync_engine.list_conflicts(include_resolved=include_resolved)


@router.post("/sync/conflicts/{conflict_id}/resolve", response_model=SyncConflict)
async def resolve_conflict(
    conflict_id: str,
    request: ResolveConflictRequest,
    runtime: Runtime = Depends(get_runtime),
):
    """
    Resolve an item conflict.

    Raises:
        HTTPException: 404 for an unknown conflict, 422 for an unsupported or repeated resolution.
    """
    try:
        return runtime.sync_engine.resolve_conflict(conflict_id, request.resolution)
    except (BibSyncError, ValueError) as e:
        raise http_error(e) from e
