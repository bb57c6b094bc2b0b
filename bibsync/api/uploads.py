"""
Upload queue and cache API endpoints.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from bibsync.api.errors import http_error
from bibsync.errors import BibSyncError
from bibsync.models import UploadQueueEntry, UploadStatus
from bibsync.runtime import Runtime, get_runtime
from bibsync.services.cache import CacheStats

router = APIRouter()


@router.get("/uploads", response_model=List[UploadQueueEntry])
async def list_uploads(
    status: Optional[UploadStatus] = Query(None, description="Only entries in this state"),
    runtime: Runtime = Depends(get_runtime),
):
    """List upload queue entries, oldest first."""
    return runtime.queue.list_entries(status=status)


@router.post("/uploads/{entry_id}/retry", response_model=UploadQueueEntry)
async def retry_upload(entry_id: str, runtime: Runtime = Depends(get_runtime)):
    """Reset a failed upload so the next sync pass tries it again."""
    try:
        entry = runtime.queue.retry_failed(entry_id)
    except (BibSyncError, ValueError) as e:
        raise http_error(e) from e
    runtime.scheduler.trigger()
    return entry


@router.get("/cache/stats", response_model=CacheStats)
async def cache_stats(runtime: Runtime = Depends(get_runtime)):
    """Number and total size of cached PDFs."""
    return runtime.cache.stats()
