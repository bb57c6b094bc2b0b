"""
Data models for the durable upload queue.
"""

from typing import Literal, Optional
from pydantic import Field

from bibsync.models.common import CamelModel, UTCDateTime, utc_now

UploadType = Literal["pdf", "annotation", "metadata"]
UploadStatus = Literal["pending", "uploading", "failed", "completed"]

DEFAULT_MAX_RETRIES = 5


class UploadQueueEntry(CamelModel):
    """A durable unit of deferred remote work."""

    id: str
    type: UploadType
    target_id: str = Field(..., description="Attachment ID (pdf) or annotation set ID (annotation)")
    local_path: Optional[str] = None
    status: UploadStatus = "pending"
    retry_count: int = 0
    max_retries: int = DEFAULT_MAX_RETRIES
    error_msg: Optional[str] = None
    created_at: UTCDateTime = Field(default_factory=utc_now)
    next_retry_at: Optional[UTCDateTime] = None

    @property
    def exhausted(self) -> bool:
        """True once the entry needs an explicit retry to run again."""
        return self.status == "failed" and self.retry_count >= self.max_retries


class DrainReport(CamelModel):
    """Outcome of one pass over the pending queue entries."""

    processed: int = 0
    completed: int = 0
    retried: int = 0
    failed: int = 0

    @property
    def errors(self) -> int:
        return self.retried + self.failed
