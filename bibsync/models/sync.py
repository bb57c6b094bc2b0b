"""
Data models for sync passes and recorded conflicts.
"""

from enum import Enum
from typing import Literal, Optional
from pydantic import Field

from bibsync.models.common import CamelModel, UTCDateTime, utc_now
from bibsync.models.item import Item

ConflictResolution = Literal["keepLocal", "keepRemote", "merge"]


class SyncPhase(str, Enum):
    """States of a single sync pass."""

    IDLE = "idle"
    PULLING = "pulling"
    PUSHING = "pushing"
    DRAINING_QUEUE = "draining-queue"
    COMMITTING_CURSOR = "committing-cursor"


class SyncResult(CamelModel):
    """Aggregate counts of one sync pass."""

    pushed: int = 0
    pulled: int = 0
    conflicts: int = 0
    errors: int = 0


class SyncConflict(CamelModel):
    """An item changed both locally and remotely since the last pass."""

    id: str
    item_id: str
    local_version: int
    remote_version: int
    local_data: Item
    remote_data: Item
    detected_at: UTCDateTime = Field(default_factory=utc_now)
    resolution: Optional[ConflictResolution] = None
    resolved_at: Optional[UTCDateTime] = None

    @property
    def resolved(self) -> bool:
        return self.resolution is not None
