"""
Data models for libraries.
"""

from typing import Literal, Optional
from pydantic import Field

from bibsync.models.common import CamelModel, UTCDateTime, utc_now

LibraryType = Literal["personal", "group"]


class Library(CamelModel):
    """A personal or group library."""

    id: str = Field(..., description="Library ID")
    name: str = Field(..., description="Human-readable library name")
    type: LibraryType = Field(default="personal", description="Library type")
    group_id: Optional[str] = Field(None, description="Group ID for group libraries")
    remote_root_id: Optional[str] = Field(
        None,
        description="Root folder of the library on the file store; None keeps the library local-only"
    )
    created_at: UTCDateTime = Field(default_factory=utc_now)
    modified_at: UTCDateTime = Field(default_factory=utc_now)
