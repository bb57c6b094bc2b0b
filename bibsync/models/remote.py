"""
Data models exchanged with the file store and the remote authority.
"""

from typing import Optional
from pydantic import Field

from bibsync.models.common import CamelModel
from bibsync.models.item import Item


class RemoteFile(CamelModel):
    """Metadata of one file version on the file store."""

    id: str
    name: str = ""
    mime_type: str = "application/octet-stream"
    size: Optional[int] = None
    revision_tag: Optional[str] = Field(None, description="Opaque marker of this content version")
    web_link: Optional[str] = None
    parents: list[str] = Field(default_factory=list)


class UploadRequest(CamelModel):
    """A file to create on the file store, from a local path or inline content."""

    name: str
    mime_type: str
    parents: list[str] = Field(default_factory=list)
    local_path: Optional[str] = None
    content: Optional[str] = None


class RemoteChanges(CamelModel):
    """Items changed on the remote authority since a timestamp."""

    items: list[Item] = Field(default_factory=list)
