"""
Data models for citation items and their attachments.
"""

from typing import Any, Literal, Optional
from pydantic import Field

from bibsync.models.common import CamelModel, UTCDateTime, utc_now

ItemType = Literal[
    "journalArticle",
    "book",
    "bookSection",
    "conferencePaper",
    "thesis",
    "report",
    "webpage",
    "preprint",
    "patent",
    "other",
]


class Author(CamelModel):
    """One entry of an item's ordered author list."""

    given: str = ""
    family: str = ""


class ItemFields(CamelModel):
    """Editable citation fields shared by items and item payloads."""

    title: Optional[str] = None
    year: Optional[str] = None
    journal: Optional[str] = Field(None, description="Venue: journal, proceedings or publisher")
    volume: Optional[str] = None
    issue: Optional[str] = None
    pages: Optional[str] = None
    doi: Optional[str] = None
    isbn: Optional[str] = None
    abstract: Optional[str] = None


class Item(ItemFields):
    """Citation metadata record with an optimistic-concurrency version."""

    id: str = Field(..., description="Item ID")
    library_id: str = Field(..., description="Owning library ID")
    item_type: ItemType = "journalArticle"
    authors: list[Author] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    extra: dict[str, Any] = Field(default_factory=dict)
    created_by: Optional[str] = None
    created_at: UTCDateTime = Field(default_factory=utc_now)
    modified_at: UTCDateTime = Field(default_factory=utc_now)
    version: int = Field(default=1, ge=1, description="Incremented once per committed mutation")
    deleted: bool = Field(default=False, description="Soft-delete flag")


class ItemCreate(ItemFields):
    """Payload for creating an item."""

    item_type: ItemType = "journalArticle"
    authors: list[Author] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    extra: dict[str, Any] = Field(default_factory=dict)


class ItemUpdate(ItemFields):
    """Partial update; only fields that were explicitly set are applied."""

    item_type: Optional[ItemType] = None
    authors: Optional[list[Author]] = None
    tags: Optional[list[str]] = None
    extra: Optional[dict[str, Any]] = None


class Attachment(CamelModel):
    """A PDF blob bound to an item, addressed by its SHA-256 checksum."""

    id: str
    item_id: str
    filename: str
    mime_type: str = "application/pdf"
    size: Optional[int] = None
    checksum: str
    remote_file_id: Optional[str] = None
    parent_folder_id: Optional[str] = None
    shared_root_id: Optional[str] = None
    web_link: Optional[str] = None
    remote_revision: Optional[str] = None
    created_by: Optional[str] = None
    created_at: UTCDateTime = Field(default_factory=utc_now)
    modified_at: UTCDateTime = Field(default_factory=utc_now)
    version: int = 1

    @property
    def is_uploaded(self) -> bool:
        return self.remote_file_id is not None
