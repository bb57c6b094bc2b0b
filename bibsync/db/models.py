"""
Database models for the local store using SQLAlchemy ORM.

Structured fields (authors, tags, extra, annotations, conflict snapshots)
are TEXT columns; see ``bibsync.db.codecs`` for their only encode/decode pair.
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, declarative_base, mapped_column
from sqlalchemy.types import TypeDecorator

Base = declarative_base()


class UTCTimestamp(TypeDecorator):
    """Stores aware datetimes as naive UTC and returns them as aware UTC."""

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return value.replace(tzinfo=timezone.utc)


class LibraryRecord(Base):
    """Library row."""

    __tablename__ = "libraries"
    __table_args__ = (CheckConstraint("type IN ('personal', 'group')", name="ck_library_type"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    type: Mapped[str] = mapped_column(String(16), nullable=False, default="personal")
    group_id: Mapped[Optional[str]] = mapped_column(String(255), index=True)
    remote_root_id: Mapped[Optional[str]] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(UTCTimestamp, nullable=False)
    modified_at: Mapped[datetime] = mapped_column(UTCTimestamp, nullable=False)

    def __repr__(self):
        return f"<Library(name='{self.name}', type='{self.type}')>"


class ItemRecord(Base):
    """Item row."""

    __tablename__ = "items"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    library_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("libraries.id"), nullable=False, index=True
    )
    item_type: Mapped[str] = mapped_column(String(32), nullable=False, default="journalArticle")
    title: Mapped[Optional[str]] = mapped_column(Text)
    year: Mapped[Optional[str]] = mapped_column(String(16))
    journal: Mapped[Optional[str]] = mapped_column(String(500))
    volume: Mapped[Optional[str]] = mapped_column(String(32))
    issue: Mapped[Optional[str]] = mapped_column(String(32))
    pages: Mapped[Optional[str]] = mapped_column(String(64))
    doi: Mapped[Optional[str]] = mapped_column(String(255))
    isbn: Mapped[Optional[str]] = mapped_column(String(32))
    abstract: Mapped[Optional[str]] = mapped_column(Text)
    authors: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    tags: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    extra: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    created_by: Mapped[Optional[str]] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(UTCTimestamp, nullable=False)
    modified_at: Mapped[datetime] = mapped_column(UTCTimestamp, nullable=False, index=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    def __repr__(self):
        title = (self.title or "")[:50]
        return f"<Item(title='{title}', version={self.version})>"


class AttachmentRecord(Base):
    """Attachment row."""

    __tablename__ = "attachments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    item_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("items.id"), nullable=False, index=True
    )
    filename: Mapped[str] = mapped_column(String(500), nullable=False)
    mime_type: Mapped[str] = mapped_column(String(100), nullable=False, default="application/pdf")
    size: Mapped[Optional[int]] = mapped_column(Integer)
    checksum: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    remote_file_id: Mapped[Optional[str]] = mapped_column(String(255))
    parent_folder_id: Mapped[Optional[str]] = mapped_column(String(255))
    shared_root_id: Mapped[Optional[str]] = mapped_column(String(255))
    web_link: Mapped[Optional[str]] = mapped_column(String(1000))
    remote_revision: Mapped[Optional[str]] = mapped_column(String(255))
    created_by: Mapped[Optional[str]] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(UTCTimestamp, nullable=False)
    modified_at: Mapped[datetime] = mapped_column(UTCTimestamp, nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)


class AnnotationSetRecord(Base):
    """Annotation set row; one per attachment."""

    __tablename__ = "annotation_sets"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    attachment_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("attachments.id"), nullable=False, unique=True
    )
    annotations: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    remote_file_id: Mapped[Optional[str]] = mapped_column(String(255))
    remote_revision: Mapped[Optional[str]] = mapped_column(String(255))
    local_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    remote_version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_dirty: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_by: Mapped[Optional[str]] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(UTCTimestamp, nullable=False)
    modified_at: Mapped[datetime] = mapped_column(UTCTimestamp, nullable=False)


class UploadQueueRecord(Base):
    """Upload queue row."""

    __tablename__ = "upload_queue"
    __table_args__ = (
        CheckConstraint("type IN ('pdf', 'annotation', 'metadata')", name="ck_upload_type"),
        CheckConstraint(
            "status IN ('pending', 'uploading', 'failed', 'completed')",
            name="ck_upload_status",
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    type: Mapped[str] = mapped_column(String(16), nullable=False)
    target_id: Mapped[str] = mapped_column(String(36), nullable=False)
    local_path: Mapped[Optional[str]] = mapped_column(String(1000))
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending", index=True)
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_retries: Mapped[int] = mapped_column(Integer, nullable=False, default=5)
    error_msg: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(UTCTimestamp, nullable=False)
    next_retry_at: Mapped[Optional[datetime]] = mapped_column(UTCTimestamp)


class SyncStateRecord(Base):
    """Flat key/value sync cursors."""

    __tablename__ = "sync_state"

    key: Mapped[str] = mapped_column(String(64), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCTimestamp, nullable=False)


class SyncConflictRecord(Base):
    """Item conflict detected during a pull, kept until the caller resolves it."""

    __tablename__ = "sync_conflicts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    item_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    local_version: Mapped[int] = mapped_column(Integer, nullable=False)
    remote_version: Mapped[int] = mapped_column(Integer, nullable=False)
    local_data: Mapped[str] = mapped_column(Text, nullable=False)
    remote_data: Mapped[str] = mapped_column(Text, nullable=False)
    detected_at: Mapped[datetime] = mapped_column(UTCTimestamp, nullable=False)
    resolution: Mapped[Optional[str]] = mapped_column(String(16))
    resolved_at: Mapped[Optional[datetime]] = mapped_column(UTCTimestamp)
