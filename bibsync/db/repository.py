"""
Row <-> domain conversions and the queries shared by several services.

All functions take an open session; transaction boundaries belong to the
caller (``LocalStore.transaction()``).
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from bibsync.db import codecs
from bibsync.db.models import (
    AnnotationSetRecord,
    AttachmentRecord,
    ItemRecord,
    LibraryRecord,
    SyncConflictRecord,
    SyncStateRecord,
    UploadQueueRecord,
)
from bibsync.errors import NotFoundError
from bibsync.models import (
    AnnotationSet,
    Attachment,
    Item,
    Library,
    SyncConflict,
    UploadQueueEntry,
)

LAST_SYNC_KEY = "lastSyncTimestamp"

# Item columns copied verbatim between records and domain objects
_ITEM_SCALARS = (
    "library_id",
    "item_type",
    "title",
    "year",
    "journal",
    "volume",
    "issue",
    "pages",
    "doi",
    "isbn",
    "abstract",
    "created_by",
    "created_at",
    "modified_at",
    "version",
    "deleted",
)


# ----------------------------------------------------------------------------
# Libraries
# ----------------------------------------------------------------------------

def library_from_record(record: LibraryRecord) -> Library:
    return Library(
        id=record.id,
        name=record.name,
        type=record.type,
        group_id=record.group_id,
        remote_root_id=record.remote_root_id,
        created_at=record.created_at,
        modified_at=record.modified_at,
    )


def require_library(session: Session, library_id: str) -> LibraryRecord:
    record = session.get(LibraryRecord, library_id)
    if record is None:
        raise NotFoundError(f"Library not found: {library_id}")
    return record


# ----------------------------------------------------------------------------
# Items
# ----------------------------------------------------------------------------

def item_from_record(record: ItemRecord) -> Item:
    return Item(
        id=record.id,
        library_id=record.library_id,
        item_type=record.item_type,
        title=record.title,
        year=record.year,
        journal=record.journal,
        volume=record.volume,
        issue=record.issue,
        pages=record.pages,
        doi=record.doi,
        isbn=record.isbn,
        abstract=record.abstract,
        authors=codecs.decode_authors(record.authors),
        tags=codecs.decode_tags(record.tags),
        extra=codecs.decode_extra(record.extra),
        created_by=record.created_by,
        created_at=record.created_at,
        modified_at=record.modified_at,
        version=record.version,
        deleted=record.deleted,
    )


def apply_item(record: ItemRecord, item: Item) -> ItemRecord:
    """Copy every field of ``item`` onto ``record`` (remote-wins overwrite)."""
    for name in _ITEM_SCALARS:
        setattr(record, name, getattr(item, name))
    record.authors = codecs.encode_authors(item.authors)
    record.tags = codecs.encode_tags(item.tags)
    record.extra = codecs.encode_extra(item.extra)
    return record


def record_from_item(item: Item) -> ItemRecord:
    return apply_item(ItemRecord(id=item.id), item)


def require_item(session: Session, item_id: str) -> ItemRecord:
    record = session.get(ItemRecord, item_id)
    if record is None:
        raise NotFoundError(f"Item not found: {item_id}")
    return record


def items_modified_since(session: Session, since: datetime) -> list[ItemRecord]:
    stmt = select(ItemRecord).where(ItemRecord.modified_at > since).order_by(ItemRecord.modified_at)
    return list(session.scalars(stmt))


# ----------------------------------------------------------------------------
# Attachments
# ----------------------------------------------------------------------------

def attachment_from_record(record: AttachmentRecord) -> Attachment:
    return Attachment(
        id=record.id,
        item_id=record.item_id,
        filename=record.filename,
        mime_type=record.mime_type,
        size=record.size,
        checksum=record.checksum,
        remote_file_id=record.remote_file_id,
        parent_folder_id=record.parent_folder_id,
        shared_root_id=record.shared_root_id,
        web_link=record.web_link,
        remote_revision=record.remote_revision,
        created_by=record.created_by,
        created_at=record.created_at,
        modified_at=record.modified_at,
        version=record.version,
    )


def require_attachment(session: Session, attachment_id: str) -> AttachmentRecord:
    record = session.get(AttachmentRecord, attachment_id)
    if record is None:
        raise NotFoundError(f"Attachment not found: {attachment_id}")
    return record


def find_attachment_by_checksum(
    session: Session, library_id: str, checksum: str
) -> Optional[AttachmentRecord]:
    """Attachment with ``checksum`` on a live item of ``library_id``, if any."""
    stmt = (
        select(AttachmentRecord)
        .join(ItemRecord, AttachmentRecord.item_id == ItemRecord.id)
        .where(
            AttachmentRecord.checksum == checksum,
            ItemRecord.library_id == library_id,
            ItemRecord.deleted.is_(False),
        )
        .limit(1)
    )
    return session.scalars(stmt).first()


def library_for_attachment(session: Session, attachment: AttachmentRecord) -> LibraryRecord:
    item = require_item(session, attachment.item_id)
    return require_library(session, item.library_id)


# ----------------------------------------------------------------------------
# Annotation sets
# ----------------------------------------------------------------------------

def annotation_set_from_record(record: AnnotationSetRecord) -> AnnotationSet:
    return AnnotationSet(
        id=record.id,
        attachment_id=record.attachment_id,
        annotations=codecs.decode_annotations(record.annotations),
        remote_file_id=record.remote_file_id,
        remote_revision=record.remote_revision,
        local_version=record.local_version,
        remote_version=record.remote_version,
        is_dirty=record.is_dirty,
        created_by=record.created_by,
        created_at=record.created_at,
        modified_at=record.modified_at,
    )


def annotation_set_for_attachment(session: Session, attachment_id: str) -> AnnotationSetRecord:
    stmt = select(AnnotationSetRecord).where(AnnotationSetRecord.attachment_id == attachment_id)
    record = session.scalars(stmt).first()
    if record is None:
        raise NotFoundError(f"Annotation set not found for attachment: {attachment_id}")
    return record


def require_annotation_set(session: Session, set_id: str) -> AnnotationSetRecord:
    record = session.get(AnnotationSetRecord, set_id)
    if record is None:
        raise NotFoundError(f"Annotation set not found: {set_id}")
    return record


# ----------------------------------------------------------------------------
# Upload queue
# ----------------------------------------------------------------------------

def upload_entry_from_record(record: UploadQueueRecord) -> UploadQueueEntry:
    return UploadQueueEntry(
        id=record.id,
        type=record.type,
        target_id=record.target_id,
        local_path=record.local_path,
        status=record.status,
        retry_count=record.retry_count,
        max_retries=record.max_retries,
        error_msg=record.error_msg,
        created_at=record.created_at,
        next_retry_at=record.next_retry_at,
    )


# ----------------------------------------------------------------------------
# Sync state and conflicts
# ----------------------------------------------------------------------------

def get_sync_value(session: Session, key: str) -> Optional[str]:
    record = session.get(SyncStateRecord, key)
    return record.value if record else None


def set_sync_value(session: Session, key: str, value: str, now: datetime) -> None:
    record = session.get(SyncStateRecord, key)
    if record is None:
        session.add(SyncStateRecord(key=key, value=value, updated_at=now))
    else:
        record.value = value
        record.updated_at = now


def conflict_from_record(record: SyncConflictRecord) -> SyncConflict:
    return SyncConflict(
        id=record.id,
        item_id=record.item_id,
        local_version=record.local_version,
        remote_version=record.remote_version,
        local_data=codecs.decode_item(record.local_data),
        remote_data=codecs.decode_item(record.remote_data),
        detected_at=record.detected_at,
        resolution=record.resolution,
        resolved_at=record.resolved_at,
    )
