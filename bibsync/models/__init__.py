"""Data models for the backend."""

from bibsync.models.common import EPOCH, UTCDateTime, ensure_utc, utc_now
from bibsync.models.library import Library, LibraryType
from bibsync.models.item import (
    Attachment,
    Author,
    Item,
    ItemCreate,
    ItemType,
    ItemUpdate,
)
from bibsync.models.annotation import (
    SIDECAR_SCHEMA_VERSION,
    Annotation,
    AnnotationSet,
    AnnotationSidecar,
    AreaAnnotation,
    HighlightAnnotation,
    NoteAnnotation,
    Position,
    Rect,
    ViewerSession,
)
from bibsync.models.upload import (
    DEFAULT_MAX_RETRIES,
    DrainReport,
    UploadQueueEntry,
    UploadStatus,
    UploadType,
)
from bibsync.models.sync import ConflictResolution, SyncConflict, SyncPhase, SyncResult
from bibsync.models.remote import RemoteChanges, RemoteFile, UploadRequest

__all__ = [
    "EPOCH",
    "UTCDateTime",
    "ensure_utc",
    "utc_now",
    "Library",
    "LibraryType",
    "Attachment",
    "Author",
    "Item",
    "ItemCreate",
    "ItemType",
    "ItemUpdate",
    "SIDECAR_SCHEMA_VERSION",
    "Annotation",
    "AnnotationSet",
    "AnnotationSidecar",
    "AreaAnnotation",
    "HighlightAnnotation",
    "NoteAnnotation",
    "Position",
    "Rect",
    "ViewerSession",
    "DEFAULT_MAX_RETRIES",
    "DrainReport",
    "UploadQueueEntry",
    "UploadStatus",
    "UploadType",
    "ConflictResolution",
    "SyncConflict",
    "SyncPhase",
    "SyncResult",
    "RemoteChanges",
    "RemoteFile",
    "UploadRequest",
]
