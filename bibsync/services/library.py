"""
Library service: the use cases a UI drives.

Every use case mutates the local store first, in one transaction, and only
then talks to the file store. Remote failures never undo local work; they
become upload queue entries instead.
"""

import logging
import uuid
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional, Sequence, Union

from sqlalchemy import select

from bibsync.db import codecs
from bibsync.db.models import AnnotationSetRecord, AttachmentRecord, ItemRecord, LibraryRecord
from bibsync.db.repository import (
    annotation_set_for_attachment,
    annotation_set_from_record,
    apply_item,
    attachment_from_record,
    find_attachment_by_checksum,
    item_from_record,
    library_for_attachment,
    library_from_record,
    record_from_item,
    require_annotation_set,
    require_attachment,
    require_item,
    require_library,
)
from bibsync.db.store import LocalStore
from bibsync.errors import BibSyncError, DuplicateError, IntegrityError, NotFoundError, SidecarError
from bibsync.models import (
    AnnotationSet,
    Attachment,
    Item,
    ItemCreate,
    ItemUpdate,
    Library,
    LibraryType,
    ViewerSession,
    utc_now,
)
from bibsync.remote.file_store import FileStoreClient
from bibsync.services.annotation_merge import merge_annotations
from bibsync.services.cache import ContentCache, compute_sha256
from bibsync.services.identity import IdentityProvider
from bibsync.services.pdf_extractor import title_for_pdf
from bibsync.services.sidecar import build_sidecar, serialize_sidecar
from bibsync.services.upload_queue import UploadQueue
from bibsync.services.uploader import Uploader

logger = logging.getLogger(__name__)

# List/dict fields that cannot be cleared to None by a partial update
_COLLECTION_FIELDS = {"authors", "tags", "extra", "item_type"}


class LibraryService:
    """Libraries, items, attachments and annotations of the local user."""

    def __init__(
        self,
        store: LocalStore,
        cache: ContentCache,
        file_store: FileStoreClient,
        uploader: Uploader,
        queue: UploadQueue,
        identity: IdentityProvider,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.cache = cache
        self.file_store = file_store
        self.uploader = uploader
        self.queue = queue
        self.identity = identity
        self.clock = clock

    # ------------------------------------------------------------------
    # Libraries
    # ------------------------------------------------------------------

    def create_library(
        self,
        name: str,
        type: LibraryType = "personal",
        group_id: Optional[str] = None,
        remote_root_id: Optional[str] = None,
    ) -> Library:
        now = self.clock()
        record = LibraryRecord(
            id=str(uuid.uuid4()),
            name=name,
            type=type,
            group_id=group_id,
            remote_root_id=remote_root_id,
            created_at=now,
            modified_at=now,
        )
        with self.store.transaction() as session:
            session.add(record)
            library = library_from_record(record)

        logger.info(f"Created {type} library '{name}' ({library.id})")
        return library

    def get_library(self, library_id: str) -> Library:
        with self.store.transaction() as session:
            return library_from_record(require_library(session, library_id))

    def list_libraries(self) -> list[Library]:
        with self.store.transaction() as session:
            records = session.scalars(select(LibraryRecord).order_by(LibraryRecord.name))
            return [library_from_record(r) for r in records]

    def get_library_for_group(self, group_id: str) -> Library:
        with self.store.transaction() as session:
            record = session.scalars(
                select(LibraryRecord).where(LibraryRecord.group_id == group_id)
            ).first()
            if record is None:
                raise NotFoundError(f"Group library not found for group: {group_id}")
            return library_from_record(record)

    # ------------------------------------------------------------------
    # Items
    # ------------------------------------------------------------------

    def create_item(self, library_id: str, data: ItemCreate) -> Item:
        """Create an item at version 1."""
        now = self.clock()
        with self.store.transaction() as session:
            require_library(session, library_id)
            item = Item(
                id=str(uuid.uuid4()),
                library_id=library_id,
                created_by=self.identity.current_user_id(),
                created_at=now,
                modified_at=now,
                version=1,
                **{name: getattr(data, name) for name in ItemCreate.model_fields},
            )
            session.add(record_from_item(item))

        logger.info(f"Created item {item.id} in library {library_id}")
        return item

    def get_item(self, item_id: str) -> Item:
        with self.store.transaction() as session:
            return item_from_record(require_item(session, item_id))

    def list_items(self, library_id: str) -> list[Item]:
        """Live items of a library ordered by title."""
        stmt = (
            select(ItemRecord)
            .where(ItemRecord.library_id == library_id, ItemRecord.deleted.is_(False))
            .order_by(ItemRecord.title)
        )
        with self.store.transaction() as session:
            return [item_from_record(r) for r in session.scalars(stmt)]

    def update_item(self, item_id: str, data: ItemUpdate) -> Item:
        """
        Apply the explicitly set fields of ``data``.

        One call is one mutation: the version goes up by exactly one no
        matter how many fields change.
        """
        changes = {
            name: getattr(data, name)
            for name in data.model_fields_set
            if not (name in _COLLECTION_FIELDS and getattr(data, name) is None)
        }
        with self.store.transaction() as session:
            record = require_item(session, item_id)
            current = item_from_record(record)
            updated = Item.model_validate(
                {
                    **dict(current),
                    **changes,
                    "version": current.version + 1,
                    "modified_at": self.clock(),
                }
            )
            apply_item(record, updated)

        logger.debug(f"Updated item {item_id} ({', '.join(sorted(changes)) or 'no fields'}) -> v{updated.version}")
        return updated

    def delete_item(self, item_id: str) -> Item:
        """Soft-delete an item; counts as a mutation."""
        with self.store.transaction() as session:
            record = require_item(session, item_id)
            record.deleted = True
            record.version += 1
            record.modified_at = self.clock()
            item = item_from_record(record)

        logger.info(f"Deleted item {item_id}")
        return item

    # ------------------------------------------------------------------
    # Attachments
    # ------------------------------------------------------------------

    def get_attachment(self, attachment_id: str) -> Attachment:
        with self.store.transaction() as session:
            return attachment_from_record(require_attachment(session, attachment_id))

    def list_attachments(self, item_id: str) -> list[Attachment]:
        stmt = (
            select(AttachmentRecord)
            .where(AttachmentRecord.item_id == item_id)
            .order_by(AttachmentRecord.created_at)
        )
        with self.store.transaction() as session:
            require_item(session, item_id)
            return [attachment_from_record(r) for r in session.scalars(stmt)]

    # ------------------------------------------------------------------
    # Add PDF
    # ------------------------------------------------------------------

    async def add_pdf(self, library_id: str, pdf_path: Union[str, Path]) -> Item:
        """
        Add a PDF to a library as a new item with one attachment.

        Args:
            library_id: Target library
            pdf_path: PDF on the local file system

        Returns:
            The created item

        Raises:
            NotFoundError: The file or the library does not exist
            DuplicateError: The same content is already attached to a live item in this library
        """
        source = Path(pdf_path)
        if not source.is_file():
            raise NotFoundError(f"File not found: {source}")

        checksum = compute_sha256(source)
        size = source.stat().st_size
        title = title_for_pdf(source)
        user_id = self.identity.current_user_id()
        now = self.clock()
        item_id = str(uuid.uuid4())
        attachment_id = str(uuid.uuid4())

        with self.store.transaction() as session:
            library = library_from_record(require_library(session, library_id))

            existing = find_attachment_by_checksum(session, library_id, checksum)
            if existing is not None:
                raise DuplicateError(
                    f"PDF already exists in library '{library.name}': {existing.filename}",
                    existing_attachment_id=existing.id,
                )

            item = Item(
                id=item_id,
                library_id=library_id,
                title=title,
                created_by=user_id,
                created_at=now,
                modified_at=now,
            )
            session.add(record_from_item(item))
            session.flush()
            session.add(
                AttachmentRecord(
                    id=attachment_id,
                    item_id=item_id,
                    filename=source.name,
                    mime_type="application/pdf",
                    size=size,
                    checksum=checksum,
                    created_by=user_id,
                    created_at=now,
                    modified_at=now,
                    version=1,
                )
            )
            session.flush()
            session.add(
                AnnotationSetRecord(
                    id=str(uuid.uuid4()),
                    attachment_id=attachment_id,
                    annotations=codecs.encode_annotations([]),
                    local_version=1,
                    remote_version=0,
                    is_dirty=False,
                    created_by=user_id,
                    created_at=now,
                    modified_at=now,
                )
            )

        self.cache.store(checksum, source)
        logger.info(f"Added {source.name} to library '{library.name}' as item {item_id}")

        if library.remote_root_id:
            try:
                await self.uploader.push_pdf(attachment_id, str(source))
            except Exception as e:
                logger.warning(f"Upload of {source.name} failed, queued for retry: {e}")
                self.queue.enqueue("pdf", attachment_id, str(source))

        return item

    async def add_pdf_to_group(self, group_id: str, pdf_path: Union[str, Path]) -> Item:
        """Add a PDF to the library bound to ``group_id``."""
        library = self.get_library_for_group(group_id)
        return await self.add_pdf(library.id, pdf_path)

    # ------------------------------------------------------------------
    # Annotations
    # ------------------------------------------------------------------

    async def open_pdf_for_annotate(self, attachment_id: str) -> ViewerSession:
        """
        Make the PDF available locally and load its freshest annotations.

        The cached copy is used when it verifies; otherwise the PDF is
        downloaded and verified before it enters the cache. Newer remote
        annotations are merged in; when the file store cannot be reached the
        local annotations are used as they are.

        Raises:
            NotFoundError: Unknown attachment, or the PDF is neither cached nor uploaded
            IntegrityError: The downloaded PDF does not match its checksum
            SidecarError: The remote annotation sidecar is corrupt or of an unsupported schema
        """
        with self.store.transaction() as session:
            attachment = attachment_from_record(require_attachment(session, attachment_id))
            annotation_set = annotation_set_from_record(annotation_set_for_attachment(session, attachment_id))

        pdf_path = self.cache.lookup(attachment.checksum)
        if pdf_path is None or not self.cache.verify(pdf_path, attachment.checksum):
            pdf_path = await self._download_pdf(attachment)

        if annotation_set.remote_file_id:
            try:
                annotation_set = await self._refresh_annotations(annotation_set)
            except SidecarError:
                raise
            except BibSyncError as e:
                logger.warning(f"Using local annotations for {attachment_id}; remote check failed: {e}")

        return ViewerSession(
            pdf_path=pdf_path,
            annotations=annotation_set.annotations,
            annotation_set_id=annotation_set.id,
            attachment_id=attachment_id,
        )

    async def _download_pdf(self, attachment: Attachment) -> Path:
        if not attachment.remote_file_id:
            raise NotFoundError(f"PDF for attachment {attachment.id} is neither cached nor uploaded")

        temp_path = self.cache.temp_path_for(attachment.checksum)
        try:
            await self.file_store.download_file(attachment.remote_file_id, temp_path)
            actual = compute_sha256(temp_path)
            if actual != attachment.checksum:
                raise IntegrityError(
                    f"Downloaded file checksum mismatch for attachment {attachment.id}",
                    expected=attachment.checksum,
                    actual=actual,
                )
            path = self.cache.promote(temp_path, attachment.checksum)
        finally:
            if temp_path.exists():
                temp_path.unlink()

        logger.info(f"Downloaded and cached PDF for attachment {attachment.id}")
        return path

    async def _refresh_annotations(self, annotation_set: AnnotationSet) -> AnnotationSet:
        """Merge the remote sidecar in if its revision moved since we last saw it."""
        metadata = await self.file_store.get_file_metadata(annotation_set.remote_file_id)
        if metadata.revision_tag == annotation_set.remote_revision:
            return annotation_set

        remote = await self.file_store.download_json(annotation_set.remote_file_id)

        with self.store.transaction() as session:
            record = require_annotation_set(session, annotation_set.id)
            local = codecs.decode_annotations(record.annotations)
            record.annotations = codecs.encode_annotations(merge_annotations(local, remote.annotations))
            record.remote_revision = metadata.revision_tag
            record.remote_version = remote.version
            if record.is_dirty:
                record.local_version = max(record.local_version, remote.version) + 1
            else:
                record.local_version = max(remote.version, 1)
            record.modified_at = self.clock()
            refreshed = annotation_set_from_record(record)

        logger.info(
            f"Merged remote annotations for {annotation_set.attachment_id} "
            f"(remote version {remote.version})"
        )
        return refreshed

    def get_annotations(self, attachment_id: str) -> AnnotationSet:
        with self.store.transaction() as session:
            return annotation_set_from_record(annotation_set_for_attachment(session, attachment_id))

    async def save_annotations(self, attachment_id: str, annotations: Sequence) -> AnnotationSet:
        """
        Save annotations locally, then try to upload them.

        The local save always sticks. A failed upload is queued, except for a
        corrupt remote sidecar, which is raised.

        Raises:
            NotFoundError: Unknown attachment or annotation set
            SidecarError: The remote sidecar cannot be read
        """
        with self.store.transaction() as session:
            record = annotation_set_for_attachment(session, attachment_id)
            record.annotations = codecs.encode_annotations(list(annotations))
            record.local_version += 1
            record.is_dirty = True
            record.modified_at = self.clock()
            annotation_set = annotation_set_from_record(record)
            library = library_from_record(
                library_for_attachment(session, require_attachment(session, attachment_id))
            )

        sidecar = build_sidecar(
            attachment_id,
            annotation_set.annotations,
            annotation_set.local_version,
            self.identity.current_user_id(),
            now=self.clock(),
        )
        self.cache.store_sidecar(attachment_id, serialize_sidecar(sidecar))

        if not library.remote_root_id:
            return annotation_set

        try:
            return await self.uploader.push_annotation_set(annotation_set.id)
        except SidecarError:
            raise
        except Exception as e:
            logger.warning(f"Annotation upload for {attachment_id} failed, queued for retry: {e}")
            self.queue.enqueue("annotation", annotation_set.id)
            return annotation_set
