"""
Pushes PDFs and annotation sidecars to the file store.

Used both on the immediate path (right after a local change) and by the
upload queue handlers, so the two paths can never drift apart.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from bibsync.db import codecs
from bibsync.db.repository import (
    annotation_set_from_record,
    attachment_from_record,
    library_for_attachment,
    library_from_record,
    require_annotation_set,
    require_attachment,
)
from bibsync.db.store import LocalStore
from bibsync.errors import NoRemoteRootError, NotFoundError
from bibsync.models import AnnotationSet, Attachment, UploadQueueEntry, UploadRequest, utc_now
from bibsync.remote.file_store import FileStoreClient, build_remote_file_name
from bibsync.services.annotation_merge import merge_annotations
from bibsync.services.cache import ContentCache
from bibsync.services.identity import IdentityProvider
from bibsync.services.sidecar import build_sidecar, serialize_sidecar

logger = logging.getLogger(__name__)

PDF_FOLDER = "pdfs"
ANNOTATION_FOLDER = "annotations"
SIDECAR_MIME_TYPE = "application/json"


class Uploader:
    """File store uploads for attachments and annotation sets."""

    def __init__(
        self,
        store: LocalStore,
        cache: ContentCache,
        file_store: FileStoreClient,
        identity: IdentityProvider,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.cache = cache
        self.file_store = file_store
        self.identity = identity
        self.clock = clock

    async def push_pdf(self, attachment_id: str, local_path: Optional[str] = None) -> Attachment:
        """
        Upload an attachment's PDF and record where it landed.

        Args:
            attachment_id: Attachment to upload
            local_path: Fallback source when the PDF is not in the cache

        Returns:
            The attachment with its remote fields filled in

        Raises:
            NotFoundError: Unknown attachment or no local copy of the PDF
            NoRemoteRootError: The owning library is local-only
            RemoteError: The file store call failed
        """
        with self.store.transaction() as session:
            record = require_attachment(session, attachment_id)
            attachment = attachment_from_record(record)
            library = library_from_record(library_for_attachment(session, record))

        if attachment.is_uploaded:
            logger.debug(f"Attachment {attachment_id} already uploaded as {attachment.remote_file_id}")
            return attachment
        if not library.remote_root_id:
            raise NoRemoteRootError(f"Library {library.id} has no remote root folder")

        source = self.cache.lookup(attachment.checksum)
        if source is None and local_path:
            source = Path(local_path)
        if source is None or not source.is_file():
            raise NotFoundError(f"No local copy of attachment {attachment_id} to upload")

        folder_id = await self.file_store.ensure_folder(library.remote_root_id, PDF_FOLDER)
        remote = await self.file_store.upload_resumable(
            UploadRequest(
                name=build_remote_file_name(attachment.checksum, attachment.filename),
                mime_type=attachment.mime_type,
                parents=[folder_id],
                local_path=str(source),
            )
        )

        with self.store.transaction() as session:
            record = require_attachment(session, attachment_id)
            record.remote_file_id = remote.id
            record.parent_folder_id = folder_id
            record.shared_root_id = library.remote_root_id
            record.web_link = remote.web_link
            record.remote_revision = remote.revision_tag
            record.modified_at = self.clock()
            record.version += 1
            attachment = attachment_from_record(record)

        logger.info(f"Uploaded PDF for attachment {attachment_id} as {remote.id}")
        return attachment

    async def push_annotation_set(self, set_id: str) -> AnnotationSet:
        """
        Upload an annotation set's sidecar, merging first if the remote copy moved.

        When the remote revision differs from the one last seen, the remote
        sidecar is downloaded, union-merged with the local annotations and
        uploaded as ``max(local, remote) + 1``. The set is only marked clean
        if no local save happened while the upload was in flight.

        Raises:
            NotFoundError: Unknown annotation set
            NoRemoteRootError: The owning library is local-only
            SidecarError: The remote sidecar is corrupt or from an unknown schema
            RemoteError: A file store call failed
        """
        with self.store.transaction() as session:
            set_record = require_annotation_set(session, set_id)
            annotation_set = annotation_set_from_record(set_record)
            attachment = require_attachment(session, annotation_set.attachment_id)
            library = library_from_record(library_for_attachment(session, attachment))

        if not library.remote_root_id:
            raise NoRemoteRootError(f"Library {library.id} has no remote root folder")

        started_version = annotation_set.local_version
        annotations = annotation_set.annotations
        version = annotation_set.local_version
        author = self.identity.current_user_id()

        if annotation_set.remote_file_id:
            metadata = await self.file_store.get_file_metadata(annotation_set.remote_file_id)
            if metadata.revision_tag != annotation_set.remote_revision:
                remote_sidecar = await self.file_store.download_json(annotation_set.remote_file_id)
                annotations = merge_annotations(annotations, remote_sidecar.annotations)
                version = max(version, remote_sidecar.version) + 1
                logger.info(
                    f"Merged remote annotations for {annotation_set.attachment_id} "
                    f"({len(remote_sidecar.annotations)} remote, {len(annotations)} merged)"
                )
            text = serialize_sidecar(
                build_sidecar(annotation_set.attachment_id, annotations, version, author, now=self.clock())
            )
            remote = await self.file_store.update_file(annotation_set.remote_file_id, text, SIDECAR_MIME_TYPE)
        else:
            folder_id = await self.file_store.ensure_folder(library.remote_root_id, ANNOTATION_FOLDER)
            text = serialize_sidecar(
                build_sidecar(annotation_set.attachment_id, annotations, version, author, now=self.clock())
            )
            remote = await self.file_store.create_file(
                UploadRequest(
                    name=f"{annotation_set.attachment_id}.json",
                    mime_type=SIDECAR_MIME_TYPE,
                    parents=[folder_id],
                    content=text,
                )
            )

        with self.store.transaction() as session:
            record = require_annotation_set(session, set_id)
            record.remote_file_id = remote.id
            record.remote_revision = remote.revision_tag
            record.remote_version = version

            if record.local_version == started_version:
                record.annotations = codecs.encode_annotations(annotations)
                record.local_version = version
                record.is_dirty = False
            else:
                # Saved again during the upload: keep the newer local edits dirty
                current = codecs.decode_annotations(record.annotations)
                record.annotations = codecs.encode_annotations(merge_annotations(current, annotations))
                record.local_version = max(record.local_version, version) + 1
                record.is_dirty = True
                logger.info(f"Annotation set {set_id} changed during upload; keeping it dirty")

            record.modified_at = self.clock()
            clean = not record.is_dirty
            result = annotation_set_from_record(record)

        if clean:
            self.cache.store_sidecar(annotation_set.attachment_id, text)

        logger.info(f"Uploaded annotations for {annotation_set.attachment_id} at version {version}")
        return result

    async def handle_pdf_entry(self, entry: UploadQueueEntry) -> None:
        await self.push_pdf(entry.target_id, entry.local_path)

    async def handle_annotation_entry(self, entry: UploadQueueEntry) -> None:
        await self.push_annotation_set(entry.target_id)

    def queue_handlers(self) -> dict:
        """Handlers to register with the upload queue."""
        return {
            "pdf": self.handle_pdf_entry,
            "annotation": self.handle_annotation_entry,
        }
