"""
Durable upload queue.

Remote work that could not be done right away (no connectivity, a 5xx, a
crash mid-upload) is recorded as a queue entry in the local store and
replayed by ``drain()``. Entries are isolated from one another: one failing
entry never stops the rest of the batch.
"""

import asyncio
import logging
import uuid
from datetime import datetime
from typing import Awaitable, Callable, Optional

from sqlalchemy import select

from bibsync.db.models import UploadQueueRecord
from bibsync.db.repository import upload_entry_from_record
from bibsync.db.store import LocalStore
from bibsync.errors import NotFoundError, SidecarError
from bibsync.models import (
    DEFAULT_MAX_RETRIES,
    DrainReport,
    UploadQueueEntry,
    UploadStatus,
    UploadType,
    utc_now,
)
from bibsync.services.retry import queue_backoff

logger = logging.getLogger(__name__)

UploadHandler = Callable[[UploadQueueEntry], Awaitable[None]]

# Failures that another attempt cannot fix
NON_RETRYABLE = (SidecarError,)


async def _complete_metadata(entry: UploadQueueEntry) -> None:
    """Metadata entries are reserved; item metadata travels through the sync push."""
    logger.debug(f"Metadata entry {entry.id} for {entry.target_id} needs no upload")


class UploadQueue:
    """
    Queue of deferred remote work, persisted in the ``upload_queue`` table.

    Handlers are looked up by entry type; a handler completes normally on
    success and raises on failure.
    """

    def __init__(
        self,
        store: LocalStore,
        handlers: Optional[dict[str, UploadHandler]] = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Initialize the queue.

        Args:
            store: Local store holding the queue table
            handlers: Upload handler per entry type (``pdf``, ``annotation``, ``metadata``)
            max_retries: Failed attempts after which an entry is parked as ``failed``
            clock: Source of the current time
        """
        self.store = store
        self.handlers: dict[str, UploadHandler] = {"metadata": _complete_metadata}
        self.handlers.update(handlers or {})
        self.max_retries = max_retries
        self.clock = clock

    def enqueue(
        self,
        upload_type: UploadType,
        target_id: str,
        local_path: Optional[str] = None,
    ) -> UploadQueueEntry:
        """Durably record a pending entry and return it. An identical pending entry is reused."""
        with self.store.transaction() as session:
            stmt = select(UploadQueueRecord).where(
                UploadQueueRecord.type == upload_type,
                UploadQueueRecord.target_id == target_id,
                UploadQueueRecord.status == "pending",
            )
            existing = session.scalars(stmt).first()
            if existing is not None:
                logger.debug(f"{upload_type} upload for {target_id} already queued as {existing.id}")
                return upload_entry_from_record(existing)

        record = UploadQueueRecord(
            id=str(uuid.uuid4()),
            type=upload_type,
            target_id=target_id,
            local_path=local_path,
            status="pending",
            retry_count=0,
            max_retries=self.max_retries,
            created_at=self.clock(),
        )
        with self.store.transaction() as session:
            session.add(record)
            entry = upload_entry_from_record(record)

        logger.info(f"Queued {upload_type} upload for {target_id} (entry {entry.id})")
        return entry

    def get_entry(self, entry_id: str) -> UploadQueueEntry:
        with self.store.transaction() as session:
            record = session.get(UploadQueueRecord, entry_id)
            if record is None:
                raise NotFoundError(f"Upload queue entry not found: {entry_id}")
            return upload_entry_from_record(record)

    def list_entries(self, status: Optional[UploadStatus] = None) -> list[UploadQueueEntry]:
        """All entries, oldest first, optionally filtered by status."""
        stmt = select(UploadQueueRecord).order_by(UploadQueueRecord.created_at, UploadQueueRecord.id)
        if status is not None:
            stmt = stmt.where(UploadQueueRecord.status == status)
        with self.store.transaction() as session:
            return [upload_entry_from_record(r) for r in session.scalars(stmt)]

    def retry_failed(self, entry_id: str) -> UploadQueueEntry:
        """
        Give a ``failed`` entry a fresh set of attempts.

        Raises:
            NotFoundError: Unknown entry
            ValueError: Entry is not in ``failed`` state
        """
        with self.store.transaction() as session:
            record = session.get(UploadQueueRecord, entry_id)
            if record is None:
                raise NotFoundError(f"Upload queue entry not found: {entry_id}")
            if record.status != "failed":
                raise ValueError(f"Entry {entry_id} is {record.status}, not failed")
            record.status = "pending"
            record.retry_count = 0
            record.error_msg = None
            record.next_retry_at = None
            entry = upload_entry_from_record(record)

        logger.info(f"Re-queued failed {entry.type} upload {entry_id}")
        return entry

    async def drain(self, due_only: bool = False) -> DrainReport:
        """
        Process every pending entry, oldest first.

        Entries still marked ``uploading`` are from a drain that never
        finished; drains do not overlap, so they are returned to pending first.

        Args:
            due_only: Skip entries whose backoff has not elapsed yet

        Returns:
            Counts of completed, re-scheduled and permanently failed entries

        Raises:
            asyncio.CancelledError: Propagated after the in-flight entry is put back to pending
        """
        report = DrainReport()
        self._recover_interrupted()
        now = self.clock()
        entries = [
            entry for entry in self.list_entries(status="pending")
            if not due_only or entry.next_retry_at is None or entry.next_retry_at <= now
        ]
        if not entries:
            return report

        logger.info(f"Draining {len(entries)} upload queue entries")

        for entry in entries:
            report.processed += 1
            self._set_status(entry.id, "uploading")

            try:
                handler = self.handlers.get(entry.type)
                if handler is None:
                    raise LookupError(f"No upload handler registered for type '{entry.type}'")
                await handler(entry)
            except asyncio.CancelledError:
                self._set_status(entry.id, "pending")
                logger.warning(f"Drain cancelled; entry {entry.id} returned to pending")
                raise
            except Exception as e:
                if self._record_failure(entry, e):
                    report.failed += 1
                else:
                    report.retried += 1
            else:
                self._set_status(entry.id, "completed")
                report.completed += 1
                logger.info(f"Completed {entry.type} upload for {entry.target_id}")

        logger.info(
            f"Drain finished: {report.completed} completed, "
            f"{report.retried} rescheduled, {report.failed} failed"
        )
        return report

    def _recover_interrupted(self) -> None:
        """Return entries left in ``uploading`` by a process that died mid-upload to pending."""
        with self.store.transaction() as session:
            stmt = select(UploadQueueRecord).where(UploadQueueRecord.status == "uploading")
            for record in session.scalars(stmt).all():
                record.status = "pending"
                logger.warning(f"Recovered interrupted {record.type} upload {record.id}")

    def _set_status(self, entry_id: str, status: UploadStatus) -> None:
        with self.store.transaction() as session:
            record = session.get(UploadQueueRecord, entry_id)
            if record is not None:
                record.status = status

    def _record_failure(self, entry: UploadQueueEntry, error: Exception) -> bool:
        """Count a failed attempt. Returns True when the entry is now permanently failed."""
        with self.store.transaction() as session:
            record = session.get(UploadQueueRecord, entry.id)
            record.retry_count += 1
            record.error_msg = str(error) or type(error).__name__

            if record.retry_count >= record.max_retries or isinstance(error, NON_RETRYABLE):
                record.status = "failed"
                record.next_retry_at = None
                logger.error(
                    f"{entry.type} upload for {entry.target_id} failed permanently "
                    f"after {record.retry_count} attempts: {error}"
                )
                return True

            record.status = "pending"
            record.next_retry_at = self.clock() + queue_backoff(record.retry_count)
            logger.warning(
                f"{entry.type} upload for {entry.target_id} failed "
                f"(attempt {record.retry_count}/{record.max_retries}): {error}"
            )
            return False
