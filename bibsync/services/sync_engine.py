"""
Sync engine.

A pass reconciles the local store with the remote authority using item
versions only:

1. pull   - fetch items changed remotely since the last pass and apply them,
            unless the local copy was edited too (then record a conflict)
2. push   - send items edited locally since the last pass
3. drain  - replay the upload queue
4. commit - advance the ``lastSyncTimestamp`` cursor to the time the pass started

Every remote item, local item and queue entry is its own unit of work: a
failure is counted and the pass moves on.
"""

import logging
import uuid
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy import select

from bibsync.db import codecs
from bibsync.db.models import ItemRecord, LibraryRecord, SyncConflictRecord
from bibsync.db.repository import (
    LAST_SYNC_KEY,
    apply_item,
    conflict_from_record,
    get_sync_value,
    item_from_record,
    items_modified_since,
    record_from_item,
    require_item,
    set_sync_value,
)
from bibsync.db.store import LocalStore
from bibsync.errors import NotFoundError, VersionConflictError
from bibsync.models import (
    EPOCH,
    ConflictResolution,
    Item,
    SyncConflict,
    SyncPhase,
    SyncResult,
    ensure_utc,
    utc_now,
)
from bibsync.remote.authority import RemoteAuthorityClient
from bibsync.services.upload_queue import UploadQueue

logger = logging.getLogger(__name__)

PLACEHOLDER_LIBRARY_NAME = "Synced library"


class SyncEngine:
    """Runs sync passes between the local store and the remote authority."""

    def __init__(
        self,
        store: LocalStore,
        authority: RemoteAuthorityClient,
        queue: UploadQueue,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Initialize the sync engine.

        Args:
            store: Local store
            authority: Remote authority client
            queue: Upload queue drained during each pass
            clock: Source of the current time
        """
        self.store = store
        self.authority = authority
        self.queue = queue
        self.clock = clock
        self.phase = SyncPhase.IDLE
        self.last_result: Optional[SyncResult] = None

    def get_last_sync(self) -> datetime:
        """The cursor; the epoch before the first pass."""
        with self.store.transaction() as session:
            value = get_sync_value(session, LAST_SYNC_KEY)
        if not value:
            return EPOCH
        return ensure_utc(datetime.fromisoformat(value))

    async def run_pass(self, due_only: bool = False) -> SyncResult:
        """
        Run one full sync pass.

        Args:
            due_only: Only drain queue entries whose backoff has elapsed

        Returns:
            Counts of pushed, pulled, conflicting and failed units
        """
        result = SyncResult()
        logger.info("Starting sync pass")

        pass_started = self.clock()

        try:
            last_sync = self.get_last_sync()

            self.phase = SyncPhase.PULLING
            handled = await self._pull(last_sync, result)

            self.phase = SyncPhase.PUSHING
            await self._push(last_sync, handled, result)

            self.phase = SyncPhase.DRAINING_QUEUE
            report = await self.queue.drain(due_only=due_only)
            result.errors += report.errors

            self.phase = SyncPhase.COMMITTING_CURSOR
            # Edits made while the pass awaited the network stay above the cursor
            with self.store.transaction() as session:
                set_sync_value(session, LAST_SYNC_KEY, pass_started.isoformat(), self.clock())
        except Exception as e:
            logger.error(f"Sync pass aborted during {self.phase.value}: {e}", exc_info=True)
            result.errors += 1
        finally:
            self.phase = SyncPhase.IDLE

        self.last_result = result
        logger.info(
            f"Sync pass finished: {result.pulled} pulled, {result.pushed} pushed, "
            f"{result.conflicts} conflicts, {result.errors} errors"
        )
        return result

    async def _pull(self, last_sync: datetime, result: SyncResult) -> set[str]:
        """Apply remote changes. Returns the IDs of items this pull touched."""
        handled: set[str] = set()

        try:
            changes = await self.authority.get_changes(last_sync)
        except Exception as e:
            logger.warning(f"Could not fetch remote changes, skipping pull: {e}")
            result.errors += 1
            return handled

        for remote_item in changes.items:
            try:
                outcome = self._apply_remote_item(remote_item, last_sync)
            except Exception as e:
                logger.error(f"Failed to apply remote item {remote_item.id}: {e}")
                result.errors += 1
                continue

            if outcome == "pulled":
                result.pulled += 1
                handled.add(remote_item.id)
            elif outcome == "conflict":
                result.conflicts += 1
                handled.add(remote_item.id)

        return handled

    def _apply_remote_item(self, remote_item: Item, last_sync: datetime) -> str:
        """Apply one remote item in its own transaction. Returns pulled, conflict or skipped."""
        with self.store.transaction() as session:
            record = session.get(ItemRecord, remote_item.id)

            if record is None:
                if session.get(LibraryRecord, remote_item.library_id) is None:
                    now = self.clock()
                    session.add(
                        LibraryRecord(
                            id=remote_item.library_id,
                            name=PLACEHOLDER_LIBRARY_NAME,
                            type="personal",
                            created_at=now,
                            modified_at=now,
                        )
                    )
                    session.flush()
                    logger.info(f"Created placeholder library {remote_item.library_id}")
                session.add(record_from_item(remote_item))
                logger.debug(f"Pulled new item {remote_item.id} v{remote_item.version}")
                return "pulled"

            if remote_item.version <= record.version:
                return "skipped"

            if record.modified_at <= last_sync:
                apply_item(record, remote_item)
                logger.debug(f"Pulled item {remote_item.id} v{remote_item.version}")
                return "pulled"

            local_item = item_from_record(record)
            session.add(
                SyncConflictRecord(
                    id=str(uuid.uuid4()),
                    item_id=remote_item.id,
                    local_version=local_item.version,
                    remote_version=remote_item.version,
                    local_data=codecs.encode_item(local_item),
                    remote_data=codecs.encode_item(remote_item),
                    detected_at=self.clock(),
                )
            )
            logger.warning(
                f"Conflict on item {remote_item.id}: local v{local_item.version} edited, "
                f"remote now v{remote_item.version}"
            )
            return "conflict"

    async def _push(self, last_sync: datetime, handled: set[str], result: SyncResult) -> None:
        with self.store.transaction() as session:
            pending = [
                item_from_record(r)
                for r in items_modified_since(session, last_sync)
                if r.id not in handled
            ]

        for item in pending:
            try:
                await self.authority.push_item(item)
            except VersionConflictError as e:
                logger.warning(f"Push of item {item.id} rejected: {e}")
                result.conflicts += 1
            except Exception as e:
                logger.error(f"Failed to push item {item.id}: {e}")
                result.errors += 1
            else:
                result.pushed += 1

    def list_conflicts(self, include_resolved: bool = False) -> list[SyncConflict]:
        stmt = select(SyncConflictRecord).order_by(SyncConflictRecord.detected_at)
        if not include_resolved:
            stmt = stmt.where(SyncConflictRecord.resolution.is_(None))
        with self.store.transaction() as session:
            return [conflict_from_record(r) for r in session.scalars(stmt)]

    def resolve_conflict(self, conflict_id: str, resolution: ConflictResolution) -> SyncConflict:
        """
        Settle a recorded item conflict.

        ``keepLocal`` lifts the local item above the remote version and marks
        it modified so the next pass pushes it. ``keepRemote`` overwrites the
        local item with the remote snapshot.

        Raises:
            NotFoundError: Unknown conflict
            ValueError: Already resolved, or ``merge`` (items are not merged automatically)
        """
        if resolution not in ("keepLocal", "keepRemote"):
            raise ValueError(f"Unsupported resolution for item conflicts: {resolution}")

        now = self.clock()
        with self.store.transaction() as session:
            record = session.get(SyncConflictRecord, conflict_id)
            if record is None:
                raise NotFoundError(f"Sync conflict not found: {conflict_id}")
            if record.resolution is not None:
                raise ValueError(f"Conflict {conflict_id} is already resolved ({record.resolution})")

            item_record = require_item(session, record.item_id)
            remote_item = codecs.decode_item(record.remote_data)

            if resolution == "keepRemote":
                apply_item(item_record, remote_item)
            else:
                item_record.version = max(item_record.version, remote_item.version) + 1
                item_record.modified_at = now

            record.resolution = resolution
            record.resolved_at = now
            conflict = conflict_from_record(record)

        logger.info(f"Resolved conflict {conflict_id} on item {conflict.item_id} with {resolution}")
        return conflict
