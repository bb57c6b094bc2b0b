"""
Unit tests for the sync engine and its scheduler.
"""

import asyncio
import unittest
from unittest.mock import AsyncMock, MagicMock

from bibsync.errors import NotFoundError, RemoteError, VersionConflictError
from bibsync.models import EPOCH, Item, ItemCreate, ItemUpdate, SyncPhase, SyncResult
from bibsync.services.scheduler import SyncScheduler
from bibsync.services.sync_engine import PLACEHOLDER_LIBRARY_NAME
from bibsync.tests.fakes import ServiceHarness, T0, at


class SyncEngineTestCase(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        self.h = ServiceHarness()
        self.service = self.h.library
        self.engine = self.h.engine
        self.authority = self.h.authority
        self.library = self.service.create_library("Main")

    def tearDown(self):
        self.h.close()

    def remote_copy(self, item: Item, **changes) -> Item:
        return item.model_copy(update=changes)

    async def synced_item(self, title: str = "Local") -> Item:
        """An item created at T0 and pushed by a pass at at(1)."""
        item = self.service.create_item(self.library.id, ItemCreate(title=title))
        self.h.clock.advance(minutes=1)
        result = await self.engine.run_pass()
        self.assertEqual(result.pushed, 1)
        return item


class TestPull(SyncEngineTestCase):
    """Test the pull phase."""

    async def test_concurrent_edit_is_a_conflict(self):
        """Local v2 edited after the cursor and remote v3: conflict, local untouched."""
        item = await self.synced_item()

        self.h.clock.advance(minutes=1)
        local = self.service.update_item(item.id, ItemUpdate(title="Local edit"))
        self.authority.put(self.remote_copy(item, title="Remote edit", version=3, modified_at=at(2)))
        self.h.clock.advance(minutes=1)

        result = await self.engine.run_pass()

        self.assertEqual(result, SyncResult(conflicts=1))
        stored = self.service.get_item(item.id)
        self.assertEqual(stored.title, "Local edit")
        self.assertEqual(stored.version, 2)
        self.assertEqual(stored, local)

        [conflict] = self.engine.list_conflicts()
        self.assertEqual(conflict.item_id, item.id)
        self.assertEqual(conflict.local_version, 2)
        self.assertEqual(conflict.remote_version, 3)
        self.assertEqual(conflict.remote_data.title, "Remote edit")
        self.assertFalse(conflict.resolved)

    async def test_unedited_local_is_overwritten(self):
        item = await self.synced_item()
        self.authority.put(self.remote_copy(item, title="Remote edit", version=2, modified_at=at(2)))
        self.h.clock.advance(minutes=2)

        result = await self.engine.run_pass()

        self.assertEqual(result, SyncResult(pulled=1))
        stored = self.service.get_item(item.id)
        self.assertEqual(stored.title, "Remote edit")
        self.assertEqual(stored.version, 2)

    async def test_older_remote_is_skipped(self):
        item = await self.synced_item()
        self.h.clock.advance(minutes=1)
        self.service.update_item(item.id, ItemUpdate(title="Newer"))
        self.authority.put(self.remote_copy(item, modified_at=at(2)))
        self.h.clock.advance(minutes=1)

        result = await self.engine.run_pass()

        self.assertEqual(result.pulled, 0)
        self.assertEqual(result.conflicts, 0)
        self.assertEqual(self.service.get_item(item.id).title, "Newer")

    async def test_unknown_item_and_library_are_inserted(self):
        remote = Item(id="r-1", library_id="lib-remote", title="From afar", version=4,
                      created_at=T0, modified_at=at(1))
        self.authority.put(remote)
        self.h.clock.advance(minutes=5)

        result = await self.engine.run_pass()

        self.assertEqual(result, SyncResult(pulled=1))
        self.assertEqual(self.service.get_item("r-1"), remote)
        self.assertEqual(self.service.get_library("lib-remote").name, PLACEHOLDER_LIBRARY_NAME)

    async def test_fetch_failure_counts_one_error(self):
        self.authority.online = False

        result = await self.engine.run_pass()

        self.assertEqual(result, SyncResult(errors=1))

    async def test_changes_requested_since_cursor(self):
        self.h.clock.advance(minutes=3)
        await self.engine.run_pass()
        self.h.clock.advance(minutes=3)
        await self.engine.run_pass()

        self.assertEqual(self.authority.change_requests, [EPOCH, at(3)])


class TestPush(SyncEngineTestCase):
    """Test the push phase."""

    async def test_pushes_items_modified_since_cursor(self):
        first = self.service.create_item(self.library.id, ItemCreate(title="A"))
        second = self.service.create_item(self.library.id, ItemCreate(title="B"))
        self.h.clock.advance(minutes=1)

        result = await self.engine.run_pass()

        self.assertEqual(result, SyncResult(pushed=2))
        self.assertEqual({i.id for i in self.authority.pushed}, {first.id, second.id})

        again = await self.engine.run_pass()
        self.assertEqual(again, SyncResult())

    async def test_failures_are_counted_per_item(self):
        rejected = self.service.create_item(self.library.id, ItemCreate(title="A"))
        broken = self.service.create_item(self.library.id, ItemCreate(title="B"))
        fine = self.service.create_item(self.library.id, ItemCreate(title="C"))
        self.authority.push_failures[rejected.id] = VersionConflictError("remote is ahead")
        self.authority.push_failures[broken.id] = RemoteError("500")
        self.h.clock.advance(minutes=1)

        result = await self.engine.run_pass()

        self.assertEqual(result, SyncResult(pushed=1, conflicts=1, errors=1))
        self.assertEqual([i.id for i in self.authority.pushed], [fine.id])

    async def test_cursor_commits_even_after_errors(self):
        self.service.create_item(self.library.id, ItemCreate(title="A"))
        self.authority.online = False
        self.h.clock.advance(minutes=1)

        result = await self.engine.run_pass()

        self.assertEqual(result.errors, 2)
        self.assertEqual(self.engine.get_last_sync(), at(1))
        self.assertEqual(self.engine.last_result, result)
        self.assertEqual(self.engine.phase, SyncPhase.IDLE)

    async def test_edit_during_pass_is_pushed_next_pass(self):
        first = self.service.create_item(self.library.id, ItemCreate(title="A"))
        second = self.service.create_item(self.library.id, ItemCreate(title="B"))
        self.h.clock.advance(minutes=1)
        push_item = self.authority.push_item

        async def push_then_edit(item):
            await push_item(item)
            if item.id == first.id:
                self.h.clock.advance(seconds=5)
                self.service.update_item(second.id, ItemUpdate(title="B2"))
                self.h.clock.advance(seconds=5)

        self.authority.push_item = push_then_edit
        await self.engine.run_pass()
        self.authority.push_item = push_item

        self.assertEqual(self.engine.get_last_sync(), at(1))

        self.h.clock.advance(minutes=1)
        result = await self.engine.run_pass()

        self.assertEqual(result.pushed, 1)
        self.assertEqual(self.authority.items[second.id].title, "B2")


class TestDrainDuringPass(SyncEngineTestCase):
    """The queue drain is part of every pass."""

    async def test_failed_queue_attempts_count_as_errors(self):
        shared = self.service.create_library("Shared", remote_root_id="root-folder")
        self.h.file_store.online = False
        await self.service.add_pdf(shared.id, self.h.pdf())
        self.h.clock.advance(minutes=1)

        result = await self.engine.run_pass()

        self.assertEqual(result.errors, 1)
        self.assertEqual(self.h.queue.list_entries()[0].retry_count, 1)

        self.h.file_store.online = True
        self.h.clock.advance(minutes=1)
        result = await self.engine.run_pass()

        self.assertEqual(result.errors, 0)
        self.assertEqual(self.h.queue.list_entries()[0].status, "completed")


class TestResolveConflict(SyncEngineTestCase):
    """Test list_conflicts() and resolve_conflict()."""

    async def asyncSetUp(self):
        self.item = await self.synced_item()
        self.h.clock.advance(minutes=1)
        self.service.update_item(self.item.id, ItemUpdate(title="Local edit"))
        self.authority.put(self.remote_copy(self.item, title="Remote edit", version=3, modified_at=at(2)))
        self.h.clock.advance(minutes=1)
        await self.engine.run_pass()
        [self.conflict] = self.engine.list_conflicts()

    async def test_keep_local_pushes_next_pass(self):
        self.h.clock.advance(minutes=1)

        resolved = self.engine.resolve_conflict(self.conflict.id, "keepLocal")

        self.assertEqual(resolved.resolution, "keepLocal")
        self.assertEqual(resolved.resolved_at, at(4))
        stored = self.service.get_item(self.item.id)
        self.assertEqual(stored.version, 4)
        self.assertEqual(stored.title, "Local edit")

        self.h.clock.advance(minutes=1)
        result = await self.engine.run_pass()

        self.assertEqual(result, SyncResult(pushed=1))
        self.assertEqual(self.authority.items[self.item.id].title, "Local edit")

    async def test_keep_remote_overwrites_local(self):
        self.engine.resolve_conflict(self.conflict.id, "keepRemote")

        stored = self.service.get_item(self.item.id)
        self.assertEqual(stored.title, "Remote edit")
        self.assertEqual(stored.version, 3)
        self.assertEqual(self.engine.list_conflicts(), [])
        self.assertEqual(len(self.engine.list_conflicts(include_resolved=True)), 1)

    def test_merge_is_rejected(self):
        with self.assertRaises(ValueError):
            self.engine.resolve_conflict(self.conflict.id, "merge")

    def test_resolving_twice_is_rejected(self):
        self.engine.resolve_conflict(self.conflict.id, "keepRemote")

        with self.assertRaises(ValueError):
            self.engine.resolve_conflict(self.conflict.id, "keepLocal")

    def test_unknown_conflict(self):
        with self.assertRaises(NotFoundError):
            self.engine.resolve_conflict("missing", "keepLocal")


class TestSyncScheduler(unittest.IsolatedAsyncioTestCase):
    """Test SyncScheduler with a mocked engine."""

    def setUp(self):
        self.engine = MagicMock()
        self.calls = asyncio.Queue()

        async def run_pass(due_only=False):
            await self.calls.put(due_only)
            return SyncResult()

        self.engine.run_pass = AsyncMock(side_effect=run_pass)

    async def next_call(self):
        return await asyncio.wait_for(self.calls.get(), timeout=1)

    async def test_start_runs_pass_and_trigger_wakes_loop(self):
        scheduler = SyncScheduler(self.engine, interval_seconds=60)
        scheduler.start()
        try:
            self.assertTrue(await self.next_call())
            scheduler.trigger()
            self.assertTrue(await self.next_call())
            self.assertTrue(scheduler.running)
        finally:
            await scheduler.stop()

        self.assertFalse(scheduler.running)

    async def test_loop_survives_failed_pass(self):
        outcomes = [RuntimeError("boom"), SyncResult()]

        async def run_pass(due_only=False):
            await self.calls.put(due_only)
            outcome = outcomes.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome

        self.engine.run_pass = AsyncMock(side_effect=run_pass)
        scheduler = SyncScheduler(self.engine, interval_seconds=60)
        scheduler.start()
        try:
            await self.next_call()
            scheduler.trigger()
            await self.next_call()
            self.assertTrue(scheduler.running)
        finally:
            await scheduler.stop()

    async def test_passes_never_overlap(self):
        active = 0
        peak = 0

        async def run_pass(due_only=False):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1
            return SyncResult()

        self.engine.run_pass = AsyncMock(side_effect=run_pass)
        scheduler = SyncScheduler(self.engine)

        await asyncio.gather(scheduler.run_pass(), scheduler.run_pass(), scheduler.run_pass())

        self.assertEqual(peak, 1)
        self.assertEqual(self.engine.run_pass.await_count, 3)
        self.assertFalse(scheduler.busy)

    async def test_stop_without_start(self):
        scheduler = SyncScheduler(self.engine)
        await scheduler.stop()
        self.assertFalse(scheduler.running)


if __name__ == "__main__":
    unittest.main()
