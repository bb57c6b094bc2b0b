"""
In-memory stand-ins for the file store and the remote authority, plus
small builders shared by the tests.
"""

import itertools
import json
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

from bibsync.db.store import open_store
from bibsync.errors import NotFoundError, RemoteError, VersionConflictError
from bibsync.models import (
    AnnotationSidecar,
    HighlightAnnotation,
    Item,
    NoteAnnotation,
    Position,
    Rect,
    RemoteChanges,
    RemoteFile,
    UploadRequest,
)
from bibsync.remote.authority import RemoteAuthorityClient
from bibsync.remote.file_store import FileStoreClient
from bibsync.services.cache import ContentCache
from bibsync.services.identity import StaticIdentity
from bibsync.services.library import LibraryService
from bibsync.services.sidecar import parse_sidecar, serialize_sidecar
from bibsync.services.sync_engine import SyncEngine
from bibsync.services.upload_queue import UploadQueue
from bibsync.services.uploader import Uploader

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def at(minutes: int) -> datetime:
    """A fixed timestamp ``minutes`` after T0."""
    return T0 + timedelta(minutes=minutes)


def highlight(id: str, page: int = 1, y: float = 100.0, modified: Optional[datetime] = None,
              created_by: str = "alice", **kwargs):
    return HighlightAnnotation(
        id=id,
        page=page,
        rects=[Rect(x1=10, y1=y, x2=200, y2=y - 12)],
        created_by=created_by,
        created_at=T0,
        modified_at=modified or T0,
        **kwargs,
    )


def note(id: str, page: int = 1, y: float = 100.0, modified: Optional[datetime] = None,
         created_by: str = "bob", **kwargs):
    return NoteAnnotation(
        id=id,
        page=page,
        position=Position(x=50, y=y),
        created_by=created_by,
        created_at=T0,
        modified_at=modified or T0,
        **kwargs,
    )


def write_pdf(path: Path, body: bytes = b"hello") -> Path:
    """Write a small file with a PDF header; it is not a parseable PDF."""
    path.write_bytes(b"%PDF-1.4\n" + body + b"\n%%EOF\n")
    return path


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeFileStore(FileStoreClient):
    """
    Dictionary-backed file store.

    Every content change bumps the file's revision tag. Set ``online`` to
    False to make every call raise ``RemoteError``; push exceptions onto
    ``failures`` to make the next calls fail one by one.
    """

    def __init__(self):
        self.online = True
        self.failures: list[Exception] = []
        self.calls: list[str] = []
        self.files: dict[str, dict] = {}
        self.folders: dict[tuple, str] = {}
        self._ids = itertools.count(1)

    def _enter(self, name: str) -> None:
        self.calls.append(name)
        if not self.online:
            raise RemoteError(f"{name}: offline")
        if self.failures:
            raise self.failures.pop(0)

    def _new_id(self, prefix: str) -> str:
        return f"{prefix}-{next(self._ids)}"

    def _require(self, file_id: str) -> dict:
        if file_id not in self.files:
            raise NotFoundError(f"No such file: {file_id}")
        return self.files[file_id]

    def _remote_file(self, file_id: str) -> RemoteFile:
        entry = self.files[file_id]
        return RemoteFile(
            id=file_id,
            name=entry["name"],
            mime_type=entry["mime_type"],
            size=len(entry["content"]),
            revision_tag=f"rev-{entry['revision']}",
            web_link=f"https://files.example/{file_id}",
            parents=entry["parents"],
        )

    def _store(self, file_id: str, name: str, mime_type: str, parents: list, content: bytes) -> RemoteFile:
        revision = self.files[file_id]["revision"] + 1 if file_id in self.files else 1
        self.files[file_id] = {
            "name": name,
            "mime_type": mime_type,
            "parents": list(parents),
            "content": content,
            "revision": revision,
        }
        return self._remote_file(file_id)

    # Test helpers

    def put_sidecar(self, file_id: str, sidecar: AnnotationSidecar, parents: Optional[list] = None) -> RemoteFile:
        """Write a sidecar as another device would."""
        name = f"{sidecar.attachment_id}.json"
        return self._store(file_id, name, "application/json", parents or [], serialize_sidecar(sidecar).encode())

    def put_raw(self, file_id: str, text: str) -> RemoteFile:
        return self._store(file_id, f"{file_id}.json", "application/json", [], text.encode())

    def sidecar(self, file_id: str) -> AnnotationSidecar:
        return parse_sidecar(self.files[file_id]["content"].decode())

    def sidecar_json(self, file_id: str) -> dict:
        return json.loads(self.files[file_id]["content"].decode())

    # FileStoreClient

    async def ensure_folder(self, parent_id: str, name: str) -> str:
        self._enter("ensure_folder")
        key = (parent_id, name)
        if key not in self.folders:
            self.folders[key] = self._new_id("folder")
        return self.folders[key]

    async def upload_resumable(self, request: UploadRequest) -> RemoteFile:
        self._enter("upload_resumable")
        content = Path(request.local_path).read_bytes()
        return self._store(self._new_id("file"), request.name, request.mime_type, request.parents, content)

    async def download_file(self, file_id: str, dest_path) -> None:
        self._enter("download_file")
        Path(dest_path).write_bytes(self._require(file_id)["content"])

    async def download_json(self, file_id: str) -> AnnotationSidecar:
        self._enter("download_json")
        return parse_sidecar(self._require(file_id)["content"].decode())

    async def get_file_metadata(self, file_id: str) -> RemoteFile:
        self._enter("get_file_metadata")
        self._require(file_id)
        return self._remote_file(file_id)

    async def create_file(self, request: UploadRequest) -> RemoteFile:
        self._enter("create_file")
        content = (request.content or "").encode()
        return self._store(self._new_id("file"), request.name, request.mime_type, request.parents, content)

    async def update_file(self, file_id: str, content: str, mime_type: str) -> RemoteFile:
        self._enter("update_file")
        entry = self._require(file_id)
        return self._store(file_id, entry["name"], mime_type, entry["parents"], content.encode())

    async def is_online(self) -> bool:
        return self.online


class FakeAuthority(RemoteAuthorityClient):
    """
    Remote authority holding items in a dictionary.

    ``get_changes`` returns the items whose ``modified_at`` is after ``since``.
    A push is rejected when the stored remote version is not below the
    pushed one.
    """

    def __init__(self):
        self.online = True
        self.items: dict[str, Item] = {}
        self.pushed: list[Item] = []
        self.push_failures: dict[str, Exception] = {}
        self.change_requests: list[datetime] = []

    def put(self, item: Item) -> None:
        self.items[item.id] = item

    async def get_changes(self, since: datetime) -> RemoteChanges:
        self.change_requests.append(since)
        if not self.online:
            raise RemoteError("get_changes: offline")
        return RemoteChanges(items=[i for i in self.items.values() if i.modified_at > since])

    async def push_item(self, item: Item) -> None:
        if not self.online:
            raise RemoteError("push_item: offline")
        if item.id in self.push_failures:
            raise self.push_failures[item.id]
        remote = self.items.get(item.id)
        if remote is not None and remote.version >= item.version:
            raise VersionConflictError(f"Item {item.id} is at v{remote.version}")
        self.pushed.append(item)
        self.items[item.id] = item

    async def is_online(self) -> bool:
        return self.online


class ServiceHarness:
    """
    Fully wired services over an in-memory store, a temporary cache and the
    fakes above. Call ``close()`` when done.
    """

    def __init__(self, user_id: str = "alice", max_retries: int = 5):
        self.temp_dir = tempfile.TemporaryDirectory()
        self.root = Path(self.temp_dir.name)
        self.clock = FakeClock()
        self.store = open_store(":memory:")
        self.cache = ContentCache(self.root / "cache")
        self.file_store = FakeFileStore()
        self.authority = FakeAuthority()
        self.identity = StaticIdentity(user_id)
        self.uploader = Uploader(self.store, self.cache, self.file_store, self.identity, clock=self.clock)
        self.queue = UploadQueue(
            self.store,
            handlers=self.uploader.queue_handlers(),
            max_retries=max_retries,
            clock=self.clock,
        )
        self.library = LibraryService(
            self.store, self.cache, self.file_store, self.uploader, self.queue, self.identity, clock=self.clock
        )
        self.engine = SyncEngine(self.store, self.authority, self.queue, clock=self.clock)

    def pdf(self, name: str = "paper.pdf", body: bytes = b"hello") -> Path:
        return write_pdf(self.root / name, body)

    def close(self):
        self.store.close()
        self.temp_dir.cleanup()
