"""
Wiring of the services for one process.

The API resolves everything through ``get_runtime()``; tests either build a
``Runtime`` around fakes or override the FastAPI dependency.
"""

import logging
from typing import Optional

from bibsync.config.settings import Settings, get_settings
from bibsync.db.store import LocalStore, open_store
from bibsync.remote.authority import HttpRemoteAuthority, RemoteAuthorityClient
from bibsync.remote.file_store import DriveFileStore, FileStoreClient
from bibsync.services.cache import ContentCache
from bibsync.services.identity import IdentityProvider, StaticIdentity
from bibsync.services.library import LibraryService
from bibsync.services.scheduler import SyncScheduler
from bibsync.services.sync_engine import SyncEngine
from bibsync.services.upload_queue import UploadQueue
from bibsync.services.uploader import Uploader

logger = logging.getLogger(__name__)


class Runtime:
    """All long-lived collaborators, built once from settings."""

    def __init__(
        self,
        settings: Settings,
        store: LocalStore,
        cache: ContentCache,
        file_store: FileStoreClient,
        authority: RemoteAuthorityClient,
        identity: IdentityProvider,
    ):
        self.settings = settings
        self.store = store
        self.cache = cache
        self.file_store = file_store
        self.authority = authority
        self.identity = identity

        self.uploader = Uploader(store, cache, file_store, identity)
        self.queue = UploadQueue(
            store,
            handlers=self.uploader.queue_handlers(),
            max_retries=settings.queue_max_retries,
        )
        self.library = LibraryService(store, cache, file_store, self.uploader, self.queue, identity)
        self.sync_engine = SyncEngine(store, authority, self.queue)
        self.scheduler = SyncScheduler(self.sync_engine, interval_seconds=settings.sync_interval_seconds)

    @classmethod
    def from_settings(cls, settings: Settings) -> "Runtime":
        """Build the production runtime: SQLite store, on-disk cache, HTTP clients."""
        file_store = DriveFileStore(
            api_url=settings.file_store_api_url,
            upload_url=settings.file_store_upload_url,
            access_token=settings.file_store_access_token,
            timeout_seconds=settings.request_timeout_seconds,
            max_attempts=settings.retry_max_attempts,
            base_delay=settings.retry_base_delay_seconds,
        )
        authority = HttpRemoteAuthority(
            base_url=settings.remote_api_url,
            api_token=settings.remote_api_token,
            timeout_seconds=settings.request_timeout_seconds,
            max_attempts=settings.retry_max_attempts,
            base_delay=settings.retry_base_delay_seconds,
        )
        return cls(
            settings=settings,
            store=open_store(settings.resolved_database_path),
            cache=ContentCache(settings.resolved_cache_dir),
            file_store=file_store,
            authority=authority,
            identity=StaticIdentity(settings.user_id),
        )

    async def close(self):
        """Stop the scheduler and release connections."""
        await self.scheduler.stop()
        for client in (self.file_store, self.authority):
            close = getattr(client, "close", None)
            if close is not None:
                await close()
        self.store.close()


# Global runtime instance
_runtime: Optional[Runtime] = None


def get_runtime() -> Runtime:
    """
    Get the global runtime instance.

    Creates it from settings on first call.
    """
    global _runtime
    if _runtime is None:
        _runtime = Runtime.from_settings(get_settings())
        logger.info("Runtime initialized")
    return _runtime


def set_runtime(runtime: Optional[Runtime]):
    """Install a prebuilt runtime (mainly for testing)."""
    global _runtime
    _runtime = runtime


def reset_runtime():
    """Forget the global runtime instance (mainly for testing)."""
    set_runtime(None)
