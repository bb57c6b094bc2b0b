"""
Remote authority client.

The remote authority owns the canonical item metadata. It hands out items
changed since a timestamp and accepts pushes guarded by the item version:
a push is rejected with 409 when the remote copy has moved past the
version the local edit was based on.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

import aiohttp

from bibsync.errors import RemoteError, VersionConflictError
from bibsync.models import Item, RemoteChanges
from bibsync.services.retry import with_retry

logger = logging.getLogger(__name__)


class RemoteAuthorityClient(ABC):
    """Operations the sync engine needs from the remote authority."""

    @abstractmethod
    async def get_changes(self, since: datetime) -> RemoteChanges:
        """Items modified remotely after ``since``."""

    @abstractmethod
    async def push_item(self, item: Item) -> None:
        """
        Send a locally modified item.

        Raises:
            VersionConflictError: The remote version has advanced
        """

    @abstractmethod
    async def is_online(self) -> bool:
        """Cheap reachability probe; never raises."""


class HttpRemoteAuthority(RemoteAuthorityClient):
    """
    aiohttp client for the remote authority REST API.

    Endpoints:
        GET  {base_url}/changes?since=<ISO-8601>  -> {"items": [...]}
        PUT  {base_url}/items/{id}                -> 200/204, or 409 on version conflict
        GET  {base_url}/health                    -> 200 when reachable
    """

    def __init__(
        self,
        base_url: str,
        api_token: Optional[str] = None,
        timeout_seconds: float = 30.0,
        max_attempts: int = 5,
        base_delay: float = 1.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_token = api_token
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.session: Optional[aiohttp.ClientSession] = None
        logger.info(f"Initialized HttpRemoteAuthority with base URL: {self.base_url}")

    async def _ensure_session(self):
        """Ensure aiohttp session exists."""
        if self.session is None or self.session.closed:
            headers = {}
            if self.api_token:
                headers["Authorization"] = f"Bearer {self.api_token}"
            self.session = aiohttp.ClientSession(headers=headers, timeout=self.timeout)

    async def close(self):
        """Close the HTTP session."""
        if self.session and not self.session.closed:
            await self.session.close()

    async def __aenter__(self):
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def _call(self, what: str, operation):
        await self._ensure_session()
        try:
            return await with_retry(
                operation,
                max_attempts=self.max_attempts,
                base_delay=self.base_delay,
                retry_on=(aiohttp.ClientError, asyncio.TimeoutError),
            )
        except aiohttp.ClientResponseError as e:
            logger.error(f"{what} failed: {e.status} {e.message}")
            raise RemoteError(f"{what}: remote authority returned {e.status}", status=e.status) from e
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"{what} failed: {e}")
            raise RemoteError(f"{what}: unable to reach remote authority at {self.base_url}") from e

    async def get_changes(self, since: datetime) -> RemoteChanges:
        """
        Fetch items changed after ``since``.

        Args:
            since: Lower bound (exclusive) on remote modification time

        Returns:
            Changed items, validated

        Raises:
            RemoteError: If the authority cannot be reached or answers with an error
        """
        what = "get_changes"

        async def operation():
            async with self.session.get(
                f"{self.base_url}/changes", params={"since": since.isoformat()}
            ) as response:
                if response.status >= 500 or response.status == 429:
                    response.raise_for_status()
                if response.status != 200:
                    error_text = await response.text()
                    raise RemoteError(
                        f"{what}: remote authority returned {response.status}: {error_text}",
                        status=response.status,
                    )
                return await response.json()

        data = await self._call(what, operation)
        changes = RemoteChanges.model_validate(data)
        logger.info(f"Remote authority reported {len(changes.items)} changed items since {since.isoformat()}")
        return changes

    async def push_item(self, item: Item) -> None:
        what = f"push_item({item.id})"

        async def operation():
            async with self.session.put(
                f"{self.base_url}/items/{item.id}", json=item.to_wire()
            ) as response:
                if response.status == 409:
                    raise VersionConflictError(
                        f"Item {item.id} was modified remotely (local version {item.version})"
                    )
                if response.status >= 500 or response.status == 429:
                    response.raise_for_status()
                if response.status >= 400:
                    error_text = await response.text()
                    raise RemoteError(
                        f"{what}: remote authority returned {response.status}: {error_text}",
                        status=response.status,
                    )

        await self._call(what, operation)
        logger.debug(f"Pushed item {item.id} at version {item.version}")

    async def is_online(self) -> bool:
        try:
            await self._ensure_session()
            async with self.session.get(f"{self.base_url}/health") as response:
                return response.status == 200
        except Exception as e:
            logger.debug(f"Remote authority connection check failed: {e}")
            return False
