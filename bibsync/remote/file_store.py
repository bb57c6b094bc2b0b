"""
File store client.

``FileStoreClient`` is the capability set the services depend on.
``DriveFileStore`` implements it over HTTP against a Drive-v3-style REST API
(folders are files with a folder mime type, content revisions are exposed
as ``headRevisionId``). Access tokens are obtained elsewhere.
"""

import asyncio
import logging
import re
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Optional, Union

import aiohttp

from bibsync.errors import NotFoundError, RemoteError, VersionConflictError
from bibsync.models import AnnotationSidecar, RemoteFile, UploadRequest
from bibsync.services.retry import with_retry
from bibsync.services.sidecar import parse_sidecar

logger = logging.getLogger(__name__)

FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"
FILE_FIELDS = "id,name,mimeType,size,headRevisionId,md5Checksum,webViewLink,parents"
MAX_FILENAME_LENGTH = 200

_UNSAFE_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f\x7f]')
_WHITESPACE = re.compile(r"\s+")


def sanitize_filename(filename: str) -> str:
    """
    Make a filename safe for the file store.

    Replaces reserved and control characters with ``_``, collapses whitespace
    runs to a single ``_`` and truncates to 200 characters.
    """
    cleaned = _UNSAFE_CHARS.sub("_", filename)
    cleaned = _WHITESPACE.sub("_", cleaned)
    return cleaned[:MAX_FILENAME_LENGTH]


def build_remote_file_name(checksum: str, filename: str) -> str:
    """Remote blob name: first 8 hex digits of the checksum, then the sanitized filename."""
    return f"{checksum[:8]}_{sanitize_filename(filename)}"


class FileStoreClient(ABC):
    """Operations the sync core needs from a file store."""

    @abstractmethod
    async def ensure_folder(self, parent_id: str, name: str) -> str:
        """Return the ID of folder ``name`` under ``parent_id``, creating it if needed."""

    @abstractmethod
    async def upload_resumable(self, request: UploadRequest) -> RemoteFile:
        """Upload ``request.local_path`` as a new file."""

    @abstractmethod
    async def download_file(self, file_id: str, dest_path: Union[str, Path]) -> None:
        """Write the content of ``file_id`` to ``dest_path``."""

    @abstractmethod
    async def download_json(self, file_id: str) -> AnnotationSidecar:
        """Download and parse an annotation sidecar."""

    @abstractmethod
    async def get_file_metadata(self, file_id: str) -> RemoteFile:
        """Metadata (including the revision tag) of ``file_id``."""

    @abstractmethod
    async def create_file(self, request: UploadRequest) -> RemoteFile:
        """Create a new file from ``request.content``."""

    @abstractmethod
    async def update_file(self, file_id: str, content: str, mime_type: str) -> RemoteFile:
        """Replace the content of ``file_id``; the revision tag changes."""

    @abstractmethod
    async def is_online(self) -> bool:
        """Cheap reachability probe; never raises."""


def remote_file_from_json(data: dict[str, Any]) -> RemoteFile:
    """Map a Drive file resource onto ``RemoteFile``."""
    size = data.get("size")
    return RemoteFile(
        id=data["id"],
        name=data.get("name", ""),
        mime_type=data.get("mimeType", "application/octet-stream"),
        size=int(size) if size is not None else None,
        revision_tag=data.get("headRevisionId") or data.get("md5Checksum"),
        web_link=data.get("webViewLink"),
        parents=data.get("parents", []),
    )


class DriveFileStore(FileStoreClient):
    """
    aiohttp client for a Drive-v3-style file store.

    Transport failures and 5xx/429 responses are retried inside each call;
    404 maps to ``NotFoundError``, 409/412 to ``VersionConflictError`` and any
    other failure to ``RemoteError``.
    """

    def __init__(
        self,
        api_url: str,
        upload_url: str,
        access_token: Optional[str] = None,
        timeout_seconds: float = 30.0,
        max_attempts: int = 5,
        base_delay: float = 1.0,
    ):
        """
        Initialize the client.

        Args:
            api_url: Metadata endpoint root, e.g. ``https://www.googleapis.com/drive/v3``
            upload_url: Media endpoint root, e.g. ``https://www.googleapis.com/upload/drive/v3``
            access_token: OAuth bearer token
            timeout_seconds: Total timeout per HTTP request
            max_attempts: Retries per call after the first attempt
            base_delay: First retry delay in seconds
        """
        self.api_url = api_url.rstrip("/")
        self.upload_url = upload_url.rstrip("/")
        self.access_token = access_token
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.session: Optional[aiohttp.ClientSession] = None
        logger.info(f"Initialized DriveFileStore with API URL: {self.api_url}")

    async def _ensure_session(self):
        """Ensure aiohttp session exists."""
        if self.session is None or self.session.closed:
            headers = {}
            if self.access_token:
                headers["Authorization"] = f"Bearer {self.access_token}"
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

    async def _check(self, response: aiohttp.ClientResponse, what: str) -> None:
        """Turn a non-2xx response into the matching exception."""
        if response.status < 400:
            return
        if response.status >= 500 or response.status == 429:
            # Transient; ClientResponseError is retried by _call
            response.raise_for_status()
        text = await response.text()
        if response.status == 404:
            raise NotFoundError(f"{what}: not found on file store")
        if response.status in (409, 412):
            raise VersionConflictError(f"{what}: remote revision changed")
        raise RemoteError(f"{what}: file store returned {response.status}: {text}", status=response.status)

    async def _call(self, what: str, operation):
        """Run ``operation`` with transport retries and error translation."""
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
            raise RemoteError(f"{what}: file store returned {e.status}", status=e.status) from e
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"{what} failed: {e}")
            raise RemoteError(f"{what}: unable to reach file store at {self.api_url}") from e

    async def _get_json(self, url: str, what: str, **kwargs) -> dict[str, Any]:
        async def operation():
            async with self.session.get(url, **kwargs) as response:
                await self._check(response, what)
                return await response.json()

        return await self._call(what, operation)

    async def ensure_folder(self, parent_id: str, name: str) -> str:
        what = f"ensure_folder({parent_id}/{name})"
        escaped = name.replace("\\", "\\\\").replace("'", "\\'")
        query = (
            f"name = '{escaped}' and '{parent_id}' in parents "
            f"and mimeType = '{FOLDER_MIME_TYPE}' and trashed = false"
        )
        data = await self._get_json(
            f"{self.api_url}/files",
            what,
            params={"q": query, "fields": "files(id,name)", "pageSize": "1"},
        )
        files = data.get("files", [])
        if files:
            return files[0]["id"]

        async def create():
            async with self.session.post(
                f"{self.api_url}/files",
                params={"fields": "id"},
                json={"name": name, "mimeType": FOLDER_MIME_TYPE, "parents": [parent_id]},
            ) as response:
                await self._check(response, what)
                return await response.json()

        created = await self._call(what, create)
        logger.info(f"Created folder '{name}' under {parent_id}: {created['id']}")
        return created["id"]

    async def upload_resumable(self, request: UploadRequest) -> RemoteFile:
        if not request.local_path:
            raise ValueError("upload_resumable requires local_path")

        what = f"upload_resumable({request.name})"
        path = Path(request.local_path)
        metadata = {"name": request.name, "mimeType": request.mime_type, "parents": request.parents}

        async def operation():
            # Open a session, then send the bytes in one request
            async with self.session.post(
                f"{self.upload_url}/files",
                params={"uploadType": "resumable", "fields": FILE_FIELDS},
                json=metadata,
                headers={
                    "X-Upload-Content-Type": request.mime_type,
                    "X-Upload-Content-Length": str(path.stat().st_size),
                },
            ) as response:
                await self._check(response, what)
                location = response.headers.get("Location")
            if not location:
                raise RemoteError(f"{what}: no upload session URL returned")

            with open(path, "rb") as f:
                async with self.session.put(
                    location, data=f, headers={"Content-Type": request.mime_type}
                ) as response:
                    await self._check(response, what)
                    return await response.json()

        data = await self._call(what, operation)
        logger.info(f"Uploaded {path.name} as {data.get('id')}")
        return remote_file_from_json(data)

    async def download_file(self, file_id: str, dest_path: Union[str, Path]) -> None:
        what = f"download_file({file_id})"
        dest = Path(dest_path)

        async def operation():
            async with self.session.get(
                f"{self.api_url}/files/{file_id}", params={"alt": "media"}
            ) as response:
                await self._check(response, what)
                with open(dest, "wb") as f:
                    async for chunk in response.content.iter_chunked(64 * 1024):
                        f.write(chunk)

        await self._call(what, operation)

    async def download_json(self, file_id: str) -> AnnotationSidecar:
        what = f"download_json({file_id})"

        async def operation():
            async with self.session.get(
                f"{self.api_url}/files/{file_id}", params={"alt": "media"}
            ) as response:
                await self._check(response, what)
                return await response.text()

        text = await self._call(what, operation)
        return parse_sidecar(text)

    async def get_file_metadata(self, file_id: str) -> RemoteFile:
        data = await self._get_json(
            f"{self.api_url}/files/{file_id}",
            f"get_file_metadata({file_id})",
            params={"fields": FILE_FIELDS},
        )
        return remote_file_from_json(data)

    async def create_file(self, request: UploadRequest) -> RemoteFile:
        what = f"create_file({request.name})"
        metadata = {"name": request.name, "mimeType": request.mime_type, "parents": request.parents}

        async def operation():
            with aiohttp.MultipartWriter("related") as writer:
                writer.append_json(metadata)
                writer.append(request.content or "", {"Content-Type": request.mime_type})
                async with self.session.post(
                    f"{self.upload_url}/files",
                    params={"uploadType": "multipart", "fields": FILE_FIELDS},
                    data=writer,
                ) as response:
                    await self._check(response, what)
                    return await response.json()

        return remote_file_from_json(await self._call(what, operation))

    async def update_file(self, file_id: str, content: str, mime_type: str) -> RemoteFile:
        what = f"update_file({file_id})"

        async def operation():
            async with self.session.patch(
                f"{self.upload_url}/files/{file_id}",
                params={"uploadType": "media", "fields": FILE_FIELDS},
                data=content.encode("utf-8"),
                headers={"Content-Type": mime_type},
            ) as response:
                await self._check(response, what)
                return await response.json()

        return remote_file_from_json(await self._call(what, operation))

    async def is_online(self) -> bool:
        try:
            await self._ensure_session()
            async with self.session.get(
                f"{self.api_url}/about", params={"fields": "user"}
            ) as response:
                return response.status == 200
        except Exception as e:
            logger.debug(f"File store connection check failed: {e}")
            return False
