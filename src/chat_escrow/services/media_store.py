"""Chat media blob store clients.

Two backends share the `MediaStore` interface:

- `StorageApiMediaStore` talks to an object-storage REST API
  (`/object/{bucket}/{path}`) with a service key.
- `LocalMediaStore` keeps blobs on the local filesystem for development.

Paths passed in are bare storage keys; use `normalize_media_path` on values
read from the message table first.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable
from pathlib import Path
from urllib.parse import quote, unquote

import httpx

from chat_escrow.core.errors import ConfigurationError, MediaNotFoundError, StorageError
from chat_escrow.core.settings import Settings, settings

logger = logging.getLogger(__name__)

MEDIA_BUCKET_MARKER = "/chat-media/"

HTTP_OK = 200
HTTP_BAD_REQUEST = 400
HTTP_NOT_FOUND = 404

CONTENT_TYPES = {
    "image": "image/jpeg",
    "video": "video/mp4",
}
DEFAULT_CONTENT_TYPE = "application/octet-stream"


def content_type_for(media_type: str | None) -> str:
    """Map a message `media_type` to the Content-Type used on output."""
    return CONTENT_TYPES.get(media_type or "", DEFAULT_CONTENT_TYPE)


def normalize_media_path(media_path: str, marker: str = MEDIA_BUCKET_MARKER) -> str:
    """Reduce a stored media reference to its bare storage key.

    Full URLs are cut after the bucket segment and URL-decoded; anything else
    is returned unchanged.
    """
    if media_path.startswith("http"):
        _, sep, rest = media_path.partition(marker)
        if sep:
            return unquote(rest)
    return media_path


class MediaStore(ABC):
    """Blob store holding chat media, addressed by storage-relative keys."""

    @abstractmethod
    async def download(self, path: str) -> bytes:
        """Return the blob at `path`.

        Raises:
            MediaNotFoundError: If no blob exists at `path`.
            StorageError: For any other failure.
        """

    @abstractmethod
    async def upload(self, path: str, data: bytes, content_type: str) -> None:
        """Store `data` at `path`, overwriting any existing blob."""

    @abstractmethod
    async def remove(self, paths: Iterable[str]) -> None:
        """Delete the blobs at `paths`; missing blobs are not an error."""

    @abstractmethod
    async def exists(self, path: str) -> bool:
        """Return True when a blob exists at `path`."""

    async def close(self) -> None:
        return None


class StorageApiMediaStore(MediaStore):
    """HTTP client for an object-storage REST API."""

    def __init__(
        self,
        base_url: str,
        service_key: str,
        bucket: str,
        *,
        timeout_seconds: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.bucket = bucket
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=httpx.Timeout(timeout_seconds),
            headers={
                "Authorization": f"Bearer {service_key}",
                "apikey": service_key,
            },
            transport=transport,
        )

    def _object_url(self, path: str) -> str:
        return f"/object/{self.bucket}/{quote(path.lstrip('/'))}"

    async def _request(self, method: str, url: str, **kwargs: object) -> httpx.Response:
        try:
            return await self._client.request(method, url, **kwargs)  # type: ignore[arg-type]
        except httpx.HTTPError as exc:
            raise StorageError(f"Storage request failed: {exc}") from exc

    async def download(self, path: str) -> bytes:
        response = await self._request("GET", self._object_url(path))
        # Some storage APIs answer a missing object with 400 + "not_found".
        if response.status_code == HTTP_NOT_FOUND or (
            response.status_code == HTTP_BAD_REQUEST and "not_found" in response.text
        ):
            raise MediaNotFoundError(f"Media not found: {path}")
        if response.status_code != HTTP_OK:
            raise StorageError(
                f"Failed to download media ({response.status_code}): {response.text[:200]}"
            )
        return response.content

    async def upload(self, path: str, data: bytes, content_type: str) -> None:
        response = await self._request(
            "POST",
            self._object_url(path),
            content=data,
            headers={"Content-Type": content_type, "x-upsert": "true"},
        )
        if response.status_code >= HTTP_BAD_REQUEST:
            raise StorageError(
                f"Failed to upload media ({response.status_code}): {response.text[:200]}"
            )

    async def remove(self, paths: Iterable[str]) -> None:
        prefixes = [path.lstrip("/") for path in paths]
        if not prefixes:
            return
        response = await self._request(
            "DELETE",
            f"/object/{self.bucket}",
            json={"prefixes": prefixes},
        )
        if response.status_code >= HTTP_BAD_REQUEST and response.status_code != HTTP_NOT_FOUND:
            raise StorageError(
                f"Failed to delete media ({response.status_code}): {response.text[:200]}"
            )

    async def exists(self, path: str) -> bool:
        response = await self._request("HEAD", self._object_url(path))
        if response.status_code == HTTP_OK:
            return True
        if response.status_code in (HTTP_NOT_FOUND, HTTP_BAD_REQUEST):
            return False
        raise StorageError(f"Failed to stat media ({response.status_code})")

    async def close(self) -> None:
        await self._client.aclose()


class LocalMediaStore(MediaStore):
    """Filesystem-backed store rooted at a directory."""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root).resolve()

    def _resolve(self, path: str) -> Path:
        target = (self.root / path.lstrip("/")).resolve()
        if self.root != target and self.root not in target.parents:
            raise StorageError(f"Media path escapes store root: {path}")
        return target

    async def download(self, path: str) -> bytes:
        target = self._resolve(path)
        try:
            return await asyncio.to_thread(target.read_bytes)
        except FileNotFoundError as err:
            raise MediaNotFoundError(f"Media not found: {path}") from err
        except OSError as err:
            raise StorageError(f"Failed to read media: {err}") from err

    async def upload(self, path: str, data: bytes, content_type: str) -> None:
        target = self._resolve(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            await asyncio.to_thread(target.write_bytes, data)
        except OSError as err:
            raise StorageError(f"Failed to write media: {err}") from err

    async def remove(self, paths: Iterable[str]) -> None:
        for path in paths:
            try:
                self._resolve(path).unlink(missing_ok=True)
            except OSError as err:
                raise StorageError(f"Failed to delete media: {err}") from err

    async def exists(self, path: str) -> bool:
        return self._resolve(path).is_file()


def build_media_store(config: Settings | None = None) -> MediaStore:
    """Create the media store selected by MEDIA_STORE_BACKEND.

    Raises:
        ConfigurationError: If the storage API backend lacks a URL or key.
    """
    config = config or settings
    if config.media_store_backend == "local":
        return LocalMediaStore(config.media_root)
    if config.media_store_backend != "storage_api":
        raise ConfigurationError(f"Unknown media store backend: {config.media_store_backend}")
    if not (config.storage_url and config.storage_service_key):
        raise ConfigurationError("Media storage URL or service key not configured")
    return StorageApiMediaStore(
        config.storage_url,
        config.storage_service_key,
        config.media_bucket,
        timeout_seconds=config.storage_http_timeout_seconds,
    )
