"""Object storage abstraction for listing and fetching source blobs."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Iterator, List, Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError
from google.api_core.exceptions import GoogleAPIError
from google.cloud import storage as gcs_storage

from docsync.core.config import Settings
from docsync.core.exceptions import TransientSourceError

logger = logging.getLogger(__name__)


class ObjectStorageError(TransientSourceError):
    """Raised when a blob listing or download fails."""


@dataclass(frozen=True)
class BlobItem:
    name: str
    last_modified: datetime


_SENTINEL = object()


class ObjectStorageClient:
    """List and download blobs from S3, GCS, or local disk.

    ``container`` is the bucket name for s3/gcs and a directory below
    ``local_root`` for the local backend. Blob names always use ``/``.
    """

    def __init__(
        self,
        backend: str,
        container: str,
        *,
        timeout: float = 30.0,
        s3_region: Optional[str] = None,
        s3_endpoint_url: Optional[str] = None,
        service_account_file: Optional[Path] = None,
        local_root: Optional[Path] = None,
    ) -> None:
        self.backend = (backend or "local").lower()
        self.container = container
        self.timeout = timeout
        self._s3 = None
        self._gcs_client = None

        if self.backend == "s3":
            self._s3 = boto3.client(
                "s3",
                region_name=s3_region,
                endpoint_url=s3_endpoint_url,
                config=BotoConfig(connect_timeout=timeout, read_timeout=timeout),
            )
        elif self.backend == "gcs":
            if service_account_file:
                self._gcs_client = gcs_storage.Client.from_service_account_json(str(service_account_file))
            else:
                self._gcs_client = gcs_storage.Client()
        elif self.backend == "local":
            self._local_root = Path(local_root or "storage") / container
        else:
            raise ValueError(f"Unknown storage backend: {backend}")

    @classmethod
    def from_settings(cls, settings: Settings) -> "ObjectStorageClient":
        return cls(
            settings.STORAGE_BACKEND,
            settings.STORAGE_CONTAINER or "",
            timeout=settings.REMOTE_TIMEOUT_SECONDS,
            s3_region=settings.S3_REGION,
            s3_endpoint_url=str(settings.S3_ENDPOINT_URL) if settings.S3_ENDPOINT_URL else None,
            service_account_file=settings.GOOGLE_SERVICE_ACCOUNT_FILE,
            local_root=settings.LOCAL_STORAGE_PATH,
        )

    async def list_blobs(self, prefix: str = "") -> AsyncIterator[BlobItem]:
        """Yield blobs under ``prefix`` one provider page at a time."""

        pages = await self._call(self._page_iterator, prefix)
        while True:
            page = await self._call(next, pages, _SENTINEL)
            if page is _SENTINEL:
                return
            for item in page:
                yield item

    async def download(self, name: str, prefix: str = "") -> bytes:
        """Fetch one blob. A non-empty ``prefix`` confines the fetch to that directory."""

        if not name.startswith(prefix):
            raise ObjectStorageError(
                "outside_prefix",
                f"Blob {name} is outside '{prefix}'",
                {"container": self.container},
            )
        if self.backend == "s3":
            return await self._call(self._download_s3, name)
        if self.backend == "gcs":
            return await self._call(self._download_gcs, name)
        return await self._call(self._download_local, name, prefix)

    async def _call(self, func: Callable[..., Any], *args: Any) -> Any:
        try:
            return await asyncio.wait_for(asyncio.to_thread(func, *args), timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            raise ObjectStorageError(
                "storage_timeout",
                f"{self.backend} request timed out after {self.timeout}s",
                {"container": self.container},
            ) from exc
        except (ClientError, BotoCoreError, GoogleAPIError, OSError) as exc:
            raise ObjectStorageError(
                "storage_request_failed",
                f"{self.backend} request failed: {exc}",
                {"container": self.container},
            ) from exc

    def _page_iterator(self, prefix: str) -> Iterator[List[BlobItem]]:
        if self.backend == "s3":
            return self._s3_pages(prefix)
        if self.backend == "gcs":
            return self._gcs_pages(prefix)
        return self._local_pages(prefix)

    def _s3_pages(self, prefix: str) -> Iterator[List[BlobItem]]:
        paginator = self._s3.get_paginator("list_objects_v2")
        for page in paginator.paginate(Bucket=self.container, Prefix=prefix):
            yield [
                BlobItem(name=entry["Key"], last_modified=entry["LastModified"])
                for entry in page.get("Contents", [])
                if not entry["Key"].endswith("/")
            ]

    def _gcs_pages(self, prefix: str) -> Iterator[List[BlobItem]]:
        blobs = self._gcs_client.list_blobs(self.container, prefix=prefix or None, timeout=self.timeout)
        for page in blobs.pages:
            yield [
                BlobItem(name=blob.name, last_modified=blob.updated)
                for blob in page
                if not blob.name.endswith("/")
            ]

    def _local_pages(self, prefix: str) -> Iterator[List[BlobItem]]:
        if not self._local_root.is_dir():
            raise FileNotFoundError(f"Local storage container not found: {self._local_root}")
        items = []
        for path in sorted(self._local_root.rglob("*")):
            if not path.is_file():
                continue
            name = path.relative_to(self._local_root).as_posix()
            if not name.startswith(prefix):
                continue
            modified = datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)
            items.append(BlobItem(name=name, last_modified=modified))
        yield items

    def _download_s3(self, name: str) -> bytes:
        response = self._s3.get_object(Bucket=self.container, Key=name)
        return response["Body"].read()

    def _download_gcs(self, name: str) -> bytes:
        return self._gcs_client.bucket(self.container).blob(name).download_as_bytes(timeout=self.timeout)

    def _download_local(self, name: str, prefix: str = "") -> bytes:
        root = self._local_root.resolve()
        scope = (root / prefix).resolve() if prefix else root
        path = (root / name).resolve()
        if scope not in path.parents:
            raise FileNotFoundError(f"Blob outside local directory {scope}: {name}")
        return path.read_bytes()
