"""
Receipt Blob Store using Cloudinary

DESIGN DECISION: Receipts are uploaded as Cloudinary "raw" resources.
- Raw resources keep the exact bytes (no transcoding of images or PDFs)
- The public_id Cloudinary returns is the content handle; it is opaque
  to everything above this module
- The SDK is synchronous, so calls run in a worker thread

Only bytes live here. Which user or expense a blob belongs to is known to
the receipt index alone.
"""

import asyncio
from io import BytesIO
from typing import BinaryIO, Optional
from uuid import uuid4

import cloudinary
import cloudinary.api
import cloudinary.exceptions
import cloudinary.uploader
import structlog
import urllib3
from cloudinary.utils import cloudinary_url
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from expense_ledger.config import CloudinarySettings, get_settings
from expense_ledger.errors import StorageError, StorageTransientError
from expense_ledger.services.storage.interface import BlobStoreInterface


logger = structlog.get_logger(__name__)

STORE_NAME = "blob"

_cloudinary_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    retry=retry_if_exception_type(StorageTransientError),
    reraise=True,
)


def _translate(error: Exception, action: str) -> StorageError:
    """Map an SDK or HTTP failure onto the storage error taxonomy."""
    if isinstance(error, (
        cloudinary.exceptions.GeneralError,
        cloudinary.exceptions.RateLimited,
        urllib3.exceptions.HTTPError,
        ConnectionError,
    )):
        return StorageTransientError(STORE_NAME, f"{action} failed: {error}")
    return StorageError(f"Cloudinary {action} failed: {error}")


class CloudinaryBlobStore(BlobStoreInterface):
    """
    Blob store backed by Cloudinary.

    Flow for `store`:
    1. Generate a fresh public_id under the configured folder
    2. Upload the bytes as a raw resource
    3. Return the public_id Cloudinary confirms
    """

    def __init__(
        self,
        settings: Optional[CloudinarySettings] = None,
        http: Optional[urllib3.PoolManager] = None,
    ):
        self._settings = settings or get_settings().cloudinary
        self._http = http or urllib3.PoolManager()
        self._configured = False

    def _configure(self):
        """Configure Cloudinary SDK."""
        if not self._configured:
            cloudinary.config(
                cloud_name=self._settings.cloud_name,
                api_key=self._settings.api_key,
                api_secret=self._settings.api_secret,
                secure=True,
            )
            self._configured = True

    def _generate_public_id(self) -> str:
        """Format: {folder}/{random hex}"""
        return f"{self._settings.folder.strip('/')}/{uuid4().hex}"

    @_cloudinary_retry
    def _upload(self, content: bytes, filename: str) -> str:
        self._configure()
        try:
            result = cloudinary.uploader.upload(
                BytesIO(content),
                public_id=self._generate_public_id(),
                resource_type="raw",
                filename_override=filename,
                overwrite=False,
            )
        except Exception as e:
            raise _translate(e, "upload") from e

        handle = result.get("public_id")
        if not handle:
            raise StorageError("No public_id returned from Cloudinary")
        return handle

    @_cloudinary_retry
    def _download(self, handle: str) -> Optional[bytes]:
        self._configure()
        url, _ = cloudinary_url(handle, resource_type="raw", secure=True)
        try:
            response = self._http.request("GET", url)
        except Exception as e:
            raise _translate(e, "download") from e

        if response.status == 404:
            return None
        if response.status >= 500:
            raise StorageTransientError(STORE_NAME, f"download returned HTTP {response.status}")
        if response.status >= 400:
            raise StorageError(f"Cloudinary download returned HTTP {response.status}")
        return response.data

    @_cloudinary_retry
    def _destroy(self, handle: str) -> bool:
        self._configure()
        try:
            result = cloudinary.uploader.destroy(handle, resource_type="raw", invalidate=True)
        except Exception as e:
            raise _translate(e, "delete") from e
        return result.get("result") == "ok"

    @_cloudinary_retry
    def _list(self) -> set[str]:
        self._configure()
        handles: set[str] = set()
        cursor = None
        try:
            while True:
                page = cloudinary.api.resources(
                    resource_type="raw",
                    type="upload",
                    prefix=self._settings.folder.strip("/") + "/",
                    max_results=500,
                    next_cursor=cursor,
                )
                handles.update(r["public_id"] for r in page.get("resources", []))
                cursor = page.get("next_cursor")
                if not cursor:
                    return handles
        except Exception as e:
            raise _translate(e, "list") from e

    # BlobStoreInterface ---------------------------------------------------

    async def store(self, content: bytes, filename: str, mime_type: str) -> str:
        handle = await asyncio.to_thread(self._upload, content, filename)
        logger.info("blob_stored", handle=handle, size_bytes=len(content), mime_type=mime_type)
        return handle

    async def fetch(self, handle: str) -> Optional[BinaryIO]:
        data = await asyncio.to_thread(self._download, handle)
        return BytesIO(data) if data is not None else None

    async def delete(self, handle: str) -> bool:
        deleted = await asyncio.to_thread(self._destroy, handle)
        logger.info("blob_deleted", handle=handle, deleted=deleted)
        return deleted

    async def list_handles(self) -> set[str]:
        return await asyncio.to_thread(self._list)
