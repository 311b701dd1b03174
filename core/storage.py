# core/storage.py
"""
Core Storage Utilities.

Remote object store access for the bucket service. `RemoteObjectStore` is the
capability set the service consumes; `GCSObjectStore` implements it on top of
Google Cloud Storage.

The google-cloud-storage client is synchronous, so every call is pushed to a
worker thread with `asyncio.to_thread`. Reads and writes move one chunk per
call and never hold a whole object in memory.
"""
import asyncio
from typing import Any, AsyncIterator, Dict, Optional, Protocol

from google.api_core import exceptions as gcs_exceptions
from google.cloud import storage as gcs

from core.config import settings, logger as core_logger
from core.errors import RemoteStoreError

logger = core_logger.getChild("RemoteStore")

# GCS resumable uploads require chunk sizes in multiples of 256 KiB
GCS_CHUNK_MULTIPLE = 256 * 1024
DEFAULT_UPLOAD_CHUNK = 4 * GCS_CHUNK_MULTIPLE


class ObjectWriter(Protocol):
    async def write(self, chunk: bytes) -> None: ...
    async def close(self) -> None: ...
    async def abort(self) -> None: ...


class RemoteObjectStore(Protocol):
    async def create_container(self, container_id: str, meta: Optional[Dict[str, Any]] = None) -> None: ...
    async def delete_container(self, container_id: str) -> None: ...
    async def open_write_stream(self, container_id: str, object_id: str, meta: Optional[Dict[str, Any]] = None) -> ObjectWriter: ...
    def open_read_stream(self, container_id: str, object_id: str) -> AsyncIterator[bytes]: ...
    async def delete_object(self, container_id: str, object_id: str) -> None: ...
    async def get_metadata(self, container_id: str, object_id: str) -> Dict[str, Any]: ...
    async def set_public(self, container_id: str, object_id: str, public: bool) -> None: ...


class GCSObjectWriter:
    """Async facade over a `BlobWriter`. Nothing is committed remotely until `close()`."""

    def __init__(self, writer, resource: str):
        self._writer = writer
        self._resource = resource
        self._closed = False

    async def write(self, chunk: bytes) -> None:
        try:
            await asyncio.to_thread(self._writer.write, chunk)
        except gcs_exceptions.GoogleAPIError as e:
            raise RemoteStoreError("write", self._resource, e) from e

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await asyncio.to_thread(self._writer.close)
        except gcs_exceptions.GoogleAPIError as e:
            raise RemoteStoreError("finalize", self._resource, e) from e

    async def abort(self) -> None:
        # Dropping an unfinalized resumable session leaves no object behind.
        self._closed = True


class GCSObjectStore:
    def __init__(self, client: Optional[gcs.Client] = None, chunk_size: Optional[int] = None):
        self._client = client
        chunk_size = chunk_size or settings.STREAM_CHUNK_SIZE
        self.read_chunk_size = chunk_size
        # Round the upload chunk up to the nearest multiple GCS accepts
        self.upload_chunk_size = max(DEFAULT_UPLOAD_CHUNK, -(-chunk_size // GCS_CHUNK_MULTIPLE) * GCS_CHUNK_MULTIPLE)

    @property
    def client(self) -> gcs.Client:
        if self._client is None:
            kwargs = {}
            if settings.GCS_PROJECT_ID:
                kwargs["project"] = settings.GCS_PROJECT_ID
            if settings.GCS_KEY_FILE:
                logger.info("Initializing Google Cloud Storage client from service account file...")
                self._client = gcs.Client.from_service_account_json(settings.GCS_KEY_FILE, **kwargs)
            else:
                logger.info("Initializing Google Cloud Storage client with ambient credentials...")
                self._client = gcs.Client(**kwargs)
        return self._client

    async def _call(self, operation: str, resource: str, func, *args, **kwargs):
        try:
            return await asyncio.to_thread(func, *args, **kwargs)
        except gcs_exceptions.GoogleAPIError as e:
            logger.error(f"[{resource}] GCS {operation} failed: {e}", exc_info=False)
            raise RemoteStoreError(operation, resource, e) from e

    async def create_container(self, container_id, meta=None):
        location = (meta or {}).get("location", settings.BUCKET_LOCATION)
        bucket = self.client.bucket(container_id)
        await self._call("create_container", container_id, self.client.create_bucket, bucket, location=location)
        logger.info(f"[{container_id}] Created remote container in {location}.")

    async def delete_container(self, container_id):
        bucket = self.client.bucket(container_id)
        try:
            await asyncio.to_thread(bucket.delete)
        except gcs_exceptions.NotFound:
            logger.warning(f"[{container_id}] Remote container already gone, nothing to delete.")
            return
        except gcs_exceptions.GoogleAPIError as e:
            raise RemoteStoreError("delete_container", container_id, e) from e
        logger.info(f"[{container_id}] Deleted remote container.")

    async def open_write_stream(self, container_id, object_id, meta=None):
        resource = f"{container_id}/{object_id}"
        blob = self.client.bucket(container_id).blob(object_id)
        meta = dict(meta or {})
        content_type = meta.pop("content_type", None)
        if content_type:
            blob.content_type = content_type
        if meta:
            # GCS custom metadata values are strings
            blob.metadata = {key: str(value).lower() if isinstance(value, bool) else str(value) for key, value in meta.items()}
        writer = await self._call("open_write_stream", resource, blob.open, "wb", chunk_size=self.upload_chunk_size)
        return GCSObjectWriter(writer, resource)

    async def open_read_stream(self, container_id, object_id):
        resource = f"{container_id}/{object_id}"
        blob = self.client.bucket(container_id).blob(object_id)
        reader = await self._call("open_read_stream", resource, blob.open, "rb", chunk_size=self.read_chunk_size)
        try:
            while True:
                chunk = await self._call("read", resource, reader.read, self.read_chunk_size)
                if not chunk:
                    break
                yield chunk
        finally:
            await asyncio.to_thread(reader.close)

    async def delete_object(self, container_id, object_id):
        resource = f"{container_id}/{object_id}"
        blob = self.client.bucket(container_id).blob(object_id)
        try:
            await asyncio.to_thread(blob.delete)
        except gcs_exceptions.NotFound:
            logger.debug(f"[{resource}] Remote object already gone.")
        except gcs_exceptions.GoogleAPIError as e:
            raise RemoteStoreError("delete_object", resource, e) from e

    async def get_metadata(self, container_id, object_id):
        resource = f"{container_id}/{object_id}"
        blob = await self._call("get_metadata", resource, self.client.bucket(container_id).get_blob, object_id)
        if blob is None:
            raise RemoteStoreError("get_metadata", resource, FileNotFoundError(resource))
        return dict(blob.metadata or {})

    async def set_public(self, container_id, object_id, public):
        resource = f"{container_id}/{object_id}"
        blob = self.client.bucket(container_id).blob(object_id)
        if public:
            await self._call("make_public", resource, blob.make_public)
        else:
            await self._call("make_private", resource, blob.make_private)
