# services/bucket_service/app/files.py
from typing import Any, Dict, List, Optional

from core.config import settings, logger as core_logger
from core.errors import NotFound, QuotaExceeded
from core.models import BucketEntry, FileEntry, UploadPart
from core.storage import RemoteObjectStore
from core.supabase_client import DocumentStore
from core.utils import build_public_url
from .accounting import UsageAccounting

logger = core_logger.getChild("BucketService").getChild("Files")


class FileRegistry:
    """File metadata records and the remote objects they describe."""

    def __init__(self, files: DocumentStore, buckets: DocumentStore, remote: RemoteObjectStore,
                 accounting: UsageAccounting, public_url_base: Optional[str] = None):
        self._files = files
        self._buckets = buckets
        self._remote = remote
        self._accounting = accounting
        self.public_url_base = public_url_base or settings.PUBLIC_URL_BASE

    async def list_files(self, query: Dict[str, Any], offset: Optional[int] = None, limit: Optional[int] = None) -> List[FileEntry]:
        records = await self._files.find(query, offset, limit)
        return [FileEntry(**record) for record in records]

    async def list_files_by_bucket(self, bucket: BucketEntry, offset: Optional[int] = None, limit: Optional[int] = None) -> List[FileEntry]:
        return await self.list_files({"bucket_id": bucket.identifier}, offset, limit)

    async def count_files(self, query: Dict[str, Any]) -> int:
        return await self._files.count(query)

    async def get_file(self, file_id: str, user: Optional[str] = None) -> FileEntry:
        query = {"identifier": file_id}
        if user:
            query["user"] = user
        record = await self._files.find_one(query)
        if not record:
            raise NotFound(f"File '{file_id}' does not exist")
        return FileEntry(**record)

    async def rename_file(self, file: FileEntry, name: str) -> FileEntry:
        """
        Charges one API call, then renames. The two steps are separate round trips:
        the charge stands even if the rename itself fails.
        """
        await self._accounting.increment_api_calls(file.user)
        await self._files.update({"identifier": file.identifier}, {"$set": {"name": name}})
        logger.info(f"[{file.identifier}] Renamed '{file.name}' to '{name}'.")
        return file.model_copy(update={"name": name})

    async def delete_file(self, file: FileEntry) -> FileEntry:
        """
        Remote object first, then bucket usage, then the record, then user stats.
        The first failing step aborts the rest; completed steps are not undone.
        """
        job_prefix = f"[{file.identifier}]"
        bucket_record = await self._buckets.find_one({"identifier": file.bucket_id})
        if not bucket_record:
            raise NotFound(f"Could not find the bucket '{file.bucket_name}'")
        bucket = BucketEntry(**bucket_record)

        await self._remote.delete_object(bucket.identifier, file.identifier)
        await self._buckets.update({"identifier": bucket.identifier}, {"$inc": {"memory_used": -file.size}})
        await self._files.remove({"identifier": file.identifier})
        await self._accounting.adjust_memory(bucket.user, -file.size, api_calls=1)
        logger.info(f"{job_prefix} Deleted file from bucket '{bucket.identifier}', released {file.size} bytes.")
        return file

    async def register_file(self, remote_id: str, bucket: BucketEntry, part: UploadPart, user: str,
                            is_public: bool, encoded: bool = False, size: Optional[int] = None) -> FileEntry:
        """Persists the record of an object whose bytes already exist remotely."""
        entry = FileEntry(
            identifier=remote_id,
            user=user,
            bucket_id=bucket.identifier,
            bucket_name=bucket.name,
            name=part.filename,
            size=part.byte_count if size is None else size,
            mime_type=part.content_type,
            is_public=is_public,
            public_url=build_public_url(self.public_url_base, bucket.identifier, remote_id),
            encoded=encoded,
        )
        record = await self._files.insert(entry.model_dump())
        logger.debug(f"[{remote_id}] Registered file '{entry.name}' ({entry.size} bytes).")
        return FileEntry(**record)

    async def _set_visibility(self, file: FileEntry, public: bool) -> FileEntry:
        if not await self._accounting.within_api_limit(file.user):
            raise QuotaExceeded("api_calls")
        await self._accounting.increment_api_calls(file.user)
        await self._remote.set_public(file.bucket_id, file.identifier, public)
        return await self.record_visibility(file, public)

    async def record_visibility(self, file: FileEntry, public: bool) -> FileEntry:
        """Record-only update, for an object whose ACL has already been changed. Not charged."""
        await self._files.update({"bucket_id": file.bucket_id, "identifier": file.identifier}, {"$set": {"is_public": public}})
        logger.info(f"[{file.identifier}] Visibility set to {'public' if public else 'private'}.")
        return file.model_copy(update={"is_public": public})

    async def make_public(self, file: FileEntry) -> FileEntry:
        return await self._set_visibility(file, True)

    async def make_private(self, file: FileEntry) -> FileEntry:
        return await self._set_visibility(file, False)
