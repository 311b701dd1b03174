# services/bucket_service/app/buckets.py
"""
Bucket lifecycle: each bucket is a remote container plus a local record.

Creation is remote-first: if the container cannot be created nothing is
written locally, but if the local insert fails afterwards the container is
leaked. Deletion is children-first (files, then container, then record) and
is safe to retry after a partial failure.
"""
from typing import Any, Dict, List, Optional

from core.config import settings, logger as core_logger
from core.errors import Conflict, NotFound
from core.models import BucketEntry
from core.storage import RemoteObjectStore
from core.supabase_client import DocumentStore
from core.utils import generate_bucket_id
from .accounting import UsageAccounting
from .batch import BatchRemover, ItemErrorPolicy, aggregate, disjunction

logger = core_logger.getChild("BucketService").getChild("Buckets")


class BucketLifecycle:
    def __init__(self, buckets: DocumentStore, remote: RemoteObjectStore, accounting: UsageAccounting,
                 remover: BatchRemover, policy: ItemErrorPolicy = ItemErrorPolicy.COLLECT_AND_CONTINUE,
                 prefix: Optional[str] = None, location: Optional[str] = None):
        self._buckets = buckets
        self._remote = remote
        self._accounting = accounting
        self._remover = remover
        self.policy = policy
        self.prefix = prefix or settings.BUCKET_PREFIX
        self.location = location or settings.BUCKET_LOCATION

    async def list_buckets(self, user: Optional[str] = None) -> List[BucketEntry]:
        query = {"user": user} if user else {}
        records = await self._buckets.find(query)
        return [BucketEntry(**record) for record in records]

    async def lookup_bucket(self, bucket: str, user: Optional[str] = None) -> Optional[BucketEntry]:
        """By identifier when no user is given, by (user, name) otherwise. None when nothing matches."""
        query = {"user": user, "name": bucket} if user else {"identifier": bucket}
        record = await self._buckets.find_one(query)
        return BucketEntry(**record) if record else None

    async def create_bucket(self, name: str, user: str) -> BucketEntry:
        if await self.lookup_bucket(name, user):
            raise Conflict(f"A Bucket with the name '{name}' has already been registered")

        bucket_id = generate_bucket_id(self.prefix)
        await self._remote.create_container(bucket_id, {"location": self.location})

        entry = BucketEntry(identifier=bucket_id, name=name, user=user)
        record = await self._buckets.insert(entry.model_dump())
        await self._accounting.increment_api_calls(user)
        logger.info(f"[{bucket_id}] Created bucket '{name}' for user '{user}'.")
        return BucketEntry(**record)

    async def delete_bucket(self, bucket: BucketEntry) -> BucketEntry:
        """Removes the bucket's files (reversing their usage), the remote container and the record."""
        job_prefix = f"[{bucket.identifier}]"
        # Re-read so a bucket removed by an earlier call is reported, not half-deleted again
        if not await self.lookup_bucket(bucket.identifier):
            raise NotFound(f"Could not find the bucket '{bucket.name}'")

        # Any file that cannot be removed fails the whole deletion, leaving the record for a retry
        removed = await self._remover.remove_files({"bucket_id": bucket.identifier}, policy=ItemErrorPolicy.FAIL_FAST)
        logger.debug(f"{job_prefix} Removed {len(removed)} file(s) before deleting the container.")
        await self._remote.delete_container(bucket.identifier)
        await self._buckets.remove({"identifier": bucket.identifier})
        await self._accounting.increment_api_calls(bucket.user)
        logger.info(f"{job_prefix} Deleted bucket '{bucket.name}'.")
        return bucket

    async def delete_buckets_matching(self, query: Dict[str, Any]) -> List[str]:
        records = await self._buckets.find(query)
        entries = [BucketEntry(**record) for record in records]
        return await aggregate(entries, self.delete_bucket, lambda b: b.identifier, self.policy, "bucket")

    async def delete_buckets_by_name(self, names: List[str], user: str) -> List[str]:
        if not names:
            return []
        return await self.delete_buckets_matching(disjunction("name", names, user=user))

    async def delete_buckets_by_owner(self, user: str) -> List[str]:
        return await self.delete_buckets_matching({"user": user})

    async def remove_user(self, user: str) -> List[str]:
        """
        Account deletion hook: drops every bucket of the user, then the stats record.
        Buckets go first because each file deletion still charges the stats record.
        """
        removed = await self.delete_buckets_by_owner(user)
        await self._accounting.delete_stats(user)
        logger.info(f"[{user}] Removed all storage data for user ({len(removed)} bucket(s)).")
        return removed
