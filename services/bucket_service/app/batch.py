# services/bucket_service/app/batch.py
"""
Batch removal of files, and the aggregation helper shared with bucket batch deletes.

Items are deleted concurrently with no concurrency cap. What happens when one
item fails is an explicit `ItemErrorPolicy`:

* COLLECT_AND_CONTINUE: the failure is logged, the item is left out of the
  result, the batch still succeeds (possibly with an empty result).
* FAIL_FAST: the first failure propagates to the caller. Deletions already in
  flight for other items are not cancelled.
"""
import asyncio
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence

from core.config import logger as core_logger
from core.errors import ValidationError
from core.models import FileEntry
from core.supabase_client import DocumentStore

logger = core_logger.getChild("BucketService").getChild("Batch")


class ItemErrorPolicy(str, Enum):
    COLLECT_AND_CONTINUE = "collect_and_continue"
    FAIL_FAST = "fail_fast"


def disjunction(field: str, values: Iterable[str], **scope: Any) -> Dict[str, Any]:
    """`{"$or": [{field: v1}, {field: v2}, ...], **scope}`"""
    query: Dict[str, Any] = {"$or": [{field: value} for value in values]}
    query.update({key: value for key, value in scope.items() if value is not None})
    return query


async def aggregate(
    items: Sequence[Any],
    action: Callable[[Any], Awaitable[Any]],
    identify: Callable[[Any], str],
    policy: ItemErrorPolicy,
    label: str,
) -> List[str]:
    """Runs `action` on every item concurrently and returns the identifiers of those that succeeded."""
    if not items:
        return []

    if policy == ItemErrorPolicy.FAIL_FAST:
        results = await asyncio.gather(*(action(item) for item in items))
        return [identify(result) for result in results]

    results = await asyncio.gather(*(action(item) for item in items), return_exceptions=True)
    succeeded = []
    for item, result in zip(items, results):
        if isinstance(result, BaseException):
            logger.warning(f"[{identify(item)}] Could not remove {label}: {result}")
        else:
            succeeded.append(identify(result))
    if len(succeeded) < len(items):
        logger.info(f"Removed {len(succeeded)} of {len(items)} {label}(s).")
    return succeeded


class BatchRemover:
    def __init__(self, files: DocumentStore, registry, policy: ItemErrorPolicy = ItemErrorPolicy.COLLECT_AND_CONTINUE):
        self._files = files
        self._registry = registry
        self.policy = policy

    async def remove_files(self, query: Dict[str, Any], policy: Optional[ItemErrorPolicy] = None) -> List[str]:
        """Deletes every file matching `query`. Returns the identifiers removed. `policy` overrides the remover's own."""
        records = await self._files.find(query)
        entries = [FileEntry(**record) for record in records]
        return await aggregate(entries, self._registry.delete_file, lambda f: f.identifier, policy or self.policy, "file")

    async def remove_files_by_id(self, file_ids: List[str], user: Optional[str] = None) -> List[str]:
        if not file_ids:
            return []
        return await self.remove_files(disjunction("identifier", file_ids, user=user))

    async def remove_files_by_bucket(self, bucket: str, user: Optional[str] = None) -> List[str]:
        """`bucket` may be either the bucket identifier or its name. Names are only unique per user."""
        if not bucket or not bucket.strip():
            raise ValidationError("Please specify a valid bucket")
        query: Dict[str, Any] = {"$or": [{"bucket_id": bucket}, {"bucket_name": bucket}]}
        if user:
            query["user"] = user
        return await self.remove_files(query)
