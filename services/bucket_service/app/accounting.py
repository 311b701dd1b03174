# services/bucket_service/app/accounting.py
"""
Per-user usage accounting.

Every counter change is one atomic `$inc` against the user's single stats
record. The upload check is advisory: it does not reserve capacity, so two
concurrent uploads can both pass it before either commits.
"""
from typing import Dict, Optional

from core.config import settings, logger as core_logger
from core.errors import NotFound, QuotaExceeded
from core.models import StorageStats
from core.supabase_client import DocumentStore

logger = core_logger.getChild("BucketService").getChild("Accounting")


class UsageAccounting:
    def __init__(self, stats: DocumentStore, memory_allocated: Optional[int] = None, api_calls_allocated: Optional[int] = None):
        self._stats = stats
        self.memory_allocated = memory_allocated if memory_allocated is not None else settings.DEFAULT_MEMORY_ALLOCATED
        self.api_calls_allocated = api_calls_allocated if api_calls_allocated is not None else settings.DEFAULT_API_CALLS_ALLOCATED

    async def get_stats(self, user: str) -> StorageStats:
        record = await self._stats.find_one({"user": user})
        if not record:
            raise NotFound(f"Could not find storage data for the user '{user}'")
        return StorageStats(**record)

    async def check_upload_allowed(self, user: str, incoming_bytes: int) -> StorageStats:
        """Returns the current snapshot if `incoming_bytes` and one more call fit the allocation."""
        stats = await self.get_stats(user)
        if stats.memory_used + incoming_bytes >= stats.memory_allocated:
            logger.info(f"[{user}] Upload of {incoming_bytes} bytes refused: {stats.memory_used}/{stats.memory_allocated} bytes used.")
            raise QuotaExceeded("memory")
        if stats.api_calls_used + 1 >= stats.api_calls_allocated:
            logger.info(f"[{user}] Upload refused: API calls exhausted ({stats.api_calls_used}/{stats.api_calls_allocated}).")
            raise QuotaExceeded("api_calls")
        return stats

    async def within_api_limit(self, user: str) -> bool:
        record = await self._stats.find_one({"user": user})
        if not record:
            raise NotFound(f"Could not find the user {user}")
        stats = StorageStats(**record)
        return stats.api_calls_used + 1 < stats.api_calls_allocated

    async def _increment(self, user: str, deltas: Dict[str, int]) -> None:
        affected = await self._stats.update({"user": user}, {"$inc": deltas})
        if affected == 0:
            raise NotFound(f"Could not find storage data for the user '{user}'")

    async def increment_api_calls(self, user: str) -> None:
        await self._increment(user, {"api_calls_used": 1})

    async def adjust_memory(self, user: str, delta: int, api_calls: int = 0) -> None:
        """Adds `delta` bytes (negative to release) and optionally charges API calls in the same increment."""
        deltas = {"memory_used": delta}
        if api_calls:
            deltas["api_calls_used"] = api_calls
        await self._increment(user, deltas)

    async def create_stats(self, user: str) -> StorageStats:
        stats = StorageStats(
            user=user,
            memory_allocated=self.memory_allocated,
            api_calls_allocated=self.api_calls_allocated,
        )
        record = await self._stats.insert(stats.model_dump())
        logger.info(f"[{user}] Created storage stats.")
        return StorageStats(**record)

    async def delete_stats(self, user: str) -> int:
        removed = await self._stats.remove({"user": user})
        logger.info(f"[{user}] Removed {removed} storage stats record(s).")
        return removed

    async def update_stats(self, user: str, values: Dict[str, int]) -> int:
        """$set allocation fields on the user's record."""
        affected = await self._stats.update({"user": user}, {"$set": values})
        if affected == 0:
            raise NotFound(f"Could not find user '{user}'")
        return affected
