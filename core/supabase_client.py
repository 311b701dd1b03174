from supabase import create_client, PostgrestAPIError
from core.config import settings, logger as core_logger
from core.errors import PersistenceError
from typing import Optional, Dict, Any, List, Protocol
import asyncio
from functools import partial

logger = core_logger.getChild("DocumentStore")

# Cached client, created once per process
_supabase_client = None
_init_lock = asyncio.Lock()

async def get_supabase_client():
    """
    Initializes and returns the Supabase client (thread-safe).
    The bucket service always uses the service role key: owner scoping is done in the queries.
    """
    global _supabase_client

    if _supabase_client is None:
        async with _init_lock:
            # Double check after acquiring lock
            if _supabase_client is None:
                url = settings.SUPABASE_URL
                key = settings.SUPABASE_SERVICE_KEY
                if url and key:
                    logger.info("Initializing Supabase client with service role key...")
                    try:
                        # Run create_client in a thread pool since it's synchronous
                        loop = asyncio.get_running_loop()
                        _supabase_client = await loop.run_in_executor(
                            None,
                            partial(create_client, url, key)
                        )
                        logger.info("Supabase client initialized successfully.")
                    except Exception as e:
                        logger.error(f"Failed to initialize Supabase client: {e}", exc_info=True)
                        raise RuntimeError(f"Failed to initialize Supabase client: {e}")
                else:
                    logger.error("Supabase URL or Service Role Key not configured. Cannot create client.")
                    raise ValueError("Supabase URL or Service Role Key not configured")

    return _supabase_client


class DocumentStore(Protocol):
    """
    One logical collection of the document store.

    Queries are dicts of `column -> value` equality matches, optionally with an
    `"$or"` key holding a list of such dicts. Every call is a single round trip.
    """

    async def find(self, query: Dict[str, Any], offset: Optional[int] = None, limit: Optional[int] = None) -> List[Dict[str, Any]]: ...
    async def find_one(self, query: Dict[str, Any]) -> Optional[Dict[str, Any]]: ...
    async def count(self, query: Dict[str, Any]) -> int: ...
    async def insert(self, doc: Dict[str, Any]) -> Dict[str, Any]: ...
    async def update(self, query: Dict[str, Any], changes: Dict[str, Dict[str, Any]]) -> int: ...
    async def remove(self, query: Dict[str, Any]) -> int: ...


def _quote(value: Any) -> str:
    """Quotes a value for use inside a PostgREST `or=(...)` filter."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    escaped = str(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def build_or_filter(clauses: List[Dict[str, Any]]) -> str:
    """Translates `[{a: x}, {b: y, c: z}]` into `a.eq.x,and(b.eq.y,c.eq.z)`."""
    parts = []
    for clause in clauses:
        terms = [f"{column}.eq.{_quote(value)}" for column, value in clause.items()]
        if not terms:
            continue
        parts.append(terms[0] if len(terms) == 1 else f"and({','.join(terms)})")
    return ",".join(parts)


class SupabaseCollection:
    """DocumentStore backed by one Supabase table. Sync client calls run in worker threads."""

    def __init__(self, table: str, client=None, increment_function: Optional[str] = None):
        self.table = table
        self._client = client
        self._increment_function = increment_function or settings.INCREMENT_FUNCTION

    async def _get_client(self):
        if self._client is None:
            self._client = await get_supabase_client()
        return self._client

    def _apply_filters(self, builder, query: Dict[str, Any]):
        for column, value in query.items():
            if column == "$or":
                or_filter = build_or_filter(value)
                if or_filter:
                    builder = builder.or_(or_filter)
            elif value is None:
                builder = builder.is_(column, "null")
            else:
                builder = builder.eq(column, value)
        return builder

    async def _run(self, operation: str, db_call):
        try:
            return await asyncio.to_thread(db_call)
        except PostgrestAPIError as e:
            logger.error(f"[{self.table}] Supabase API error during {operation}: {e.message} (Code: {e.code}, Details: {e.details})", exc_info=False)
            raise PersistenceError(operation, self.table, e) from e
        except Exception as e:
            logger.error(f"[{self.table}] Unexpected error during {operation}: {e}", exc_info=True)
            raise PersistenceError(operation, self.table, e) from e

    async def find(self, query, offset=None, limit=None):
        supabase = await self._get_client()

        def db_call():
            builder = self._apply_filters(supabase.table(self.table).select("*"), query)
            if limit is not None:
                start = offset or 0
                builder = builder.range(start, start + limit - 1)
            elif offset:
                builder = builder.offset(offset)
            return builder.execute()

        response = await self._run("find", db_call)
        return list(response.data or [])

    async def find_one(self, query):
        supabase = await self._get_client()

        def db_call():
            builder = self._apply_filters(supabase.table(self.table).select("*"), query)
            return builder.limit(1).execute()

        response = await self._run("find_one", db_call)
        if response and response.data:
            return response.data[0]
        return None

    async def count(self, query):
        supabase = await self._get_client()

        def db_call():
            builder = supabase.table(self.table).select("*", count="exact", head=True)
            return self._apply_filters(builder, query).execute()

        response = await self._run("count", db_call)
        return response.count or 0

    async def insert(self, doc):
        supabase = await self._get_client()

        def db_call():
            return supabase.table(self.table).insert(doc).execute()

        response = await self._run("insert", db_call)
        if not response.data:
            raise PersistenceError("insert", self.table, RuntimeError("insert returned no rows"))
        return response.data[0]

    async def update(self, query, changes):
        """
        Applies `{"$set": {...}}` and/or `{"$inc": {...}}`. Returns the number of affected rows.

        `$inc` goes through a Postgres function so the increment happens in one
        statement; `$set` is a plain PATCH.
        """
        unknown = set(changes) - {"$set", "$inc"}
        if unknown:
            raise ValueError(f"Unsupported update operators: {sorted(unknown)}")
        if "$or" in query and "$inc" in changes:
            raise ValueError("$inc updates only support equality matches")

        supabase = await self._get_client()
        affected = 0

        if changes.get("$set"):
            def set_call():
                builder = supabase.table(self.table).update(changes["$set"])
                return self._apply_filters(builder, query).execute()

            response = await self._run("update", set_call)
            affected = len(response.data or [])

        if changes.get("$inc"):
            def inc_call():
                return supabase.rpc(self._increment_function, {
                    "p_table": self.table,
                    "p_match": query,
                    "p_deltas": changes["$inc"],
                }).execute()

            response = await self._run("increment", inc_call)
            affected = max(affected, int(response.data or 0))

        return affected

    async def remove(self, query):
        supabase = await self._get_client()

        def db_call():
            builder = supabase.table(self.table).delete()
            return self._apply_filters(builder, query).execute()

        response = await self._run("remove", db_call)
        return len(response.data or [])
