# services/bucket_service/app/uploads.py
"""
Streaming upload pipeline.

    CHECKING -> STREAMING -> REGISTERING -> PUBLISHING (optional) -> COMPLETE
    any non-terminal state -> ABORTED

Remote bytes are written before any local bookkeeping, the opposite of the
deletion order. A failure after streaming therefore leaves extra remote or
local usage behind rather than quota charged for an object that never existed.
"""
from typing import List, Optional

from core.config import logger as core_logger
from core.errors import RemoteStoreError, UploadError
from core.models import BucketEntry, FileEntry, UploadPart, UploadState
from core.storage import RemoteObjectStore
from core.streams import ByteCounter, apply_stages, gzip_compress
from core.supabase_client import DocumentStore
from core.utils import generate_object_id, is_compressible
from .accounting import UsageAccounting
from .files import FileRegistry

logger = core_logger.getChild("BucketService").getChild("Uploads")

TERMINAL_STATES = {UploadState.COMPLETE, UploadState.ABORTED}


class UploadSession:
    """Tracks the state of one upload. Transitions out of a terminal state are refused."""

    def __init__(self, filename: str):
        self.filename = filename
        self.state = UploadState.CHECKING
        self.history: List[UploadState] = [UploadState.CHECKING]
        self.object_id: Optional[str] = None
        self.transferred = 0
        self.encoded = False

    def transition(self, state: UploadState) -> None:
        if self.state in TERMINAL_STATES:
            raise RuntimeError(f"Upload of '{self.filename}' already finished ({self.state.value})")
        logger.debug(f"[{self.object_id or self.filename}] {self.state.value} -> {state.value}")
        self.state = state
        self.history.append(state)


class UploadPipeline:
    def __init__(self, buckets: DocumentStore, remote: RemoteObjectStore, accounting: UsageAccounting, registry: FileRegistry):
        self._buckets = buckets
        self._remote = remote
        self._accounting = accounting
        self._registry = registry

    async def upload(self, part: UploadPart, bucket: BucketEntry, user: str, make_public: bool = True,
                     session: Optional[UploadSession] = None) -> FileEntry:
        session = session or UploadSession(part.filename)
        try:
            await self._accounting.check_upload_allowed(user, part.byte_count)

            session.transition(UploadState.STREAMING)
            await self._stream(part, bucket, session)

            await self._buckets.update({"identifier": bucket.identifier}, {"$inc": {"memory_used": session.transferred}})
            await self._accounting.adjust_memory(user, session.transferred, api_calls=1)

            session.transition(UploadState.REGISTERING)
            file = await self._registry.register_file(
                session.object_id, bucket, part, user, is_public=False,
                encoded=session.encoded, size=session.transferred,
            )

            if make_public:
                session.transition(UploadState.PUBLISHING)
                file = await self._publish(file)
        except BaseException:
            if session.state not in TERMINAL_STATES:
                session.transition(UploadState.ABORTED)
            raise

        session.transition(UploadState.COMPLETE)
        logger.info(f"[{file.identifier}] Uploaded '{file.name}' to bucket '{bucket.identifier}' ({session.transferred} bytes, encoded={session.encoded}).")
        return file

    async def _stream(self, part: UploadPart, bucket: BucketEntry, session: UploadSession) -> None:
        session.object_id = generate_object_id()
        session.encoded = is_compressible(part.content_type)

        meta = {}
        if part.content_type:
            meta["content_type"] = part.content_type
        if session.encoded:
            meta["encoded"] = True

        counter = ByteCounter(part.stream)
        stages = [gzip_compress] if session.encoded else []
        writer = None
        try:
            writer = await self._remote.open_write_stream(bucket.identifier, session.object_id, meta)
            async for chunk in apply_stages(counter, stages):
                await writer.write(chunk)
            await writer.close()
        except BaseException as e:
            logger.warning(f"[{session.object_id}] Upload of '{part.filename}' failed mid-stream: {e!r}")
            cleanup_error = await self._cleanup(bucket, session.object_id, writer)
            # Cancellation propagates unchanged
            if not isinstance(e, Exception):
                raise
            raise UploadError(part.filename, e, cleanup_error) from e

        session.transferred = counter.count

    async def _cleanup(self, bucket: BucketEntry, object_id: str, writer) -> Optional[Exception]:
        """Removes whatever partial object may exist. Returns the cleanup error instead of raising it."""
        try:
            if writer is not None:
                await writer.abort()
            await self._remote.delete_object(bucket.identifier, object_id)
        except Exception as cleanup_error:
            logger.error(f"[{object_id}] Could not clean up partial upload: {cleanup_error}", exc_info=False)
            return cleanup_error
        return None

    async def _publish(self, file: FileEntry) -> FileEntry:
        """
        The file is registered private. The record only turns public once the
        object itself is public, so a failed publish leaves a private file behind.
        """
        try:
            await self._remote.set_public(file.bucket_id, file.identifier, True)
        except RemoteStoreError:
            logger.error(f"[{file.identifier}] File registered but could not be made public.")
            raise
        return await self._registry.record_visibility(file, True)
