# services/bucket_service/app/downloads.py
import re
from typing import AsyncIterator, Optional, Tuple

from core.config import logger as core_logger
from core.models import DownloadPlan, FileEntry
from core.storage import RemoteObjectStore
from core.streams import apply_stages, resolve_stages

logger = core_logger.getChild("BucketService").getChild("Downloads")

_GZIP_TOKEN = re.compile(r"\bgzip\b", re.IGNORECASE)
_DEFLATE_TOKEN = re.compile(r"\bdeflate\b", re.IGNORECASE)


def plan_download(encoded: bool, accept_encoding: Optional[str]) -> DownloadPlan:
    """
    Picks the content-encoding and transform stages for one response.
    gzip is preferred over deflate; at most one transcoding step is ever applied.
    """
    accept_encoding = accept_encoding or ""

    if _GZIP_TOKEN.search(accept_encoding):
        if encoded:
            return DownloadPlan(content_encoding="gzip")
        # Raw bytes go out unmodified and unlabelled even though the client could take gzip
        return DownloadPlan()

    if _DEFLATE_TOKEN.search(accept_encoding):
        if encoded:
            return DownloadPlan(content_encoding="deflate", stages=["gunzip", "deflate"])
        return DownloadPlan(content_encoding="deflate", stages=["deflate"])

    if encoded:
        return DownloadPlan(stages=["gunzip"])
    return DownloadPlan()


def is_encoded(metadata: dict) -> bool:
    """Custom metadata values come back from the store as strings."""
    value = metadata.get("encoded", False)
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return bool(value)


class DownloadResponder:
    def __init__(self, remote: RemoteObjectStore):
        self._remote = remote

    async def download_file(self, file: FileEntry, accept_encoding: Optional[str]) -> Tuple[DownloadPlan, AsyncIterator[bytes]]:
        """
        Reads the stored encoding from the object's metadata and returns the plan plus the response body stream.
        A metadata failure surfaces as RemoteStoreError: the file record itself was already found.
        """
        metadata = await self._remote.get_metadata(file.bucket_id, file.identifier)
        plan = plan_download(is_encoded(metadata), accept_encoding)
        logger.debug(f"[{file.identifier}] Download plan: encoding={plan.content_encoding}, stages={plan.stages}")

        source = self._remote.open_read_stream(file.bucket_id, file.identifier)
        return plan, apply_stages(source, resolve_stages(plan.stages))
