# services/bucket_service/app/manager.py
"""
BucketManager wires the bucket service components together.

Instances are constructed explicitly and passed to whoever needs them (the
FastAPI app keeps one on `app.state.manager`); there is no module-level
instance.
"""
from typing import Optional

from core.config import Settings, settings as default_settings, logger as core_logger
from core.storage import GCSObjectStore, RemoteObjectStore
from core.supabase_client import DocumentStore, SupabaseCollection
from .accounting import UsageAccounting
from .batch import BatchRemover, ItemErrorPolicy
from .buckets import BucketLifecycle
from .downloads import DownloadResponder
from .files import FileRegistry
from .uploads import UploadPipeline

logger = core_logger.getChild("BucketService").getChild("Manager")


class BucketManager:
    def __init__(self, buckets: DocumentStore, files: DocumentStore, stats: DocumentStore, remote: RemoteObjectStore,
                 policy: ItemErrorPolicy = ItemErrorPolicy.COLLECT_AND_CONTINUE, config: Optional[Settings] = None):
        config = config or default_settings
        self.accounting = UsageAccounting(stats, config.DEFAULT_MEMORY_ALLOCATED, config.DEFAULT_API_CALLS_ALLOCATED)
        self.files = FileRegistry(files, buckets, remote, self.accounting, config.PUBLIC_URL_BASE)
        self.remover = BatchRemover(files, self.files, policy)
        self.buckets = BucketLifecycle(buckets, remote, self.accounting, self.remover, policy,
                                       prefix=config.BUCKET_PREFIX, location=config.BUCKET_LOCATION)
        self.uploads = UploadPipeline(buckets, remote, self.accounting, self.files)
        self.downloads = DownloadResponder(remote)


def build_manager(config: Optional[Settings] = None) -> BucketManager:
    """Production wiring: Supabase tables for the three collections, Google Cloud Storage for objects."""
    config = config or default_settings
    policy = ItemErrorPolicy(config.BATCH_ERROR_POLICY)
    manager = BucketManager(
        buckets=SupabaseCollection(config.BUCKETS_TABLE, increment_function=config.INCREMENT_FUNCTION),
        files=SupabaseCollection(config.FILES_TABLE, increment_function=config.INCREMENT_FUNCTION),
        stats=SupabaseCollection(config.STATS_TABLE, increment_function=config.INCREMENT_FUNCTION),
        remote=GCSObjectStore(chunk_size=config.STREAM_CHUNK_SIZE),
        policy=policy,
        config=config,
    )
    logger.info(f"Bucket manager ready (batch error policy: {policy.value}).")
    return manager
