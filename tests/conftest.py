import copy
from collections import Counter

import pytest

from core.config import settings
from core.errors import PersistenceError, RemoteStoreError
from services.bucket_service.app.batch import ItemErrorPolicy
from services.bucket_service.app.manager import BucketManager


def _matches(doc, query):
    for key, value in query.items():
        if key == "$or":
            if not any(_matches(doc, clause) for clause in value):
                return False
        elif doc.get(key) != value:
            return False
    return True


class FakeCollection:
    """In-memory DocumentStore that counts every call and can be told to fail."""

    def __init__(self, name):
        self.name = name
        self.docs = []
        self.calls = Counter()
        self.failures = {}

    def fail(self, method, exc=None):
        self.failures[method] = exc or PersistenceError(method, self.name, RuntimeError("boom"))

    def _enter(self, method):
        self.calls[method] += 1
        if method in self.failures:
            raise self.failures[method]

    @property
    def total_calls(self):
        return sum(self.calls.values())

    async def find(self, query, offset=None, limit=None):
        self._enter("find")
        found = [copy.deepcopy(d) for d in self.docs if _matches(d, query)]
        start = offset or 0
        end = start + limit if limit is not None else None
        return found[start:end]

    async def find_one(self, query):
        self._enter("find_one")
        for doc in self.docs:
            if _matches(doc, query):
                return copy.deepcopy(doc)
        return None

    async def count(self, query):
        self._enter("count")
        return sum(1 for d in self.docs if _matches(d, query))

    async def insert(self, doc):
        self._enter("insert")
        self.docs.append(copy.deepcopy(doc))
        return copy.deepcopy(doc)

    async def update(self, query, changes):
        self._enter("update")
        affected = 0
        for doc in self.docs:
            if _matches(doc, query):
                affected += 1
                doc.update(changes.get("$set", {}))
                for key, delta in changes.get("$inc", {}).items():
                    doc[key] = doc.get(key, 0) + delta
        return affected

    async def remove(self, query):
        self._enter("remove")
        before = len(self.docs)
        self.docs = [d for d in self.docs if not _matches(d, query)]
        return before - len(self.docs)


class FakeWriter:
    def __init__(self, store, container_id, object_id, metadata):
        self.store = store
        self.container_id = container_id
        self.object_id = object_id
        self.metadata = metadata
        self.chunks = []
        self.aborted = False

    async def write(self, chunk):
        if "write" in self.store.failures:
            raise self.store.failures["write"]
        self.chunks.append(chunk)

    async def close(self):
        self.store.containers[self.container_id][self.object_id] = {
            "data": b"".join(self.chunks),
            "metadata": self.metadata,
            "public": False,
        }

    async def abort(self):
        self.aborted = True


class FakeObjectStore:
    """In-memory RemoteObjectStore. Custom metadata values are stored as strings, like GCS."""

    def __init__(self, read_chunk_size=7):
        self.containers = {}
        self.calls = Counter()
        self.failures = {}
        self.writers = []
        self.read_chunk_size = read_chunk_size

    def fail(self, method, exc=None):
        self.failures[method] = exc or RemoteStoreError(method, "fake", RuntimeError("remote down"))

    def _enter(self, method):
        self.calls[method] += 1
        if method in self.failures:
            raise self.failures[method]

    @property
    def total_calls(self):
        return sum(self.calls.values())

    def put(self, container_id, object_id, data, encoded=False):
        self.containers.setdefault(container_id, {})[object_id] = {
            "data": data,
            "metadata": {"encoded": "true"} if encoded else {},
            "public": False,
        }

    async def create_container(self, container_id, meta=None):
        self._enter("create_container")
        self.containers[container_id] = {}

    async def delete_container(self, container_id):
        self._enter("delete_container")
        if self.containers.get(container_id):
            raise RemoteStoreError("delete_container", container_id, RuntimeError("container not empty"))
        self.containers.pop(container_id, None)

    async def open_write_stream(self, container_id, object_id, meta=None):
        self._enter("open_write_stream")
        if container_id not in self.containers:
            raise RemoteStoreError("open_write_stream", container_id, RuntimeError("no such container"))
        metadata = {k: str(v).lower() if isinstance(v, bool) else str(v) for k, v in (meta or {}).items() if k != "content_type"}
        writer = FakeWriter(self, container_id, object_id, metadata)
        self.writers.append(writer)
        return writer

    async def open_read_stream(self, container_id, object_id):
        self._enter("open_read_stream")
        data = self.containers[container_id][object_id]["data"]
        for start in range(0, len(data), self.read_chunk_size):
            yield data[start:start + self.read_chunk_size]

    async def delete_object(self, container_id, object_id):
        self._enter("delete_object")
        self.containers.get(container_id, {}).pop(object_id, None)

    async def get_metadata(self, container_id, object_id):
        self._enter("get_metadata")
        try:
            return dict(self.containers[container_id][object_id]["metadata"])
        except KeyError:
            raise RemoteStoreError("get_metadata", f"{container_id}/{object_id}", FileNotFoundError(object_id))

    async def set_public(self, container_id, object_id, public):
        self._enter("set_public")
        self.containers[container_id][object_id]["public"] = public


@pytest.fixture
def buckets_col():
    return FakeCollection("buckets")


@pytest.fixture
def files_col():
    return FakeCollection("files")


@pytest.fixture
def stats_col():
    return FakeCollection("storage_stats")


@pytest.fixture
def remote():
    return FakeObjectStore()


@pytest.fixture
def manager(buckets_col, files_col, stats_col, remote):
    return BucketManager(buckets_col, files_col, stats_col, remote, ItemErrorPolicy.COLLECT_AND_CONTINUE, settings)


@pytest.fixture
def strict_manager(buckets_col, files_col, stats_col, remote):
    return BucketManager(buckets_col, files_col, stats_col, remote, ItemErrorPolicy.FAIL_FAST, settings)


def add_stats(stats_col, user, memory_used=0, memory_allocated=1000, api_calls_used=0, api_calls_allocated=100):
    stats_col.docs.append({
        "user": user,
        "memory_used": memory_used,
        "memory_allocated": memory_allocated,
        "api_calls_used": api_calls_used,
        "api_calls_allocated": api_calls_allocated,
    })


def add_bucket(buckets_col, remote, user, name, identifier=None, memory_used=0):
    identifier = identifier or f"webinate-bucket-{name}"
    buckets_col.docs.append({"identifier": identifier, "name": name, "user": user, "created": 1, "memory_used": memory_used})
    remote.containers.setdefault(identifier, {})
    return identifier


def add_file(files_col, remote, user, bucket_id, bucket_name, identifier, size, data=None):
    files_col.docs.append({
        "identifier": identifier,
        "user": user,
        "bucket_id": bucket_id,
        "bucket_name": bucket_name,
        "name": f"{identifier}.txt",
        "size": size,
        "mime_type": "text/plain",
        "is_public": False,
        "public_url": f"https://storage.googleapis.com/{bucket_id}/{identifier}",
        "num_downloads": 0,
        "created": 1,
        "encoded": False,
    })
    remote.put(bucket_id, identifier, data if data is not None else b"x" * size)


def stats_of(stats_col, user):
    return next(d for d in stats_col.docs if d["user"] == user)


def bucket_of(buckets_col, identifier):
    return next(d for d in buckets_col.docs if d["identifier"] == identifier)
