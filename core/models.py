# core/models.py
from pydantic import BaseModel, Field
from typing import List, Optional, Any, AsyncIterator
from enum import Enum
import time

# --- Utility Functions ---

def now_ms() -> int:
    """Current time as milliseconds since the epoch, the format stored in `created` columns."""
    return int(time.time() * 1000)

# --- Core Data Models (persisted record shapes) ---

class BucketEntry(BaseModel):
    """A user bucket, backed 1:1 by a remote storage container."""
    identifier: str = Field(..., description="Remote container name, globally unique and system generated")
    name: str = Field(..., description="Display name, unique per owner")
    user: str = Field(..., description="Owner of the bucket")
    created: int = Field(default_factory=now_ms)
    memory_used: int = Field(default=0, description="Sum of the sizes of the files in this bucket, in bytes")

    class Config:
        from_attributes = True

class FileEntry(BaseModel):
    """Metadata for a single object stored inside a bucket."""
    identifier: str = Field(..., description="Remote object key, system generated")
    user: str
    bucket_id: str = Field(..., description="Identifier of the bucket this file lives in")
    bucket_name: str = Field(..., description="Denormalised bucket display name")
    name: str = Field(..., description="User supplied file name, mutable")
    size: int = 0
    mime_type: Optional[str] = None
    is_public: bool = False
    public_url: str
    num_downloads: int = 0
    created: int = Field(default_factory=now_ms)
    encoded: bool = Field(default=False, description="Whether the remote bytes are gzip compressed at rest")

    class Config:
        from_attributes = True

class StorageStats(BaseModel):
    """Per-user usage and allocation counters."""
    user: str
    memory_used: int = 0
    memory_allocated: int = 0
    api_calls_used: int = 0
    api_calls_allocated: int = 0

    class Config:
        from_attributes = True

# --- Streaming Boundary Models ---

class UploadPart(BaseModel):
    """An inbound multipart file part: declared metadata plus its byte stream."""
    filename: str
    content_type: Optional[str] = None
    byte_count: int = Field(default=0, ge=0, description="Declared size; the transferred size is authoritative")
    stream: Any = Field(..., description="Async iterator yielding the part's bytes")

    class Config:
        arbitrary_types_allowed = True

class UploadState(str, Enum):
    CHECKING = "checking"
    STREAMING = "streaming"
    REGISTERING = "registering"
    PUBLISHING = "publishing"
    COMPLETE = "complete"
    ABORTED = "aborted"

class DownloadPlan(BaseModel):
    """Outcome of content-encoding negotiation for one download."""
    content_encoding: Optional[str] = Field(None, description="Value for the content-encoding header, if any")
    stages: List[str] = Field(default_factory=list, description="Names of the transform stages to apply, in order")

# --- Service Request/Response Models ---

class CreateBucketRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)

class RemoveBucketsRequest(BaseModel):
    names: List[str] = Field(default_factory=list)

class RemoveFilesRequest(BaseModel):
    ids: List[str] = Field(default_factory=list)

class RenameFileRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)

class UpdateStatsRequest(BaseModel):
    """Allocation changes applied with $set; unset fields are left untouched."""
    memory_allocated: Optional[int] = Field(None, ge=0)
    api_calls_allocated: Optional[int] = Field(None, ge=0)

class ServiceResponse(BaseModel):
    """Standard response wrapper for the bucket service."""
    status: str = Field(description="'success' or 'error'")
    data: Any | None = Field(default=None, description="The primary data payload (depends on the endpoint)")
    message: Optional[str] = Field(default=None, description="Optional status message or error details")
