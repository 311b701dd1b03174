# core/errors.py
"""
Error taxonomy shared by every bucket service module.

Quota and conflict errors carry messages that can be shown to end users as-is.
Remote and persistence errors wrap the underlying exception together with the
operation name and the resource it was acting on.
"""
from typing import Optional


class BucketStoreError(Exception):
    """Base class for all errors raised by the bucket service."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFound(BucketStoreError):
    """A bucket, file, stats record or user does not exist."""


class Conflict(BucketStoreError):
    """A bucket with the same name is already registered for the owner."""


class ValidationError(BucketStoreError):
    """The caller supplied malformed input."""


QUOTA_MESSAGES = {
    "memory": "You do not have enough memory allocated. Please upgrade your account for more memory",
    "api_calls": "You have reached your API call limit. Please upgrade your plan for more API calls",
}


class QuotaExceeded(BucketStoreError):
    def __init__(self, kind: str):
        if kind not in QUOTA_MESSAGES:
            raise ValueError(f"Unknown quota kind '{kind}'")
        super().__init__(QUOTA_MESSAGES[kind])
        self.kind = kind


class RemoteStoreError(BucketStoreError):
    """Wraps any failure of the remote object store."""

    def __init__(self, operation: str, resource: str, cause: Optional[BaseException] = None):
        super().__init__(f"Remote store '{operation}' failed for '{resource}': {cause}")
        self.operation = operation
        self.resource = resource
        self.cause = cause


class PersistenceError(BucketStoreError):
    """Wraps any failure of the document store."""

    def __init__(self, operation: str, resource: str, cause: Optional[BaseException] = None):
        super().__init__(f"Document store '{operation}' failed on '{resource}': {cause}")
        self.operation = operation
        self.resource = resource
        self.cause = cause


class UploadError(BucketStoreError):
    """
    A stream-level failure during upload.

    `cause` is always the original stream error. `cleanup_error` is set when
    deleting the partial remote object also failed.
    """

    def __init__(self, filename: str, cause: BaseException, cleanup_error: Optional[BaseException] = None):
        message = f"Could not upload the file '{filename}': {cause}"
        if cleanup_error is not None:
            message += f" (cleanup of the partial object also failed: {cleanup_error})"
        super().__init__(message)
        self.filename = filename
        self.cause = cause
        self.cleanup_error = cleanup_error
