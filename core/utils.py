# core/utils.py
"""
Core Utility Functions.

Identifier generation and content-type helpers shared by the bucket service.
"""
import secrets
import string
from typing import Optional

ALPHANUMERIC = string.ascii_letters + string.digits

def generate_rand_string(length: int) -> str:
    """Random alphanumeric string. Collisions are not re-checked against the remote store."""
    return "".join(secrets.choice(ALPHANUMERIC) for _ in range(length))

def generate_bucket_id(prefix: str) -> str:
    """Remote container names must be lowercase."""
    return f"{prefix}-{generate_rand_string(8).lower()}"

def generate_object_id() -> str:
    return generate_rand_string(16)

def build_public_url(base: str, bucket_id: str, object_id: str) -> str:
    """Public download URL of an object. Stable for the lifetime of the file."""
    return f"{base.rstrip('/')}/{bucket_id}/{object_id}"

# Types that are already compressed (images, video, archives) gain nothing from gzip.
_COMPRESSIBLE_APPLICATION_TYPES = {
    "application/json",
    "application/javascript",
    "application/x-javascript",
    "application/ecmascript",
    "application/xml",
    "application/xhtml+xml",
    "application/rss+xml",
    "application/atom+xml",
    "application/rtf",
    "application/x-sh",
    "application/x-tar",
    "application/wasm",
    "application/vnd.ms-fontobject",
    "application/x-font-ttf",
    "application/x-font-opentype",
    "image/svg+xml",
    "image/bmp",
    "image/x-icon",
    "font/ttf",
    "font/otf",
}

def is_compressible(content_type: Optional[str]) -> bool:
    """
    Decides whether an upload of the given content type should be gzipped at rest.

    Parameters such as `; charset=utf-8` are ignored.
    """
    if not content_type:
        return False
    mime = content_type.split(";", 1)[0].strip().lower()
    if not mime:
        return False
    if mime.startswith("text/"):
        return True
    if mime.endswith("+json") or mime.endswith("+xml") or mime.endswith("+text"):
        return True
    return mime in _COMPRESSIBLE_APPLICATION_TYPES
