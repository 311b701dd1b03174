# services/bucket_service/app/dependencies.py
from fastapi import Header, HTTPException, Request, status
import logging

from .manager import BucketManager

logger = logging.getLogger("BucketStore_Core").getChild("BucketService").getChild("Dependencies")


def get_manager(request: Request) -> BucketManager:
    """Dependency function to get the bucket manager from app state."""
    manager = getattr(request.app.state, 'manager', None)
    if not manager:
        logger.error("Bucket manager dependency not met: Manager not available in application state.")
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Internal error: bucket manager not ready")
    return manager


async def get_current_user(x_user_id: str | None = Header(default=None)) -> str:
    """
    The owner is resolved upstream by the authentication layer and forwarded in `X-User-Id`.
    This service only scopes queries by it.
    """
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing X-User-Id header")
    return x_user_id.strip()
