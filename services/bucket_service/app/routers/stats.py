# services/bucket_service/app/routers/stats.py
from fastapi import APIRouter, Body, Depends, status
import logging

from core.errors import ValidationError
from core.models import ServiceResponse, UpdateStatsRequest
from ..dependencies import get_current_user, get_manager
from ..manager import BucketManager

logger = logging.getLogger("BucketStore_Core").getChild("BucketService").getChild("StatsRouter")

router = APIRouter()


@router.get("/stats", response_model=ServiceResponse)
async def get_stats(user: str = Depends(get_current_user), manager: BucketManager = Depends(get_manager)):
    stats = await manager.accounting.get_stats(user)
    return ServiceResponse(status="success", data=stats.model_dump())


@router.post("/stats", response_model=ServiceResponse, status_code=status.HTTP_201_CREATED)
async def create_stats(user: str = Depends(get_current_user), manager: BucketManager = Depends(get_manager)):
    """Called by the account service when a user registers."""
    stats = await manager.accounting.create_stats(user)
    return ServiceResponse(status="success", data=stats.model_dump(), message="Storage stats created")


@router.put("/stats", response_model=ServiceResponse)
async def update_stats(
    payload: UpdateStatsRequest = Body(...),
    user: str = Depends(get_current_user),
    manager: BucketManager = Depends(get_manager),
):
    values = payload.model_dump(exclude_none=True)
    if not values:
        raise ValidationError("Nothing to update")
    await manager.accounting.update_stats(user, values)
    return ServiceResponse(status="success", data=values, message="Storage allocation updated")


@router.delete("/users/me", response_model=ServiceResponse)
async def remove_user(user: str = Depends(get_current_user), manager: BucketManager = Depends(get_manager)):
    """Called by the account service when a user is deleted."""
    removed = await manager.buckets.remove_user(user)
    logger.info(f"Removed storage for user '{user}'")
    return ServiceResponse(status="success", data=removed, message=f"Removed user data ({len(removed)} buckets)")
