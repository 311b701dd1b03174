# services/bucket_service/app/routers/buckets.py
from fastapi import APIRouter, Body, Depends, File, Query, UploadFile, status
import logging
from typing import AsyncIterator

from core.config import settings
from core.errors import NotFound
from core.models import CreateBucketRequest, RemoveBucketsRequest, ServiceResponse, UploadPart
from ..dependencies import get_current_user, get_manager
from ..manager import BucketManager

logger = logging.getLogger("BucketStore_Core").getChild("BucketService").getChild("BucketRouter")

router = APIRouter()


async def _read_upload(upload: UploadFile, chunk_size: int) -> AsyncIterator[bytes]:
    while True:
        chunk = await upload.read(chunk_size)
        if not chunk:
            break
        yield chunk


async def _require_bucket(manager: BucketManager, name: str, user: str):
    bucket = await manager.buckets.lookup_bucket(name, user)
    if not bucket:
        raise NotFound(f"Could not find the bucket '{name}'")
    return bucket


@router.get("", response_model=ServiceResponse)
async def list_buckets(user: str = Depends(get_current_user), manager: BucketManager = Depends(get_manager)):
    buckets = await manager.buckets.list_buckets(user)
    return ServiceResponse(status="success", data=[b.model_dump() for b in buckets], message=f"Found {len(buckets)} buckets")


@router.post("", response_model=ServiceResponse, status_code=status.HTTP_201_CREATED)
async def create_bucket(
    payload: CreateBucketRequest = Body(...),
    user: str = Depends(get_current_user),
    manager: BucketManager = Depends(get_manager),
):
    logger.info(f"Creating bucket '{payload.name}' for user '{user}'")
    bucket = await manager.buckets.create_bucket(payload.name, user)
    return ServiceResponse(status="success", data=bucket.model_dump(), message=f"Bucket '{payload.name}' created")


@router.delete("", response_model=ServiceResponse)
async def remove_buckets(
    payload: RemoveBucketsRequest = Body(...),
    user: str = Depends(get_current_user),
    manager: BucketManager = Depends(get_manager),
):
    removed = await manager.buckets.delete_buckets_by_name(payload.names, user)
    return ServiceResponse(status="success", data=removed, message=f"Removed {len(removed)} buckets")


@router.get("/{name}/files", response_model=ServiceResponse)
async def list_bucket_files(
    name: str,
    index: int | None = Query(default=None, ge=0),
    limit: int | None = Query(default=None, gt=0, le=1000),
    user: str = Depends(get_current_user),
    manager: BucketManager = Depends(get_manager),
):
    bucket = await _require_bucket(manager, name, user)
    files = await manager.files.list_files_by_bucket(bucket, index, limit)
    count = await manager.files.count_files({"bucket_id": bucket.identifier})
    return ServiceResponse(
        status="success",
        data={"count": count, "files": [f.model_dump() for f in files]},
        message=f"Found {count} files",
    )


@router.post("/{name}/upload", response_model=ServiceResponse, status_code=status.HTTP_201_CREATED)
async def upload_file(
    name: str,
    file: UploadFile = File(...),
    make_public: bool = Query(default=True),
    user: str = Depends(get_current_user),
    manager: BucketManager = Depends(get_manager),
):
    bucket = await _require_bucket(manager, name, user)
    part = UploadPart(
        filename=file.filename or "upload",
        content_type=file.content_type,
        byte_count=file.size or 0,
        stream=_read_upload(file, settings.STREAM_CHUNK_SIZE),
    )
    try:
        entry = await manager.uploads.upload(part, bucket, user, make_public=make_public)
    finally:
        await file.close()
    return ServiceResponse(status="success", data=entry.model_dump(), message=f"Upload of '{entry.name}' complete")
