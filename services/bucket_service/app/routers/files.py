# services/bucket_service/app/routers/files.py
from fastapi import APIRouter, Body, Depends, Request
from fastapi.responses import StreamingResponse
import logging

from core.models import RemoveFilesRequest, RenameFileRequest, ServiceResponse
from ..dependencies import get_current_user, get_manager
from ..manager import BucketManager

logger = logging.getLogger("BucketStore_Core").getChild("BucketService").getChild("FileRouter")

router = APIRouter()


@router.get("/{file_id}", response_model=ServiceResponse)
async def get_file(file_id: str, user: str = Depends(get_current_user), manager: BucketManager = Depends(get_manager)):
    file = await manager.files.get_file(file_id, user)
    return ServiceResponse(status="success", data=file.model_dump())


@router.get("/{file_id}/download")
async def download_file(file_id: str, request: Request, manager: BucketManager = Depends(get_manager)):
    """Downloads are served by file id alone; possession of the id is the capability."""
    file = await manager.files.get_file(file_id)
    plan, body = await manager.downloads.download_file(file, request.headers.get("accept-encoding"))
    headers = {}
    if plan.content_encoding:
        headers["content-encoding"] = plan.content_encoding
    logger.info(f"[{file_id}] Streaming download (encoding={plan.content_encoding or 'identity'}).")
    return StreamingResponse(body, media_type=file.mime_type or "application/octet-stream", headers=headers)


@router.put("/{file_id}/name", response_model=ServiceResponse)
async def rename_file(
    file_id: str,
    payload: RenameFileRequest = Body(...),
    user: str = Depends(get_current_user),
    manager: BucketManager = Depends(get_manager),
):
    file = await manager.files.get_file(file_id, user)
    renamed = await manager.files.rename_file(file, payload.name)
    return ServiceResponse(status="success", data=renamed.model_dump(), message=f"Renamed file to '{payload.name}'")


@router.put("/{file_id}/public", response_model=ServiceResponse)
async def make_public(file_id: str, user: str = Depends(get_current_user), manager: BucketManager = Depends(get_manager)):
    file = await manager.files.get_file(file_id, user)
    updated = await manager.files.make_public(file)
    return ServiceResponse(status="success", data=updated.model_dump(), message="File is now public")


@router.put("/{file_id}/private", response_model=ServiceResponse)
async def make_private(file_id: str, user: str = Depends(get_current_user), manager: BucketManager = Depends(get_manager)):
    file = await manager.files.get_file(file_id, user)
    updated = await manager.files.make_private(file)
    return ServiceResponse(status="success", data=updated.model_dump(), message="File is now private")


@router.delete("", response_model=ServiceResponse)
async def remove_files(
    payload: RemoveFilesRequest = Body(...),
    user: str = Depends(get_current_user),
    manager: BucketManager = Depends(get_manager),
):
    removed = await manager.remover.remove_files_by_id(payload.ids, user)
    return ServiceResponse(status="success", data=removed, message=f"Removed {len(removed)} files")
