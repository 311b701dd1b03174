# services/bucket_service/app/main.py
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import logging

from core.errors import (
    BucketStoreError, Conflict, NotFound, PersistenceError,
    QuotaExceeded, RemoteStoreError, UploadError, ValidationError,
)
from core.models import ServiceResponse
from .manager import build_manager

# Use logger configured in core.config
logger = logging.getLogger("BucketStore_Core").getChild("BucketService")

ERROR_STATUS = {
    NotFound: status.HTTP_404_NOT_FOUND,
    Conflict: status.HTTP_409_CONFLICT,
    QuotaExceeded: status.HTTP_403_FORBIDDEN,
    ValidationError: status.HTTP_400_BAD_REQUEST,
    UploadError: status.HTTP_500_INTERNAL_SERVER_ERROR,
    RemoteStoreError: status.HTTP_502_BAD_GATEWAY,
    PersistenceError: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Builds the bucket manager once at startup and keeps it on app.state."""
    if getattr(app.state, 'manager', None) is None:
        logger.info("Bucket service lifespan startup: building bucket manager.")
        try:
            app.state.manager = build_manager()
        except Exception as e:
            logger.error(f"Failed to build bucket manager during startup: {e}", exc_info=True)
            app.state.manager = None
    yield # Application runs
    logger.info("Bucket service lifespan shutdown.")


# --- FastAPI App Instance ---
app = FastAPI(
    title="Bucket Storage Service",
    description="User buckets and files on remote object storage, with per-user quotas.",
    version="1.0.0",
    lifespan=lifespan
)


@app.exception_handler(BucketStoreError)
async def bucket_store_error_handler(request: Request, exc: BucketStoreError):
    status_code = next(
        (code for error_type, code in ERROR_STATUS.items() if isinstance(exc, error_type)),
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected ({status_code}): {exc.message}")
    return JSONResponse(status_code=status_code, content=ServiceResponse(status="error", message=exc.message).model_dump())


# --- Health Check ---
@app.get("/health", response_model=ServiceResponse, tags=["Meta"])
async def health_check(request: Request):
    manager_status = "initialized" if getattr(request.app.state, 'manager', None) else "NOT initialized"
    return ServiceResponse(status="success", message=f"Bucket service is running (Manager: {manager_status})")


# --- Routing ---
# Import routers AFTER app is defined
from .routers import buckets, files, stats

app.include_router(buckets.router, prefix="/buckets", tags=["Buckets"])
app.include_router(files.router, prefix="/files", tags=["Files"])
app.include_router(stats.router, tags=["Stats"])
