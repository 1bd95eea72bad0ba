import asyncio
import logging
import os
from contextlib import asynccontextmanager
from typing import Annotated, List, Optional

import uvicorn
from fastapi import APIRouter, Depends, FastAPI, File, Form, Query, Request, Response, UploadFile, status
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from filedrop.config import Settings, get_settings
from filedrop.errors import FileDropError, UploadFailedError
from filedrop.logging_utils import setup_logging, RequestLoggingMiddleware, log_upload_data
from filedrop.metrics import get_metrics, get_metrics_content_type, record_upload_outcome
from filedrop.schemas import (
    Attachment,
    ErrorResponse,
    HealthResponse,
    MessageResponse,
    Submission,
    UploadResponse,
)
from filedrop.service import MessageService
from filedrop.storage import LocalBlobStore, SqlRecordStore


# Setup structured JSON logging
setup_logging(get_settings().LOG_LEVEL)
logger = logging.getLogger(__name__)

router = APIRouter()


def build_message_service(settings: Settings) -> MessageService:
    """
    Create the record/blob store handles for the configured backend.

    Called once per process; the handles are shared by every request.
    """
    if settings.STORAGE_BACKEND == "local":
        record_store = SqlRecordStore(settings.DATABASE_URL)
        record_store.init_db()
        blob_store = LocalBlobStore(
            settings.UPLOAD_DIR,
            settings.PUBLIC_BASE_URL,
            url_prefix=settings.UPLOAD_PREFIX,
        )
    else:
        from filedrop.firebase import CloudStorageBlobStore, FirestoreRecordStore, init_firebase_app

        firebase_app = init_firebase_app(settings.FIREBASE_STORAGE_BUCKET, settings.FIREBASE_CREDENTIALS)
        record_store = FirestoreRecordStore.from_app(firebase_app, settings.MESSAGES_COLLECTION)
        blob_store = CloudStorageBlobStore.from_app(firebase_app)

    logger.info(f"Using {settings.STORAGE_BACKEND} storage backend")
    return MessageService(
        record_store,
        blob_store,
        upload_prefix=settings.UPLOAD_PREFIX,
        timeout_seconds=settings.BACKEND_TIMEOUT_SECONDS,
        cleanup_orphaned_blobs=settings.CLEANUP_ORPHANED_BLOBS,
    )


async def read_submission(text: Optional[str], file: Optional[UploadFile]) -> Submission:
    """Validate the multipart fields into a Submission, reading the file into memory."""
    attachment = None
    if file is not None:
        attachment = Attachment(
            content=await file.read(),
            original_name=file.filename,
            mime_type=file.content_type or "application/octet-stream",
        )
    return Submission(text=text, attachment=attachment)


def get_message_service(request: Request) -> MessageService:
    return request.app.state.message_service


# =============================================================================
# Health Check Routes
# =============================================================================

@router.get("/health/live", response_model=HealthResponse)
async def health_live() -> HealthResponse:
    """
    Liveness probe - always returns 200 once the app is running.
    """
    return HealthResponse(status="ok")


@router.get("/health/ready", response_model=HealthResponse)
async def health_ready(
    response: Response,
    service: MessageService = Depends(get_message_service),
) -> HealthResponse:
    """
    Readiness probe - returns 200 only if the record store is reachable,
    otherwise 503 (Service Unavailable).
    """
    try:
        healthy = await asyncio.wait_for(
            asyncio.to_thread(service.record_store.check_health),
            timeout=service.timeout_seconds,
        )
    except asyncio.TimeoutError:
        logger.error("Record store health check timed out")
        healthy = False

    if not healthy:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(status="not_ready", reason="Record store not reachable")

    return HealthResponse(status="ready")


# =============================================================================
# Messages Routes
# =============================================================================

@router.post(
    "/messages",
    response_model=UploadResponse,
    responses={500: {"model": ErrorResponse, "description": "Upload failed"}},
)
async def upload_message(
    request: Request,
    text: Annotated[Optional[str], Form(description="Message text")] = None,
    file: Annotated[Optional[UploadFile], File(description="Optional attachment")] = None,
    service: MessageService = Depends(get_message_service),
) -> UploadResponse:
    """
    Post a message with an optional file attachment.

    Multipart fields:
        - text: optional message text
        - file: optional single file; stored, made public, linked by fileUrl

    Response:
        - id: identifier of the new message
    """
    has_file = file is not None and bool(file.filename)
    try:
        submission = await read_submission(text, file if has_file else None)
    except Exception as e:
        logger.exception(f"Failed to read submission: {e!r}")
        record_upload_outcome("error")
        log_upload_data(request, has_file=has_file, result="error")
        raise UploadFailedError() from e
    logger.info(f"POST /messages: has_text={submission.text is not None}, has_file={has_file}")

    try:
        message_id = await service.submit(submission)
    except UploadFailedError:
        log_upload_data(request, has_file=has_file, result="error")
        raise

    log_upload_data(request, message_id=message_id, has_file=has_file, result="created")
    return UploadResponse(id=message_id)


@router.get(
    "/messages",
    response_model=List[MessageResponse],
    responses={500: {"model": ErrorResponse, "description": "Fetch failed"}},
)
async def list_messages(
    search: Annotated[Optional[str], Query(description="Case-insensitive substring over text and fileName")] = None,
    service: MessageService = Depends(get_message_service),
) -> List[MessageResponse]:
    """
    List all messages, most recent first.

    Query Parameters:
        - search: keep messages whose text or fileName contains this
          string, ignoring case; empty or absent returns everything
    """
    logger.info(f"GET /messages: search={search!r}")
    messages = await service.list_messages(search)
    logger.info(f"GET /messages: returned {len(messages)} messages")
    return [MessageResponse.from_stored(m) for m in messages]


# =============================================================================
# Metrics Route
# =============================================================================

@router.get("/metrics")
async def metrics() -> Response:
    """
    Expose Prometheus-style metrics.
    """
    return Response(
        content=get_metrics(),
        media_type=get_metrics_content_type()
    )


# =============================================================================
# Application Factory
# =============================================================================

async def filedrop_error_handler(request: Request, exc: FileDropError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=ErrorResponse(error=exc.public_message).model_dump(),
    )


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Store handles live for the whole process
        if not hasattr(app.state, "message_service"):
            app.state.message_service = build_message_service(settings)
        yield

    app = FastAPI(
        title="filedrop",
        description="Post messages with optional file attachments and search them",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = settings

    app.add_middleware(RequestLoggingMiddleware)
    app.add_exception_handler(FileDropError, filedrop_error_handler)
    app.include_router(router)

    if settings.STORAGE_BACKEND == "local":
        os.makedirs(settings.UPLOAD_DIR, exist_ok=True)
        mount_path = "/" + settings.UPLOAD_PREFIX.strip("/")
        app.mount(mount_path, StaticFiles(directory=settings.UPLOAD_DIR), name="uploads")

    return app


app = create_app()


def run() -> None:
    """Console entry point: serve the app on HOST:PORT."""
    settings = get_settings()
    logger.info(f"Server starting on port {settings.PORT}")
    uvicorn.run(app, host=settings.HOST, port=settings.PORT, log_config=None)


if __name__ == "__main__":
    run()
