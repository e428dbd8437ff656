from typing import Optional

from fastapi import Depends, FastAPI, File, HTTPException, Request, UploadFile
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from . import auth, exceptions
from .config import Settings, get_settings
from .dependencies import get_orchestrator
from .logger import get_logger
from .orchestrator import MODE_ASYNC, MODE_SYNC, IngestionOrchestrator
from .schemas import (
    AnalysisPayload,
    BackgroundUploadResponse,
    DocumentListResponse,
    DocumentRecord,
    UploadRequest,
    UploadResponse,
)

app = FastAPI(title="document_service")

logger = get_logger(__name__)

# Pipeline errors that reach the HTTP layer are the fatal-to-request ones
PIPELINE_ERROR_STATUS = {
    exceptions.PayloadTooLarge: (413, "PAYLOAD_TOO_LARGE"),
    exceptions.StorageUnavailable: (500, "STORAGE_ERROR"),
    exceptions.MissingConfiguration: (400, "MISSING_CONFIGURATION"),
    exceptions.DocumentNotFound: (404, "DOCUMENT_NOT_FOUND"),
}


# Global exception handlers
@app.exception_handler(exceptions.ServiceException)
async def service_exception_handler(request: Request, exc: exceptions.ServiceException):
    logger.error(f"Service Exception: {exc.error_code} - {exc.detail}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"error_code": exc.error_code, "message": exc.detail},
        headers=exc.headers,
    )


@app.exception_handler(exceptions.PipelineError)
async def pipeline_exception_handler(request: Request, exc: exceptions.PipelineError):
    status_code, error_code = 500, "PIPELINE_ERROR"
    for exc_type, mapped in PIPELINE_ERROR_STATUS.items():
        if isinstance(exc, exc_type):
            status_code, error_code = mapped
            break
    logger.error(f"Pipeline Exception: {error_code} - {exc}")
    return JSONResponse(
        status_code=status_code,
        content={"error_code": error_code, "message": str(exc)},
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    logger.error(f"HTTP Exception: {exc.status_code} - {exc.detail}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"error_code": f"HTTP_{exc.status_code}", "message": exc.detail},
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unexpected error: {str(exc)}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"error_code": "INTERNAL_ERROR", "message": "An unexpected error occurred"},
    )


@app.on_event("startup")
def startup_event():
    settings = get_settings()
    orchestrator = get_orchestrator()
    if not settings.extraction_configured:
        logger.warning("EXTRACTION_PROCESSOR is not set - uploads will be stored without text extraction")
    if settings.auto_create_resources and settings.s3_bucket:
        orchestrator.blob_store.ensure_bucket()
        orchestrator.record_store.ensure_table()


@app.on_event("shutdown")
def shutdown_event():
    get_orchestrator().shutdown(wait=True)


async def _read_upload(file: Optional[UploadFile], owner_id: str, settings: Settings) -> UploadRequest:
    if not settings.s3_bucket:
        raise exceptions.ValidationError("Missing blob bucket configuration")
    if file is None or not file.filename:
        raise exceptions.ValidationError("No file uploaded")

    # One byte past the limit is enough for the blob store to reject it
    content = await file.read(settings.max_upload_bytes + 1)
    if not content:
        raise exceptions.ValidationError("No file uploaded")
    return UploadRequest(
        owner_id=owner_id,
        content=content,
        mime_type=file.content_type or "application/octet-stream",
        filename=file.filename,
    )


@app.get("/health")
def health():
    return {"status": "ok"}


@app.get("/me")
def me(owner_id: str = Depends(auth.verify_user)):
    return {"userId": owner_id}


# POST /upload
@app.post("/upload", response_model=UploadResponse, response_model_exclude_none=True)
async def upload_document(
    file: Optional[UploadFile] = File(None),
    owner_id: str = Depends(auth.verify_user),
    settings: Settings = Depends(get_settings),
    orchestrator: IngestionOrchestrator = Depends(get_orchestrator),
):
    request = await _read_upload(file, owner_id, settings)
    result = await run_in_threadpool(orchestrator.ingest, request, MODE_SYNC)
    return UploadResponse(
        document_id=result.document_id,
        blob_path=result.blob_path,
        analysis=AnalysisPayload(
            id=result.document_id,
            text=result.extracted_text,
            processing_note=result.processing_note,
        ),
        status=result.status,
        message=result.message,
        warning=result.persistence_warning,
    )


# POST /upload/background
@app.post("/upload/background", response_model=BackgroundUploadResponse, response_model_exclude_none=True)
async def upload_document_background(
    file: Optional[UploadFile] = File(None),
    owner_id: str = Depends(auth.verify_user),
    settings: Settings = Depends(get_settings),
    orchestrator: IngestionOrchestrator = Depends(get_orchestrator),
):
    request = await _read_upload(file, owner_id, settings)
    result = await run_in_threadpool(orchestrator.ingest, request, MODE_ASYNC)
    return BackgroundUploadResponse(
        document_id=result.document_id,
        status=result.status,
        message=result.message,
        warning=result.persistence_warning,
    )


# GET /status/{document_id}
@app.get("/status/{document_id}")
def document_status(
    document_id: str,
    owner_id: str = Depends(auth.verify_user),
    orchestrator: IngestionOrchestrator = Depends(get_orchestrator),
):
    result = orchestrator.status(owner_id, document_id)
    if isinstance(result, DocumentRecord):
        return result.public_dict()
    return result.model_dump(by_alias=True, mode="json")


# GET /documents
@app.get("/documents", response_model=DocumentListResponse)
def list_documents(
    owner_id: str = Depends(auth.verify_user),
    orchestrator: IngestionOrchestrator = Depends(get_orchestrator),
):
    return orchestrator.list_documents(owner_id)
