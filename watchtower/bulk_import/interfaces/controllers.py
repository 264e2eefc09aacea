"""
Bulk Import Controllers (API Routes)
=====================================

FastAPI routes for bulk postmortem import.

Controllers are thin - they delegate to application services. Uploads
return as soon as the files are stored; processing continues in the
background and is followed through the session and item endpoints.
"""

from typing import List, NoReturn, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, Request, UploadFile, status

from watchtower.core import (
    ApplicationException,
    ImportConflictException,
    ResourceNotFoundException,
    RetryBlockedException,
    ValidationException,
)
from watchtower.bulk_import.application import UploadedFile
from watchtower.bulk_import.application.dto import (
    AnswerRequest,
    AnswerResponse,
    ImportItemResponse,
    ImportSessionResponse,
    RetryFailedResponse,
    SessionDetailResponse,
    SessionListResponse,
    SkippedItem,
    UploadResponse,
)
from watchtower.bulk_import.services import BulkImportServices
from watchtower.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/bulk-import", tags=["Bulk Import"])


# ========== Example payloads for Swagger ==========

ITEM_RESPONSE_EXAMPLE = {
    "id": "4f1c2a6e-8a51-4c2e-9d0b-1f6a3c1d2e10",
    "sessionId": "9b7e0c55-2d7a-4c1f-8a43-6f0e5b2a9c31",
    "fileName": "INC0012345_postmortem.pdf",
    "fileSize": 184320,
    "fileType": "application/pdf",
    "status": "awaiting_input",
    "currentStep": "generating_postmortem",
    "statusMessage": "1 question(s) need an answer before the postmortem is final",
    "extractedMetadata": {
        "incidentNumber": "INC0012345",
        "title": "Payment gateway timeouts",
        "severity": None,
        "detectedAt": "2024-01-15T10:00:00+00:00"
    },
    "aiQuestions": [
        {
            "id": "0d3f4a1e-5b6c-4d7e-8f90-a1b2c3d4e5f6",
            "question": "What was the severity of this incident?",
            "field": "severity",
            "answered": False,
            "answer": None
        }
    ],
    "reviewNotes": [
        {"field": "regulatoryEntity", "question": "Which regulator was notified?"}
    ],
    "incidentId": "c2a1d8f0-3e4b-4a5c-9d6e-7f8a9b0c1d2e",
    "postmortemId": "e5f6a7b8-c9d0-4e1f-a2b3-c4d5e6f7a8b9",
    "errorMessage": None,
    "createdAt": "2024-01-15T10:00:00Z",
    "updatedAt": "2024-01-15T10:02:30Z"
}


# ========== Dependencies ==========

def get_bulk_import_services(request: Request) -> BulkImportServices:
    """Get bulk import services from app state."""
    services = getattr(request.app.state, "bulk_import", None)
    if services is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Bulk import service not initialized"
        )
    return services


def _raise_http(exc: ApplicationException, correlation_id: str) -> NoReturn:
    """Translate a domain exception into an HTTP error."""
    if isinstance(exc, ResourceNotFoundException):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, ValidationException):
        code = status.HTTP_400_BAD_REQUEST
    elif isinstance(exc, ImportConflictException):
        code = status.HTTP_409_CONFLICT
    elif isinstance(exc, RetryBlockedException):
        code = status.HTTP_410_GONE
    else:
        raise exc

    logger.info(
        "Bulk import request rejected",
        extra={"correlation_id": correlation_id, "status_code": code, "error": exc.message}
    )
    raise HTTPException(status_code=code, detail=exc.message)


# ========== Route Handlers ==========

@router.post(
    "/upload",
    response_model=UploadResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Upload postmortem documents",
    description="""
    Upload a batch of postmortem documents for import.

    **Accepted files**: PDF, Word (`.docx`) and plain text, up to 50 MB
    each and 20 per upload.

    Each file becomes an import item that runs through text extraction, AI
    metadata extraction, ServiceNow lookup, incident creation and AI
    postmortem generation in the background. The response returns as soon as
    the files are stored.

    Set `autoPublish=true` to publish generated postmortems immediately
    instead of leaving them as drafts.
    """,
    responses={
        400: {"description": "No files, too many files, unsupported type or file too large"}
    }
)
async def upload_documents(
    request: Request,
    files: Optional[List[UploadFile]] = File(None, description="Postmortem documents"),
    auto_publish: bool = Form(False, alias="autoPublish"),
    services: BulkImportServices = Depends(get_bulk_import_services)
):
    correlation_id = getattr(request.state, "correlation_id", "unknown")

    uploads = [
        UploadedFile(
            file_name=f.filename or "document",
            content_type=f.content_type,
            content=await f.read(),
        )
        for f in files or []
    ]

    logger.info(
        "Bulk upload received",
        extra={"correlation_id": correlation_id, "files": len(uploads), "auto_publish": auto_publish}
    )

    try:
        session, items = await services.uploads.upload(uploads, auto_publish=auto_publish)
    except ApplicationException as e:
        _raise_http(e, correlation_id)

    return UploadResponse(
        session_id=session.id,
        total_files=session.total_files,
        message=f"{session.total_files} file(s) uploaded - processing started",
        items=[ImportItemResponse.from_domain(item) for item in items],
    )


@router.get(
    "/sessions",
    response_model=SessionListResponse,
    summary="List import sessions",
    description="Recent import sessions, newest first, with their status and counters."
)
async def list_sessions(
    limit: int = Query(50, ge=1, le=200, description="Maximum sessions to return"),
    services: BulkImportServices = Depends(get_bulk_import_services)
):
    sessions = await services.queries.list_sessions(limit)
    return SessionListResponse(
        sessions=[ImportSessionResponse.from_domain(s) for s in sessions],
        total=len(sessions),
    )


@router.get(
    "/sessions/{session_id}",
    response_model=SessionDetailResponse,
    summary="Get import session",
    description="""
    Session status with every item.

    Session status is `awaiting_input` when any item waits for answers,
    `completed` once every item is completed or failed and `processing`
    otherwise.
    """,
    responses={404: {"description": "Session not found"}}
)
async def get_session(
    request: Request,
    session_id: str,
    services: BulkImportServices = Depends(get_bulk_import_services)
):
    try:
        session, items = await services.queries.get_session(session_id)
    except ApplicationException as e:
        _raise_http(e, getattr(request.state, "correlation_id", "unknown"))

    detail = ImportSessionResponse.from_domain(session).model_dump()
    return SessionDetailResponse(
        **detail,
        items=[ImportItemResponse.from_domain(item) for item in items],
    )


@router.get(
    "/items/{item_id}",
    response_model=ImportItemResponse,
    summary="Get import item",
    description="Pipeline status, extracted metadata, open questions and review notes of one item.",
    responses={
        200: {
            "description": "Import item",
            "content": {"application/json": {"example": ITEM_RESPONSE_EXAMPLE}}
        },
        404: {"description": "Item not found"}
    }
)
async def get_item(
    request: Request,
    item_id: str,
    services: BulkImportServices = Depends(get_bulk_import_services)
):
    try:
        item = await services.queries.get_item(item_id)
    except ApplicationException as e:
        _raise_http(e, getattr(request.state, "correlation_id", "unknown"))
    return ImportItemResponse.from_domain(item)


@router.post(
    "/items/{item_id}/answer",
    response_model=AnswerResponse,
    summary="Answer AI questions",
    description="""
    Answer the questions blocking an item.

    Returns `partial` while questions remain open. Once every question is
    answered the answers are applied to the extracted metadata and the item
    resumes at the step it paused at (`resuming`).

    For the `incidentNumber` question, answer `generate` to create a
    number automatically.
    """,
    responses={
        404: {"description": "Item not found"},
        409: {"description": "Item is not awaiting input or is already being processed"}
    }
)
async def answer_questions(
    request: Request,
    item_id: str,
    payload: AnswerRequest,
    services: BulkImportServices = Depends(get_bulk_import_services)
):
    correlation_id = getattr(request.state, "correlation_id", "unknown")
    try:
        result = await services.answers.submit_answers(item_id, payload.as_mapping())
    except ApplicationException as e:
        _raise_http(e, correlation_id)

    return AnswerResponse(
        item_id=result.item_id,
        status=result.status,
        remaining_questions=result.remaining_questions,
        message=result.message,
    )


@router.post(
    "/items/{item_id}/retry",
    response_model=ImportItemResponse,
    summary="Retry a failed item",
    description="""
    Reset a failed item and run the whole pipeline again.

    Fails with 410 when the uploaded file no longer exists; the item is left
    unchanged in that case.
    """,
    responses={
        400: {"description": "Item is not failed"},
        404: {"description": "Item not found"},
        409: {"description": "Item is already being processed"},
        410: {"description": "Uploaded file no longer exists"}
    }
)
async def retry_item(
    request: Request,
    item_id: str,
    services: BulkImportServices = Depends(get_bulk_import_services)
):
    correlation_id = getattr(request.state, "correlation_id", "unknown")
    try:
        item = await services.retries.retry_item(item_id)
    except ApplicationException as e:
        _raise_http(e, correlation_id)
    return ImportItemResponse.from_domain(item)


@router.post(
    "/sessions/{session_id}/retry-failed",
    response_model=RetryFailedResponse,
    summary="Retry all failed items of a session",
    description="""
    Retry every failed item of a session.

    Items whose uploaded file no longer exists are skipped and listed with a
    reason.
    """,
    responses={
        400: {"description": "Session has no failed items"},
        404: {"description": "Session not found"}
    }
)
async def retry_failed(
    request: Request,
    session_id: str,
    services: BulkImportServices = Depends(get_bulk_import_services)
):
    correlation_id = getattr(request.state, "correlation_id", "unknown")
    try:
        report = await services.retries.retry_failed(session_id)
    except ApplicationException as e:
        _raise_http(e, correlation_id)

    return RetryFailedResponse(
        session_id=report.session_id,
        retried_count=report.retried_count,
        skipped_count=report.skipped_count,
        retried=report.retried,
        skipped=[SkippedItem(**s) for s in report.skipped],
    )


bulk_import_router = router
