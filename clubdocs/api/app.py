"""
clubdocs HTTP API — FastAPI surface over the document workflow.

Routes (all under /clubs/{club_id}/documents):
    GET    /                          list club documents (leader/admin)
    GET    /assigned                  documents assigned to me
    POST   /                          create (admin)
    GET    /{document_id}             read
    PUT    /{document_id}             edit metadata / assignees / status
    PATCH  /{document_id}/status      manual status override
    DELETE /{document_id}             delete
    POST   /{document_id}/submit      member upload (multipart "file")
    PATCH  /{document_id}/member-status  leader/admin sets a member's state
    PATCH  /{document_id}/review      admin approve / request revision
    POST   /bulk-update-status | /bulk-assign | /bulk-delete | /bulk-export

Errors map by kind: validation 400, forbidden 403, not_found 404,
conflict 409.

Run:
    clubdocs serve
    uvicorn clubdocs.api.app:create_app --factory --port 8000
"""

from __future__ import annotations

import logging
import time
import uuid
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, File, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

import clubdocs
from clubdocs.api.dependencies import ServiceContainer, build_container, get_actor, get_container
from clubdocs.db.base import engine_registry
from clubdocs.db.session import ENGINE_NAME
from clubdocs.documents.models import (
    BulkAssignRequest,
    BulkDeleteRequest,
    BulkExportRequest,
    BulkUpdateStatusRequest,
    CreateDocumentRequest,
    ExportFormat,
    ReviewSubmissionRequest,
    SetSubmissionStatusRequest,
    UpdateDocumentRequest,
    UpdateDocumentStatusRequest,
)
from clubdocs.engine.context import ActorContext
from clubdocs.engine.errors import ClubDocsError
from clubdocs.engine.logging import log, log_api_request

logger = logging.getLogger("clubdocs.api.app")


def _error_body(kind: str, message: str, **extra: Any) -> Dict[str, Any]:
    body: Dict[str, Any] = {"success": False, "error": kind, "message": message}
    body.update({k: v for k, v in extra.items() if v is not None})
    return body


def create_app(container: Optional[ServiceContainer] = None) -> FastAPI:
    """Build the FastAPI app. Services come from clubdocs.yaml unless supplied."""
    container = container or build_container()

    app = FastAPI(
        title=container.config.api.title,
        description="Club document assignment & review workflow",
        version=clubdocs.__version__,
    )
    app.state.container = container

    if container.config.api.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=container.config.api.cors_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    # -----------------------------------------------------------------------
    # Request logging + error mapping
    # -----------------------------------------------------------------------

    @app.middleware("http")
    async def request_log(request: Request, call_next):
        request.state.request_id = request.headers.get("X-Request-ID") or f"req_{uuid.uuid4().hex[:12]}"
        start = time.monotonic()
        response = await call_next(request)
        duration_ms = round((time.monotonic() - start) * 1000, 2)
        log(log_api_request(
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=duration_ms,
            user_id=request.headers.get("X-User-Id"),
            request_id=request.state.request_id,
            error_kind=getattr(request.state, "error_kind", None),
        ))
        response.headers["X-Request-ID"] = request.state.request_id
        return response

    @app.exception_handler(ClubDocsError)
    async def handle_workflow_error(request: Request, exc: ClubDocsError):
        request.state.error_kind = exc.kind
        if exc.http_status >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc!r}")
        return JSONResponse(
            status_code=exc.http_status,
            content=_error_body(
                exc.kind,
                exc.message,
                mismatch_count=getattr(exc, "mismatch_count", None),
                field=getattr(exc, "field", None),
            ),
        )

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        request.state.error_kind = "validation"
        return JSONResponse(
            status_code=400,
            content=_error_body(
                "validation",
                "Request validation failed",
                validation_errors=[
                    {"loc": list(e.get("loc", ())), "msg": e.get("msg")} for e in exc.errors()
                ],
            ),
        )

    # -----------------------------------------------------------------------
    # Endpoints
    # -----------------------------------------------------------------------

    @app.get("/health")
    def health_check():
        """Public health check, no auth required."""
        db_ok = (
            engine_registry.health_check(ENGINE_NAME)
            if ENGINE_NAME in engine_registry.registered_names
            else None
        )
        return {"status": "healthy", "version": clubdocs.__version__, "database": db_ok}

    prefix = "/clubs/{club_id}/documents"

    @app.get(prefix)
    def list_club_documents(
        club_id: int,
        actor: ActorContext = Depends(get_actor),
        container: ServiceContainer = Depends(get_container),
    ):
        return {"success": True, "documents": container.documents.list_club_documents(actor, club_id)}

    @app.get(prefix + "/assigned")
    def list_assigned_documents(
        club_id: int,
        actor: ActorContext = Depends(get_actor),
        container: ServiceContainer = Depends(get_container),
    ):
        return {"success": True, "documents": container.documents.list_assigned_documents(actor, club_id)}

    @app.post(prefix, status_code=201)
    def create_document(
        club_id: int,
        payload: CreateDocumentRequest,
        actor: ActorContext = Depends(get_actor),
        container: ServiceContainer = Depends(get_container),
    ):
        return {"success": True, "document": container.documents.create_document(actor, club_id, payload)}

    @app.post(prefix + "/bulk-update-status")
    def bulk_update_status(
        club_id: int,
        payload: BulkUpdateStatusRequest,
        actor: ActorContext = Depends(get_actor),
        container: ServiceContainer = Depends(get_container),
    ):
        result = container.bulk.bulk_update_status(actor, club_id, payload)
        return {"success": True, "updated_count": result.affected, "result": result}

    @app.post(prefix + "/bulk-assign")
    def bulk_assign(
        club_id: int,
        payload: BulkAssignRequest,
        actor: ActorContext = Depends(get_actor),
        container: ServiceContainer = Depends(get_container),
    ):
        result = container.bulk.bulk_assign(actor, club_id, payload)
        return {"success": True, "assigned_count": result.affected, "result": result}

    @app.post(prefix + "/bulk-delete")
    def bulk_delete(
        club_id: int,
        payload: BulkDeleteRequest,
        actor: ActorContext = Depends(get_actor),
        container: ServiceContainer = Depends(get_container),
    ):
        result = container.bulk.bulk_delete(actor, club_id, payload)
        return {"success": True, "deleted_count": result.affected, "result": result}

    @app.post(prefix + "/bulk-export")
    def bulk_export(
        club_id: int,
        payload: BulkExportRequest,
        actor: ActorContext = Depends(get_actor),
        container: ServiceContainer = Depends(get_container),
    ):
        result = container.bulk.bulk_export(actor, club_id, payload)
        if result.format == ExportFormat.CSV:
            return Response(
                content=result.content,
                media_type=result.media_type,
                headers={"Content-Disposition": f'attachment; filename="{result.filename}"'},
            )
        return {"success": True, "documents": result.rows, "count": result.count}

    @app.get(prefix + "/{document_id}")
    def get_document(
        club_id: int,
        document_id: int,
        actor: ActorContext = Depends(get_actor),
        container: ServiceContainer = Depends(get_container),
    ):
        return {"success": True, "document": container.documents.get_document(actor, club_id, document_id)}

    @app.put(prefix + "/{document_id}")
    def update_document(
        club_id: int,
        document_id: int,
        payload: UpdateDocumentRequest,
        actor: ActorContext = Depends(get_actor),
        container: ServiceContainer = Depends(get_container),
    ):
        document = container.documents.update_document(actor, club_id, document_id, payload)
        return {"success": True, "document": document}

    @app.patch(prefix + "/{document_id}/status")
    def update_document_status(
        club_id: int,
        document_id: int,
        payload: UpdateDocumentStatusRequest,
        actor: ActorContext = Depends(get_actor),
        container: ServiceContainer = Depends(get_container),
    ):
        document = container.documents.update_document_status(actor, club_id, document_id, payload)
        return {"success": True, "document": document}

    @app.delete(prefix + "/{document_id}")
    def delete_document(
        club_id: int,
        document_id: int,
        actor: ActorContext = Depends(get_actor),
        container: ServiceContainer = Depends(get_container),
    ):
        document = container.documents.delete_document(actor, club_id, document_id)
        return {"success": True, "message": "Document deleted", "document": document}

    @app.post(prefix + "/{document_id}/submit")
    def submit_assignment(
        club_id: int,
        document_id: int,
        file: UploadFile = File(...),
        actor: ActorContext = Depends(get_actor),
        container: ServiceContainer = Depends(get_container),
    ):
        document = container.documents.submit_assignment(
            actor, club_id, document_id,
            data=file.file,
            filename=file.filename or "file",
            mime_type=file.content_type,
        )
        return {"success": True, "document": document}

    @app.patch(prefix + "/{document_id}/member-status")
    def set_submission_status(
        club_id: int,
        document_id: int,
        payload: SetSubmissionStatusRequest,
        actor: ActorContext = Depends(get_actor),
        container: ServiceContainer = Depends(get_container),
    ):
        document = container.documents.set_submission_status(actor, club_id, document_id, payload)
        return {"success": True, "document": document}

    @app.patch(prefix + "/{document_id}/review")
    def review_submission(
        club_id: int,
        document_id: int,
        payload: ReviewSubmissionRequest,
        actor: ActorContext = Depends(get_actor),
        container: ServiceContainer = Depends(get_container),
    ):
        document = container.documents.review_submission(actor, club_id, document_id, payload)
        return {"success": True, "document": document}

    return app
