"""
Document Routes
===============

API endpoints for reviewing harvested documents and promoting them to
normative changes.

Version: 0.1.0
"""

import uuid
from datetime import date, datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict, Field

from services.normative_scraper.dependencies import get_promoter, get_store
from services.normative_scraper.models import DocumentStatus, NormativePriority, ScrapedDocumentModel
from services.normative_scraper.promoter import BatchPromoter
from services.normative_scraper.store import DocumentStore
from shared.logging import get_logger


logger = get_logger(__name__)

router = APIRouter()


class DocumentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    execution_id: uuid.UUID
    source_id: uuid.UUID
    external_id: str
    code: str | None = None
    title: str
    description: str | None = None
    category: str | None = None
    publish_date: date | None = None
    effective_date: date | None = None
    document_url: str | None = None
    pdf_url: str | None = None
    status: DocumentStatus
    processing_error: str | None = None
    normative_change_id: uuid.UUID | None = None
    processed_at: datetime | None = None
    created_at: datetime


class ProcessDocumentRequest(BaseModel):
    """Promotion options for a single document."""

    priority: NormativePriority = NormativePriority.MEDIUM
    affected_validators: list[str] | None = None
    processed_by: str = Field(default="api", max_length=100)


class ProcessDocumentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    document_id: uuid.UUID
    success: bool
    status: DocumentStatus | None = None
    normative_change_id: uuid.UUID | None = None
    error_message: str | None = None


class BatchPromotionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total_processed: int
    success_count: int
    ignored_count: int
    error_count: int
    cancelled: bool
    results: list[ProcessDocumentResponse]


class DocumentReasonRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=1000)


@router.get("/documents", response_model=list[DocumentResponse])
async def list_documents(
    document_status: DocumentStatus | None = Query(default=None, alias="status"),
    source_id: uuid.UUID | None = Query(default=None),
    execution_id: uuid.UUID | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=1000),
    store: DocumentStore = Depends(get_store),
) -> list[DocumentResponse]:
    """List harvested documents, most recent first."""
    documents = await store.list_documents(
        status=document_status,
        source_id=source_id,
        execution_id=execution_id,
        limit=limit,
    )
    return [DocumentResponse.model_validate(d) for d in documents]


@router.post("/documents/process-all", response_model=BatchPromotionResponse)
async def process_all_documents(
    execution_id: uuid.UUID | None = Query(default=None, description="Only documents of this execution"),
    auto_priority: bool = Query(default=True, description="Infer priority from keywords"),
    promoter: BatchPromoter = Depends(get_promoter),
) -> BatchPromotionResponse:
    """Promote every NEW document."""
    batch = await promoter.promote_all_pending(execution_id=execution_id, auto_priority=auto_priority)
    return BatchPromotionResponse.model_validate(batch)


@router.post("/documents/{document_id}/process", response_model=ProcessDocumentResponse)
async def process_document(
    document_id: uuid.UUID,
    request: ProcessDocumentRequest | None = None,
    promoter: BatchPromoter = Depends(get_promoter),
) -> ProcessDocumentResponse:
    """
    Promote one document to a normative change.

    Non-promotable documents and code collisions are reported with
    ``success=false`` and the document status.
    """
    request = request or ProcessDocumentRequest()

    result = await promoter.promote_document(
        document_id,
        actor=request.processed_by,
        priority=request.priority,
        affected_validators=request.affected_validators,
    )

    if result.status is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Document not found: {document_id}",
        )

    return ProcessDocumentResponse.model_validate(result)


async def _get_pending_document_or_error(store: DocumentStore, document_id: uuid.UUID) -> ScrapedDocumentModel:
    document = await store.get_document(document_id)
    if document is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Document not found: {document_id}",
        )

    if not document.is_promotable:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Document already processed with status: {document.status.value}",
        )
    return document


@router.post("/documents/{document_id}/ignore", response_model=DocumentResponse)
async def ignore_document(
    document_id: uuid.UUID,
    request: DocumentReasonRequest,
    store: DocumentStore = Depends(get_store),
) -> DocumentResponse:
    """Mark a pending document as ignored so it is never promoted."""
    document = await _get_pending_document_or_error(store, document_id)

    document.mark_ignored(request.reason)
    await store.save(document)

    logger.info("document_ignored", document_id=str(document_id))

    return DocumentResponse.model_validate(document)


@router.post("/documents/{document_id}/review", response_model=DocumentResponse)
async def flag_document_for_review(
    document_id: uuid.UUID,
    request: DocumentReasonRequest,
    store: DocumentStore = Depends(get_store),
) -> DocumentResponse:
    """
    Flag a pending document for manual review.

    The document stays promotable; the reason is kept as its processing note.
    """
    document = await _get_pending_document_or_error(store, document_id)

    document.mark_needs_review(request.reason)
    await store.save(document)

    logger.info("document_flagged_for_review", document_id=str(document_id))

    return DocumentResponse.model_validate(document)
