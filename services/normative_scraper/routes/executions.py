"""
Execution Routes
================

API endpoints for inspecting and cancelling executions.

Version: 0.1.0
"""

import uuid
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict

from services.normative_scraper.dependencies import get_orchestrator, get_store
from services.normative_scraper.models import ExecutionStatus
from services.normative_scraper.orchestrator import ExecutionOrchestrator
from services.normative_scraper.store import DocumentStore
from shared.logging import get_logger
from shared.models.common import BaseResponse


logger = get_logger(__name__)

router = APIRouter()


class ExecutionSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    source_id: uuid.UUID
    triggered_by: str
    status: ExecutionStatus
    started_at: datetime
    completed_at: datetime | None = None
    duration_ms: int
    documents_found: int
    documents_new: int
    documents_duplicate: int
    documents_error: int
    error_message: str | None = None


class ExecutionDetail(ExecutionSummary):
    """Execution with its diagnostic log."""

    error_stack_trace: str | None = None
    execution_log: str | None = None


@router.get("/executions", response_model=list[ExecutionSummary])
async def list_executions(
    source_id: uuid.UUID | None = Query(default=None),
    execution_status: ExecutionStatus | None = Query(default=None, alias="status"),
    limit: int = Query(default=50, ge=1, le=500),
    store: DocumentStore = Depends(get_store),
) -> list[ExecutionSummary]:
    """List executions, most recent first."""
    executions = await store.list_executions(source_id=source_id, status=execution_status, limit=limit)
    return [ExecutionSummary.model_validate(e) for e in executions]


@router.get("/executions/{execution_id}", response_model=ExecutionDetail)
async def get_execution(
    execution_id: uuid.UUID,
    store: DocumentStore = Depends(get_store),
) -> ExecutionDetail:
    execution = await store.get_execution(execution_id)
    if execution is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Execution not found: {execution_id}",
        )
    return ExecutionDetail.model_validate(execution)


@router.post("/executions/{execution_id}/cancel", response_model=BaseResponse[None])
async def cancel_execution(
    execution_id: uuid.UUID,
    store: DocumentStore = Depends(get_store),
    orchestrator: ExecutionOrchestrator = Depends(get_orchestrator),
) -> BaseResponse[None]:
    """
    Request cancellation of an execution.

    A live run stops at its next check point; an orphaned RUNNING record
    is closed as cancelled directly.
    """
    execution = await store.get_execution(execution_id)
    if execution is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Execution not found: {execution_id}",
        )

    if not await orchestrator.cancel_execution(execution_id):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Execution is not running: {execution.status.value}",
        )

    return BaseResponse(message="Cancellation requested")
