"""
Source Routes
=============

API endpoints for managing scraper sources and triggering executions.

Version: 0.1.0
"""

import uuid
from datetime import datetime
from typing import Any

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from services.normative_scraper.dependencies import get_orchestrator, get_store
from services.normative_scraper.models import (
    ExecutionStatus,
    ScraperFrequency,
    ScraperSourceModel,
    SourceType,
)
from services.normative_scraper.orchestrator import ExecutionOrchestrator
from services.normative_scraper.store import DocumentStore
from shared.logging import get_logger
from shared.models.common import BaseResponse


logger = get_logger(__name__)

router = APIRouter()


class SourceResponse(BaseModel):
    """Scraper source with its run bookkeeping."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    description: str
    source_type: SourceType
    base_url: str
    endpoint_path: str | None = None
    full_url: str
    frequency: ScraperFrequency
    is_enabled: bool
    next_scheduled_at: datetime | None = None
    last_execution_at: datetime | None = None
    consecutive_failures: int
    total_executions: int
    total_documents_found: int
    last_error: str | None = None
    configuration: dict[str, Any] | None = None
    created_at: datetime


class SourceCreateRequest(BaseModel):
    """Request to register a new source."""

    name: str = Field(..., min_length=1, max_length=200)
    source_type: SourceType
    base_url: str = Field(..., min_length=1, max_length=500)
    endpoint_path: str | None = Field(default=None, max_length=500)
    frequency: ScraperFrequency = ScraperFrequency.DAILY
    description: str = ""
    configuration: dict[str, Any] | None = None


class SourceUpdateRequest(BaseModel):
    """Partial update of a source; omitted fields are left unchanged."""

    endpoint_path: str | None = Field(default=None, max_length=500)
    frequency: ScraperFrequency | None = None
    configuration: dict[str, Any] | None = None


class ExecutionResultResponse(BaseModel):
    """Outcome of an execution run inline."""

    model_config = ConfigDict(from_attributes=True)

    source_id: uuid.UUID
    success: bool
    status: ExecutionStatus
    execution_id: uuid.UUID | None = None
    source_name: str | None = None
    documents_found: int = 0
    documents_new: int = 0
    documents_duplicate: int = 0
    documents_error: int = 0
    duration_ms: int = 0
    error_message: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None


async def _get_source_or_404(store: DocumentStore, source_id: uuid.UUID) -> ScraperSourceModel:
    source = await store.get_source(source_id)
    if source is None or source.is_deleted:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Source not found: {source_id}",
        )
    return source


@router.get("/sources", response_model=list[SourceResponse])
async def list_sources(
    source_type: SourceType | None = Query(default=None, description="Filter by source type"),
    is_enabled: bool | None = Query(default=None, description="Filter by enablement"),
    store: DocumentStore = Depends(get_store),
) -> list[SourceResponse]:
    """List non-deleted sources."""
    sources = await store.list_sources(source_type=source_type, is_enabled=is_enabled)
    return [SourceResponse.model_validate(s) for s in sources]


@router.get("/sources/{source_id}", response_model=SourceResponse)
async def get_source(
    source_id: uuid.UUID,
    store: DocumentStore = Depends(get_store),
) -> SourceResponse:
    source = await _get_source_or_404(store, source_id)
    return SourceResponse.model_validate(source)


@router.post("/sources", response_model=SourceResponse, status_code=status.HTTP_201_CREATED)
async def create_source(
    request: SourceCreateRequest,
    store: DocumentStore = Depends(get_store),
) -> SourceResponse:
    """
    Register a new source.

    The source starts enabled and is scheduled according to its frequency.
    """
    try:
        source = ScraperSourceModel.create(
            name=request.name,
            source_type=request.source_type,
            base_url=request.base_url,
            frequency=request.frequency,
            description=request.description,
            endpoint_path=request.endpoint_path,
            configuration=request.configuration,
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e

    await store.save(source)

    logger.info("source_created", source_id=str(source.id), source_type=source.source_type.value)

    return SourceResponse.model_validate(source)


@router.put("/sources/{source_id}", response_model=SourceResponse)
async def update_source(
    source_id: uuid.UUID,
    request: SourceUpdateRequest,
    store: DocumentStore = Depends(get_store),
) -> SourceResponse:
    """
    Update the endpoint, configuration or frequency of a source.

    Execution history and counters are kept. A new frequency reschedules
    an enabled source.
    """
    source = await _get_source_or_404(store, source_id)

    if request.endpoint_path:
        source.set_endpoint(request.endpoint_path)
    if request.configuration is not None:
        source.set_configuration(request.configuration)
    if request.frequency is not None:
        source.update_frequency(request.frequency)
    await store.save(source)

    logger.info(
        "source_updated",
        source_id=str(source_id),
        fields=sorted(request.model_dump(exclude_none=True)),
    )

    return SourceResponse.model_validate(source)


@router.post("/sources/{source_id}/toggle", response_model=SourceResponse)
async def toggle_source(
    source_id: uuid.UUID,
    store: DocumentStore = Depends(get_store),
) -> SourceResponse:
    """
    Enable a disabled source or disable an enabled one.

    Enabling clears the failure streak so an auto-disabled source gets the
    full failure allowance again.
    """
    source = await _get_source_or_404(store, source_id)

    if source.is_enabled:
        source.disable()
    else:
        source.reset_failures()
    await store.save(source)

    logger.info("source_toggled", source_id=str(source_id), is_enabled=source.is_enabled)

    return SourceResponse.model_validate(source)


@router.delete("/sources/{source_id}", response_model=BaseResponse[None])
async def delete_source(
    source_id: uuid.UUID,
    store: DocumentStore = Depends(get_store),
) -> BaseResponse[None]:
    """Soft-delete a source. Its executions and documents are kept."""
    source = await _get_source_or_404(store, source_id)

    source.soft_delete()
    await store.save(source)

    logger.info("source_deleted", source_id=str(source_id))

    return BaseResponse(message=f"Source deleted: {source.name}")


@router.post("/sources/{source_id}/execute", response_model=None)
async def execute_source(
    source_id: uuid.UUID,
    background_tasks: BackgroundTasks,
    run_async: bool = Query(default=True, description="Run in the background"),
    triggered_by: str = Query(default="api", max_length=100),
    store: DocumentStore = Depends(get_store),
    orchestrator: ExecutionOrchestrator = Depends(get_orchestrator),
) -> Any:
    """
    Trigger an execution for one source.

    With ``run_async`` the execution is queued and 202 is returned
    immediately; progress is published through the notification sink.
    Otherwise the result is returned once the run finishes.
    """
    source = await _get_source_or_404(store, source_id)

    if run_async:
        background_tasks.add_task(orchestrator.run_execution, source.id, triggered_by)
        logger.info("execution_queued", source_id=str(source_id), triggered_by=triggered_by)

        return JSONResponse(
            status_code=status.HTTP_202_ACCEPTED,
            content={
                "success": True,
                "message": f"Execution queued for source: {source.name}",
                "source_id": str(source.id),
            },
        )

    result = await orchestrator.run_execution(source.id, triggered_by)
    return ExecutionResultResponse.model_validate(result)


@router.post("/execute-all", status_code=status.HTTP_202_ACCEPTED, response_model=BaseResponse[None])
async def execute_all_due(
    background_tasks: BackgroundTasks,
    orchestrator: ExecutionOrchestrator = Depends(get_orchestrator),
) -> BaseResponse[None]:
    """Queue a sequential run of every due source."""
    background_tasks.add_task(orchestrator.run_all_due)

    logger.info("due_run_queued")

    return BaseResponse(message="Execution of all due sources queued")
