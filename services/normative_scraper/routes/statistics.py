"""
Statistics Routes
=================

Dashboard counters for sources, recent executions and pending documents.

Version: 0.1.0
"""

from datetime import UTC, datetime, timedelta

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict

from services.normative_scraper.dependencies import get_orchestrator, get_store
from services.normative_scraper.orchestrator import ExecutionOrchestrator
from services.normative_scraper.store import DocumentStore


router = APIRouter()


class StatisticsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total_sources: int
    enabled_sources: int
    disabled_sources: int
    failing_sources: int
    executions_last_24h: int
    successful_executions_last_24h: int
    failed_executions_last_24h: int
    documents_found_last_24h: int
    new_documents_last_24h: int
    pending_documents: int
    running_executions: int = 0
    sources_by_type: dict[str, int]


@router.get("/statistics", response_model=StatisticsResponse)
async def get_statistics(
    store: DocumentStore = Depends(get_store),
    orchestrator: ExecutionOrchestrator = Depends(get_orchestrator),
) -> StatisticsResponse:
    stats = await store.get_statistics(since=datetime.now(UTC) - timedelta(hours=24))

    response = StatisticsResponse.model_validate(stats)
    response.running_executions = len(orchestrator.registry)
    return response
