"""
In-Memory Document Store
========================

Dictionary-backed store for development and tests. Enforces the same
uniqueness rules as the database schema.

Version: 0.1.0
"""

import uuid
from collections import Counter
from datetime import datetime

from services.normative_scraper.exceptions import (
    DuplicateChangeCodeError,
    DuplicateDocumentError,
)
from services.normative_scraper.models import (
    DocumentStatus,
    ExecutionStatus,
    NormativeChangeModel,
    ScrapedDocumentModel,
    ScraperExecutionModel,
    ScraperSourceModel,
    SourceType,
    normalize_code,
)
from services.normative_scraper.models.execution import SUCCESS_STATUSES
from services.normative_scraper.store.base import DocumentStore, Entity, ScraperStatistics
from shared.logging import get_logger


logger = get_logger(__name__)


class InMemoryDocumentStore(DocumentStore):
    """Keeps every entity in process memory, keyed by id."""

    def __init__(self) -> None:
        self.sources: dict[uuid.UUID, ScraperSourceModel] = {}
        self.executions: dict[uuid.UUID, ScraperExecutionModel] = {}
        self.documents: dict[uuid.UUID, ScrapedDocumentModel] = {}
        self.changes: dict[uuid.UUID, NormativeChangeModel] = {}
        self.save_count = 0

        logger.info("memory_store_initialized")

    # Sources

    async def get_source(self, source_id: uuid.UUID) -> ScraperSourceModel | None:
        return self.sources.get(source_id)

    async def list_sources(
        self,
        source_type: SourceType | None = None,
        is_enabled: bool | None = None,
        include_deleted: bool = False,
    ) -> list[ScraperSourceModel]:
        sources = [
            s
            for s in self.sources.values()
            if (include_deleted or not s.is_deleted)
            and (source_type is None or s.source_type == source_type)
            and (is_enabled is None or s.is_enabled == is_enabled)
        ]
        return sorted(sources, key=lambda s: s.name)

    async def list_due_sources(self, now: datetime) -> list[ScraperSourceModel]:
        due = [s for s in self.sources.values() if s.is_due(now)]
        return sorted(due, key=lambda s: s.next_scheduled_at)

    # Executions

    async def get_execution(self, execution_id: uuid.UUID) -> ScraperExecutionModel | None:
        return self.executions.get(execution_id)

    async def list_executions(
        self,
        source_id: uuid.UUID | None = None,
        status: ExecutionStatus | None = None,
        limit: int = 50,
    ) -> list[ScraperExecutionModel]:
        executions = [
            e
            for e in self.executions.values()
            if (source_id is None or e.source_id == source_id)
            and (status is None or e.status == status)
        ]
        executions.sort(key=lambda e: e.started_at, reverse=True)
        return executions[:limit]

    # Documents

    async def is_duplicate(self, source_id: uuid.UUID, external_id: str) -> bool:
        return any(
            d.source_id == source_id and d.external_id == external_id
            for d in self.documents.values()
        )

    async def add_document(self, document: ScrapedDocumentModel) -> None:
        self._check_document(document)
        self.documents[document.id] = document
        self.save_count += 1

    async def get_document(self, document_id: uuid.UUID) -> ScrapedDocumentModel | None:
        return self.documents.get(document_id)

    async def list_documents(
        self,
        status: DocumentStatus | None = None,
        source_id: uuid.UUID | None = None,
        execution_id: uuid.UUID | None = None,
        limit: int = 100,
    ) -> list[ScrapedDocumentModel]:
        documents = [
            d
            for d in self.documents.values()
            if (status is None or d.status == status)
            and (source_id is None or d.source_id == source_id)
            and (execution_id is None or d.execution_id == execution_id)
        ]
        documents.reverse()
        return documents[:limit]

    async def list_pending_documents(
        self,
        execution_id: uuid.UUID | None = None,
    ) -> list[ScrapedDocumentModel]:
        return [
            d
            for d in self.documents.values()
            if d.status == DocumentStatus.NEW
            and (execution_id is None or d.execution_id == execution_id)
        ]

    # Change records

    async def find_change_by_code(self, code: str) -> NormativeChangeModel | None:
        code = normalize_code(code)
        for change in self.changes.values():
            if change.code == code and not change.is_deleted:
                return change
        return None

    async def get_change(self, change_id: uuid.UUID) -> NormativeChangeModel | None:
        return self.changes.get(change_id)

    # Units of work

    async def save(self, *entities: Entity) -> None:
        # Validate everything first so a rejected batch leaves no partial writes
        for entity in entities:
            if isinstance(entity, ScrapedDocumentModel):
                self._check_document(entity)
            elif isinstance(entity, NormativeChangeModel):
                self._check_change(entity)

        for entity in entities:
            if isinstance(entity, ScraperSourceModel):
                self.sources[entity.id] = entity
            elif isinstance(entity, ScraperExecutionModel):
                self.executions[entity.id] = entity
            elif isinstance(entity, ScrapedDocumentModel):
                self.documents[entity.id] = entity
            elif isinstance(entity, NormativeChangeModel):
                self.changes[entity.id] = entity
            else:
                raise TypeError(f"Unsupported entity: {type(entity).__name__}")

        self.save_count += 1

    def _check_document(self, document: ScrapedDocumentModel) -> None:
        for existing in self.documents.values():
            if (
                existing.id != document.id
                and existing.source_id == document.source_id
                and existing.external_id == document.external_id
            ):
                raise DuplicateDocumentError(
                    f"Document already exists with external id: {document.external_id}",
                    source_id=str(document.source_id),
                    external_id=document.external_id,
                )

    def _check_change(self, change: NormativeChangeModel) -> None:
        if change.is_deleted:
            return
        for existing in self.changes.values():
            if existing.id != change.id and existing.code == change.code and not existing.is_deleted:
                raise DuplicateChangeCodeError(
                    f"NormativeChange already exists with code: {change.code}",
                    code=change.code,
                )

    async def get_statistics(self, since: datetime) -> ScraperStatistics:
        sources = [s for s in self.sources.values() if not s.is_deleted]
        recent = [e for e in self.executions.values() if e.started_at >= since]

        return ScraperStatistics(
            total_sources=len(sources),
            enabled_sources=sum(1 for s in sources if s.is_enabled),
            disabled_sources=sum(1 for s in sources if not s.is_enabled),
            failing_sources=sum(1 for s in sources if (s.consecutive_failures or 0) > 0),
            executions_last_24h=len(recent),
            successful_executions_last_24h=sum(1 for e in recent if e.status in SUCCESS_STATUSES),
            failed_executions_last_24h=sum(1 for e in recent if e.status == ExecutionStatus.FAILED),
            documents_found_last_24h=sum(e.documents_found or 0 for e in recent),
            new_documents_last_24h=sum(e.documents_new or 0 for e in recent),
            pending_documents=sum(
                1 for d in self.documents.values() if d.status == DocumentStatus.NEW
            ),
            sources_by_type=dict(Counter(s.source_type.value for s in sources)),
        )
