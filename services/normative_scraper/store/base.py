"""
Document Store Interface
========================

Persistence contract shared by the orchestrator, the promoter and the API.

Every ``save`` call is one all-or-nothing unit of work.

Version: 0.1.0
"""

import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime

from services.normative_scraper.models import (
    DocumentStatus,
    ExecutionStatus,
    NormativeChangeModel,
    ScrapedDocumentModel,
    ScraperExecutionModel,
    ScraperSourceModel,
    SourceType,
)

Entity = ScraperSourceModel | ScraperExecutionModel | ScrapedDocumentModel | NormativeChangeModel


@dataclass
class ScraperStatistics:
    """Aggregated counts for the statistics endpoint."""

    total_sources: int = 0
    enabled_sources: int = 0
    disabled_sources: int = 0
    failing_sources: int = 0
    executions_last_24h: int = 0
    successful_executions_last_24h: int = 0
    failed_executions_last_24h: int = 0
    documents_found_last_24h: int = 0
    new_documents_last_24h: int = 0
    pending_documents: int = 0
    sources_by_type: dict[str, int] = field(default_factory=dict)


class DocumentStore(ABC):
    """Sources, executions, harvested documents and change records."""

    # Sources

    @abstractmethod
    async def get_source(self, source_id: uuid.UUID) -> ScraperSourceModel | None: ...

    @abstractmethod
    async def list_sources(
        self,
        source_type: SourceType | None = None,
        is_enabled: bool | None = None,
        include_deleted: bool = False,
    ) -> list[ScraperSourceModel]: ...

    @abstractmethod
    async def list_due_sources(self, now: datetime) -> list[ScraperSourceModel]:
        """Enabled, non-deleted sources whose next run is at or before ``now``."""
        ...

    # Executions

    @abstractmethod
    async def get_execution(self, execution_id: uuid.UUID) -> ScraperExecutionModel | None: ...

    @abstractmethod
    async def list_executions(
        self,
        source_id: uuid.UUID | None = None,
        status: ExecutionStatus | None = None,
        limit: int = 50,
    ) -> list[ScraperExecutionModel]:
        """Most recent first."""
        ...

    # Documents

    @abstractmethod
    async def is_duplicate(self, source_id: uuid.UUID, external_id: str) -> bool: ...

    @abstractmethod
    async def add_document(self, document: ScrapedDocumentModel) -> None:
        """
        Insert a new harvested document.

        Raises:
            DuplicateDocumentError: (source_id, external_id) already stored
        """
        ...

    @abstractmethod
    async def get_document(self, document_id: uuid.UUID) -> ScrapedDocumentModel | None: ...

    @abstractmethod
    async def list_documents(
        self,
        status: DocumentStatus | None = None,
        source_id: uuid.UUID | None = None,
        execution_id: uuid.UUID | None = None,
        limit: int = 100,
    ) -> list[ScrapedDocumentModel]:
        """Most recent first."""
        ...

    @abstractmethod
    async def list_pending_documents(
        self,
        execution_id: uuid.UUID | None = None,
    ) -> list[ScrapedDocumentModel]:
        """NEW documents in harvest order."""
        ...

    # Change records

    @abstractmethod
    async def find_change_by_code(self, code: str) -> NormativeChangeModel | None:
        """Non-deleted change record with the (uppercased) code."""
        ...

    @abstractmethod
    async def get_change(self, change_id: uuid.UUID) -> NormativeChangeModel | None: ...

    # Units of work

    @abstractmethod
    async def save(self, *entities: Entity) -> None:
        """
        Insert or update entities atomically.

        Raises:
            DuplicateDocumentError: a document collides on (source_id, external_id)
            DuplicateChangeCodeError: a change record collides on code
        """
        ...

    @abstractmethod
    async def get_statistics(self, since: datetime) -> ScraperStatistics:
        """Source totals, executions started at or after ``since``, pending documents."""
        ...

    async def close(self) -> None:
        return None
