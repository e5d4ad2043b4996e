"""
SQL Document Store
==================

SQLAlchemy async implementation of the document store.

Each call opens its own session; ``save`` merges the given entities and
commits once. Models carry no relationships, so detached instances are
safe to hand back to callers.

Version: 0.1.0
"""

import uuid
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

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
from shared.database.postgres import PostgresClient
from shared.logging import get_logger


logger = get_logger(__name__)


class SqlDocumentStore(DocumentStore):
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
    ) -> None:
        self._session_factory = session_factory or PostgresClient.get_session_factory()

    # Sources

    async def get_source(self, source_id: uuid.UUID) -> ScraperSourceModel | None:
        async with self._session_factory() as session:
            return await session.get(ScraperSourceModel, source_id)

    async def list_sources(
        self,
        source_type: SourceType | None = None,
        is_enabled: bool | None = None,
        include_deleted: bool = False,
    ) -> list[ScraperSourceModel]:
        query = select(ScraperSourceModel)
        if not include_deleted:
            query = query.where(ScraperSourceModel.is_deleted.is_(False))
        if source_type is not None:
            query = query.where(ScraperSourceModel.source_type == source_type)
        if is_enabled is not None:
            query = query.where(ScraperSourceModel.is_enabled.is_(is_enabled))
        query = query.order_by(ScraperSourceModel.name)

        async with self._session_factory() as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    async def list_due_sources(self, now: datetime) -> list[ScraperSourceModel]:
        query = (
            select(ScraperSourceModel)
            .where(
                ScraperSourceModel.is_enabled.is_(True),
                ScraperSourceModel.is_deleted.is_(False),
                ScraperSourceModel.next_scheduled_at.is_not(None),
                ScraperSourceModel.next_scheduled_at <= now,
            )
            .order_by(ScraperSourceModel.next_scheduled_at)
        )

        async with self._session_factory() as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    # Executions

    async def get_execution(self, execution_id: uuid.UUID) -> ScraperExecutionModel | None:
        async with self._session_factory() as session:
            return await session.get(ScraperExecutionModel, execution_id)

    async def list_executions(
        self,
        source_id: uuid.UUID | None = None,
        status: ExecutionStatus | None = None,
        limit: int = 50,
    ) -> list[ScraperExecutionModel]:
        query = select(ScraperExecutionModel)
        if source_id is not None:
            query = query.where(ScraperExecutionModel.source_id == source_id)
        if status is not None:
            query = query.where(ScraperExecutionModel.status == status)
        query = query.order_by(ScraperExecutionModel.started_at.desc()).limit(limit)

        async with self._session_factory() as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    # Documents

    async def is_duplicate(self, source_id: uuid.UUID, external_id: str) -> bool:
        query = select(func.count()).select_from(ScrapedDocumentModel).where(
            ScrapedDocumentModel.source_id == source_id,
            ScrapedDocumentModel.external_id == external_id,
        )

        async with self._session_factory() as session:
            result = await session.execute(query)
            return (result.scalar() or 0) > 0

    async def add_document(self, document: ScrapedDocumentModel) -> None:
        async with self._session_factory() as session:
            session.add(document)
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                raise DuplicateDocumentError(
                    f"Document already exists with external id: {document.external_id}",
                    source_id=str(document.source_id),
                    external_id=document.external_id,
                ) from e

    async def get_document(self, document_id: uuid.UUID) -> ScrapedDocumentModel | None:
        async with self._session_factory() as session:
            return await session.get(ScrapedDocumentModel, document_id)

    async def list_documents(
        self,
        status: DocumentStatus | None = None,
        source_id: uuid.UUID | None = None,
        execution_id: uuid.UUID | None = None,
        limit: int = 100,
    ) -> list[ScrapedDocumentModel]:
        query = select(ScrapedDocumentModel)
        if status is not None:
            query = query.where(ScrapedDocumentModel.status == status)
        if source_id is not None:
            query = query.where(ScrapedDocumentModel.source_id == source_id)
        if execution_id is not None:
            query = query.where(ScrapedDocumentModel.execution_id == execution_id)
        query = query.order_by(ScrapedDocumentModel.created_at.desc()).limit(limit)

        async with self._session_factory() as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    async def list_pending_documents(
        self,
        execution_id: uuid.UUID | None = None,
    ) -> list[ScrapedDocumentModel]:
        query = select(ScrapedDocumentModel).where(ScrapedDocumentModel.status == DocumentStatus.NEW)
        if execution_id is not None:
            query = query.where(ScrapedDocumentModel.execution_id == execution_id)
        query = query.order_by(ScrapedDocumentModel.created_at)

        async with self._session_factory() as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    # Change records

    async def find_change_by_code(self, code: str) -> NormativeChangeModel | None:
        query = select(NormativeChangeModel).where(
            NormativeChangeModel.code == normalize_code(code),
            NormativeChangeModel.is_deleted.is_(False),
        )

        async with self._session_factory() as session:
            result = await session.execute(query)
            return result.scalars().first()

    async def get_change(self, change_id: uuid.UUID) -> NormativeChangeModel | None:
        async with self._session_factory() as session:
            return await session.get(NormativeChangeModel, change_id)

    # Units of work

    async def save(self, *entities: Entity) -> None:
        async with self._session_factory() as session:
            for entity in entities:
                await session.merge(entity)
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                raise self._translate_integrity_error(e, entities) from e

    @staticmethod
    def _translate_integrity_error(
        error: IntegrityError,
        entities: tuple[Entity, ...],
    ) -> Exception:
        message = str(error.orig)
        if "normative_changes" in message:
            codes = [e.code for e in entities if isinstance(e, NormativeChangeModel)]
            return DuplicateChangeCodeError(
                f"NormativeChange already exists with code: {', '.join(codes)}",
                codes=codes,
            )
        if "scraped_documents" in message:
            return DuplicateDocumentError("Document already exists", detail=message)
        return error

    async def get_statistics(self, since: datetime) -> ScraperStatistics:
        active_sources = ScraperSourceModel.is_deleted.is_(False)

        async with self._session_factory() as session:
            by_type_rows = await session.execute(
                select(ScraperSourceModel.source_type, ScraperSourceModel.is_enabled, func.count())
                .where(active_sources)
                .group_by(ScraperSourceModel.source_type, ScraperSourceModel.is_enabled)
            )
            failing = await session.execute(
                select(func.count())
                .select_from(ScraperSourceModel)
                .where(active_sources, ScraperSourceModel.consecutive_failures > 0)
            )
            execution_rows = await session.execute(
                select(
                    ScraperExecutionModel.status,
                    func.count(),
                    func.coalesce(func.sum(ScraperExecutionModel.documents_found), 0),
                    func.coalesce(func.sum(ScraperExecutionModel.documents_new), 0),
                )
                .where(ScraperExecutionModel.started_at >= since)
                .group_by(ScraperExecutionModel.status)
            )
            pending = await session.execute(
                select(func.count())
                .select_from(ScrapedDocumentModel)
                .where(ScrapedDocumentModel.status == DocumentStatus.NEW)
            )

            stats = ScraperStatistics(
                failing_sources=failing.scalar() or 0,
                pending_documents=pending.scalar() or 0,
            )

            for source_type, is_enabled, count in by_type_rows.all():
                stats.total_sources += count
                if is_enabled:
                    stats.enabled_sources += count
                else:
                    stats.disabled_sources += count
                key = source_type.value
                stats.sources_by_type[key] = stats.sources_by_type.get(key, 0) + count

            for status, count, found, new in execution_rows.all():
                stats.executions_last_24h += count
                stats.documents_found_last_24h += int(found)
                stats.new_documents_last_24h += int(new)
                if status in SUCCESS_STATUSES:
                    stats.successful_executions_last_24h += count
                elif status == ExecutionStatus.FAILED:
                    stats.failed_executions_last_24h += count

        return stats
