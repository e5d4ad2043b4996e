"""
Scraped Document Model
======================

Deduplicated harvest result awaiting promotion to a normative change.

Version: 0.1.0
"""

import hashlib
import uuid
from datetime import UTC, date, datetime, timedelta
from enum import Enum
from typing import Any

from sqlalchemy import (
    JSON,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy import Enum as SQLEnum

from services.normative_scraper.exceptions import DocumentValidationError
from services.normative_scraper.models.change import NormativeChangeModel, NormativePriority
from shared.database.postgres import Base


DEFAULT_EFFECTIVE_DELAY = timedelta(days=30)


class DocumentStatus(str, Enum):
    """Promotion status of a harvested document."""

    NEW = "new"
    NEEDS_REVIEW = "needs_review"
    PROCESSED = "processed"
    IGNORED = "ignored"
    ERROR = "error"


PROMOTABLE_STATUSES = frozenset({DocumentStatus.NEW, DocumentStatus.NEEDS_REVIEW})


class ScrapedDocumentModel(Base):
    """
    SQLAlchemy model for harvested documents.

    (source_id, external_id) is the dedup key; the unique constraint is
    the final arbiter when two runs race on the same candidate.
    """

    __tablename__ = "scraped_documents"
    __table_args__ = (
        UniqueConstraint("source_id", "external_id", name="uq_scraped_documents_source_external"),
        Index("ix_scraped_documents_status", "status"),
        Index("ix_scraped_documents_execution", "execution_id"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    execution_id = Column(
        Uuid,
        ForeignKey("scraper_executions.id", ondelete="CASCADE"),
        nullable=False,
    )
    source_id = Column(
        Uuid,
        ForeignKey("scraper_sources.id", ondelete="CASCADE"),
        nullable=False,
    )
    status = Column(SQLEnum(DocumentStatus), nullable=False, default=DocumentStatus.NEW)

    # Extracted data
    external_id = Column(String(500), nullable=False)
    title = Column(String(1000), nullable=False)
    description = Column(Text)
    code = Column(String(100))  # e.g. "CONSAR 19-21"
    category = Column(String(200))
    publish_date = Column(Date)
    effective_date = Column(Date)
    document_url = Column(String(2000))
    pdf_url = Column(String(2000))
    raw_html = Column(Text)
    extracted_text = Column(Text)
    document_metadata = Column("metadata", JSON)
    content_hash = Column(String(64))

    # Promotion outcome
    normative_change_id = Column(Uuid)
    processing_error = Column(Text)
    processed_by = Column(String(100))
    processed_at = Column(DateTime(timezone=True))

    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)

    @classmethod
    def create(
        cls,
        execution_id: uuid.UUID,
        source_id: uuid.UUID,
        external_id: str,
        title: str,
    ) -> "ScrapedDocumentModel":
        if not external_id or not external_id.strip():
            raise DocumentValidationError("External ID is required")
        if not title or not title.strip():
            raise DocumentValidationError("Title is required", external_id=external_id)

        now = datetime.now(UTC)
        doc = cls(
            id=uuid.uuid4(),
            execution_id=execution_id,
            source_id=source_id,
            external_id=external_id,
            title=title,
            status=DocumentStatus.NEW,
            created_at=now,
            updated_at=now,
        )
        doc._compute_hash()
        return doc

    @property
    def is_promotable(self) -> bool:
        return self.status in PROMOTABLE_STATUSES

    @property
    def change_code(self) -> str:
        """Code used for the promoted change record."""
        return self.code or self.external_id.upper()

    def set_details(
        self,
        description: str | None,
        code: str | None,
        publish_date: date | None,
        effective_date: date | None,
        category: str | None,
    ) -> None:
        self.description = description
        self.code = code.upper() if code else None
        self.publish_date = publish_date
        self.effective_date = effective_date
        self.category = category
        self.updated_at = datetime.now(UTC)
        self._compute_hash()

    def set_urls(self, document_url: str | None, pdf_url: str | None) -> None:
        self.document_url = document_url
        self.pdf_url = pdf_url
        self.updated_at = datetime.now(UTC)

    def set_raw_content(self, html: str | None, extracted_text: str | None = None) -> None:
        self.raw_html = html
        self.extracted_text = extracted_text
        self.updated_at = datetime.now(UTC)

    def set_metadata(self, metadata: dict[str, Any]) -> None:
        self.document_metadata = dict(metadata)
        self.updated_at = datetime.now(UTC)

    def mark_processed(self, normative_change_id: uuid.UUID, processed_by: str) -> None:
        now = datetime.now(UTC)
        self.status = DocumentStatus.PROCESSED
        self.normative_change_id = normative_change_id
        self.processed_by = processed_by
        self.processed_at = now
        self.updated_at = now

    def mark_ignored(self, reason: str) -> None:
        now = datetime.now(UTC)
        self.status = DocumentStatus.IGNORED
        self.normative_change_id = None
        self.processed_by = None
        self.processing_error = reason
        self.processed_at = now
        self.updated_at = now

    def mark_needs_review(self, reason: str) -> None:
        self.status = DocumentStatus.NEEDS_REVIEW
        self.processing_error = reason
        self.updated_at = datetime.now(UTC)

    def mark_error(self, error: str) -> None:
        now = datetime.now(UTC)
        self.status = DocumentStatus.ERROR
        self.normative_change_id = None
        self.processed_by = None
        self.processing_error = error
        self.processed_at = now
        self.updated_at = now

    def _compute_hash(self) -> None:
        published = self.publish_date.strftime("%Y%m%d") if self.publish_date else ""
        content = f"{self.source_id}|{self.external_id}|{self.code or ''}|{self.title}|{published}"
        self.content_hash = hashlib.sha256(content.encode()).hexdigest()

    def to_normative_change(
        self,
        priority: NormativePriority = NormativePriority.MEDIUM,
        affected_validators: list[str] | None = None,
        created_by: str | None = None,
    ) -> NormativeChangeModel:
        """
        Build the change record for this document.

        Missing dates fall back to the harvest date, with the effective date
        30 days after publication. The PDF link wins over the page link.
        """
        publish_date = self.publish_date or self.created_at.date()
        effective_date = self.effective_date or publish_date + DEFAULT_EFFECTIVE_DELAY

        change = NormativeChangeModel.create(
            code=self.change_code,
            title=self.title,
            description=self.description or "",
            publish_date=publish_date,
            effective_date=effective_date,
            priority=priority,
            category=self.category or "General",
            affected_validators=affected_validators or [],
            created_by=created_by,
        )
        change.source_document_id = self.id

        if self.pdf_url:
            change.set_document_url(self.pdf_url)
        elif self.document_url:
            change.set_document_url(self.document_url)

        return change
