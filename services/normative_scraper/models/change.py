"""
Normative Change Model
======================

The promoted, business-meaningful record derived from a harvested document.

Version: 0.1.0
"""

import uuid
from datetime import UTC, date, datetime
from enum import Enum

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    Uuid,
    text,
)
from sqlalchemy import Enum as SQLEnum

from shared.database.postgres import Base


class NormativePriority(str, Enum):
    """Review priority of a normative change."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class NormativeStatus(str, Enum):
    """Lifecycle of a normative change."""

    PENDING = "pending"  # effective date in the future
    ACTIVE = "active"
    ARCHIVED = "archived"


def normalize_code(code: str) -> str:
    """Codes are compared and stored uppercased."""
    return code.strip().upper()


class NormativeChangeModel(Base):
    """
    SQLAlchemy model for normative changes.

    The code is unique among non-deleted records.
    """

    __tablename__ = "normative_changes"
    __table_args__ = (
        Index(
            "uq_normative_changes_code_active",
            "code",
            unique=True,
            postgresql_where=text("is_deleted = false"),
            sqlite_where=text("is_deleted = 0"),
        ),
        Index("ix_normative_changes_status", "status"),
        Index("ix_normative_changes_priority", "priority"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)

    code = Column(String(100), nullable=False)
    title = Column(String(1000), nullable=False)
    description = Column(Text, nullable=False, default="")
    category = Column(String(200), nullable=False, default="General")

    publish_date = Column(Date, nullable=False)
    effective_date = Column(Date, nullable=False)

    status = Column(SQLEnum(NormativeStatus), nullable=False, default=NormativeStatus.PENDING)
    priority = Column(SQLEnum(NormativePriority), nullable=False, default=NormativePriority.MEDIUM)
    affected_validators = Column(JSON, nullable=False, default=list)

    document_url = Column(String(2000))
    notes = Column(Text)

    # Back-reference to the harvested document it was promoted from
    source_document_id = Column(Uuid, ForeignKey("scraped_documents.id", ondelete="SET NULL"))

    is_deleted = Column(Boolean, nullable=False, default=False)
    created_by = Column(String(100))
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)

    @classmethod
    def create(
        cls,
        code: str,
        title: str,
        description: str,
        publish_date: date,
        effective_date: date,
        priority: NormativePriority,
        category: str,
        affected_validators: list[str],
        created_by: str | None = None,
    ) -> "NormativeChangeModel":
        if not code or not code.strip():
            raise ValueError("Code is required")
        if not title or not title.strip():
            raise ValueError("Title is required")

        now = datetime.now(UTC)
        status = NormativeStatus.ACTIVE if effective_date <= now.date() else NormativeStatus.PENDING

        return cls(
            id=uuid.uuid4(),
            code=normalize_code(code),
            title=title,
            description=description,
            category=category,
            publish_date=publish_date,
            effective_date=effective_date,
            status=status,
            priority=priority,
            affected_validators=list(affected_validators),
            is_deleted=False,
            created_by=created_by,
            created_at=now,
            updated_at=now,
        )

    def set_document_url(self, url: str) -> None:
        self.document_url = url
        self.updated_at = datetime.now(UTC)
