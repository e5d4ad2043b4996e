"""
Scraper Execution Model
=======================

One record per harvesting run, owned by the orchestrator.

Version: 0.1.0
"""

import uuid
from datetime import UTC, datetime
from enum import Enum

from sqlalchemy import (
    BigInteger,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
)
from sqlalchemy import Enum as SQLEnum

from services.normative_scraper.exceptions import InvalidStateTransitionError
from shared.database.postgres import Base


class ExecutionStatus(str, Enum):
    """Execution lifecycle status."""

    RUNNING = "running"
    COMPLETED = "completed"
    COMPLETED_WITH_WARNINGS = "completed_with_warnings"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({
    ExecutionStatus.COMPLETED,
    ExecutionStatus.COMPLETED_WITH_WARNINGS,
    ExecutionStatus.FAILED,
    ExecutionStatus.CANCELLED,
})

SUCCESS_STATUSES = frozenset({
    ExecutionStatus.COMPLETED,
    ExecutionStatus.COMPLETED_WITH_WARNINGS,
})


class ScraperExecutionModel(Base):
    """
    SQLAlchemy model for scraper executions.

    Created RUNNING; transitions exactly once to a terminal status and is
    immutable afterwards.
    """

    __tablename__ = "scraper_executions"
    __table_args__ = (
        Index("ix_scraper_executions_source", "source_id"),
        Index("ix_scraper_executions_status", "status"),
        Index("ix_scraper_executions_started", "started_at"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    source_id = Column(
        Uuid,
        ForeignKey("scraper_sources.id", ondelete="CASCADE"),
        nullable=False,
    )
    triggered_by = Column(String(100), nullable=False, default="system")
    status = Column(SQLEnum(ExecutionStatus), nullable=False, default=ExecutionStatus.RUNNING)

    started_at = Column(DateTime(timezone=True), nullable=False)
    completed_at = Column(DateTime(timezone=True))
    duration_ms = Column(BigInteger, nullable=False, default=0)

    # Counters
    documents_found = Column(Integer, nullable=False, default=0)
    documents_new = Column(Integer, nullable=False, default=0)
    documents_duplicate = Column(Integer, nullable=False, default=0)
    documents_error = Column(Integer, nullable=False, default=0)

    # Diagnostics
    error_message = Column(Text)
    error_stack_trace = Column(Text)
    execution_log = Column(Text)

    @classmethod
    def start(cls, source_id: uuid.UUID, triggered_by: str = "system") -> "ScraperExecutionModel":
        return cls(
            id=uuid.uuid4(),
            source_id=source_id,
            triggered_by=triggered_by,
            status=ExecutionStatus.RUNNING,
            started_at=datetime.now(UTC),
            duration_ms=0,
            documents_found=0,
            documents_new=0,
            documents_duplicate=0,
            documents_error=0,
        )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_success(self) -> bool:
        return self.status in SUCCESS_STATUSES

    def append_log(self, message: str) -> None:
        timestamp = datetime.now(UTC).strftime("%H:%M:%S.%f")[:-3]
        self.execution_log = f"{self.execution_log or ''}[{timestamp}] {message}\n"

    def set_document_counts(self, found: int, new: int, duplicates: int, errors: int) -> None:
        self._ensure_running()
        self.documents_found = found
        self.documents_new = new
        self.documents_duplicate = duplicates
        self.documents_error = errors

    def complete(self, found: int, new: int, duplicates: int) -> None:
        self.set_document_counts(found, new, duplicates, 0)
        self._finish(ExecutionStatus.COMPLETED)

    def complete_with_warnings(
        self,
        found: int,
        new: int,
        duplicates: int,
        errors: int,
        warnings: str,
    ) -> None:
        self.set_document_counts(found, new, duplicates, errors)
        self.error_message = warnings
        self._finish(ExecutionStatus.COMPLETED_WITH_WARNINGS)

    def fail(self, error: str, stack_trace: str | None = None) -> None:
        self._ensure_running()
        self.error_message = error
        self.error_stack_trace = stack_trace
        self._finish(ExecutionStatus.FAILED)

    def cancel(self, reason: str | None = None) -> None:
        self._ensure_running()
        if reason:
            self.error_message = reason
        self._finish(ExecutionStatus.CANCELLED)

    def _ensure_running(self) -> None:
        if self.is_terminal:
            raise InvalidStateTransitionError(
                f"Execution {self.id} is already {self.status.value}",
                execution_id=str(self.id),
                status=self.status.value,
            )

    def _finish(self, status: ExecutionStatus) -> None:
        self._ensure_running()
        completed_at = datetime.now(UTC)
        started_at = self.started_at
        if started_at.tzinfo is None:
            # backends without timezone support hand back naive UTC
            started_at = started_at.replace(tzinfo=UTC)
        self.completed_at = completed_at
        self.duration_ms = int((completed_at - started_at).total_seconds() * 1000)
        self.status = status
