"""
Normative Scraper Models
========================

SQLAlchemy ORM models for sources, executions, harvested documents
and normative changes.
"""

from services.normative_scraper.models.change import (
    NormativeChangeModel,
    NormativePriority,
    NormativeStatus,
    normalize_code,
)
from services.normative_scraper.models.document import (
    DocumentStatus,
    ScrapedDocumentModel,
)
from services.normative_scraper.models.execution import (
    ExecutionStatus,
    ScraperExecutionModel,
)
from services.normative_scraper.models.source import (
    ScraperFrequency,
    ScraperSourceModel,
    SourceType,
    next_execution,
)

__all__ = [
    "NormativeChangeModel",
    "NormativePriority",
    "NormativeStatus",
    "normalize_code",
    "DocumentStatus",
    "ScrapedDocumentModel",
    "ExecutionStatus",
    "ScraperExecutionModel",
    "ScraperFrequency",
    "ScraperSourceModel",
    "SourceType",
    "next_execution",
]
