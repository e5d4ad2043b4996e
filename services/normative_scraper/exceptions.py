"""
Scraper Exceptions
==================

Error taxonomy for harvesting and promotion.

Version: 0.1.0
"""

from typing import Any


class ScraperError(Exception):
    """Base class for normative scraper errors."""

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = context


class HandlerNotFoundError(ScraperError):
    """No registered handler accepts the source type (configuration error)."""


class ExecutionCancelledError(ScraperError):
    """A cancellation signal was observed by a running operation."""


class DocumentValidationError(ScraperError, ValueError):
    """A harvested candidate is missing required fields."""


class DuplicateDocumentError(ScraperError):
    """A document with the same (source_id, external_id) is already stored."""


class DuplicateChangeCodeError(ScraperError):
    """A non-deleted change record already uses the code."""


class InvalidStateTransitionError(ScraperError):
    """A terminal record was asked to transition again."""
