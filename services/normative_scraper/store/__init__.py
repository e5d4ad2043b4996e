"""
Document Stores
===============

Persistence backends for the normative scraper.
"""

from shared.config import ScraperSettings, StoreBackend, settings

from services.normative_scraper.store.base import DocumentStore, ScraperStatistics
from services.normative_scraper.store.memory import InMemoryDocumentStore
from services.normative_scraper.store.sql import SqlDocumentStore


def create_store(config: ScraperSettings | None = None) -> DocumentStore:
    """Build the store selected by ``scraper.store_backend``."""
    config = config or settings.scraper
    if config.store_backend == StoreBackend.POSTGRES:
        return SqlDocumentStore()
    return InMemoryDocumentStore()


__all__ = [
    "DocumentStore",
    "ScraperStatistics",
    "InMemoryDocumentStore",
    "SqlDocumentStore",
    "create_store",
]
