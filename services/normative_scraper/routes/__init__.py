"""
Normative Scraper Routes
========================

API route modules for the Normative Scraper Service.
"""

from services.normative_scraper.routes import documents, executions, sources, statistics


__all__ = [
    "sources",
    "executions",
    "documents",
    "statistics",
]
