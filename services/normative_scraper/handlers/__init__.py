"""
Source Handlers
===============

Per-source extractors invoked by the execution orchestrator.

Built-in handlers:
- RSS 2.0 / Atom feeds (RSS_FEED)
- Reference records configured on the source (CUSTOM)

Version: 0.1.0
"""

from shared.config import ScraperSettings

from services.normative_scraper.handlers.base import (
    HttpSourceHandler,
    RawDocument,
    SourceHandler,
)
from services.normative_scraper.handlers.catalog import ConfiguredCatalogHandler
from services.normative_scraper.handlers.registry import HandlerRegistry
from services.normative_scraper.handlers.rss import RssFeedHandler


def default_registry(config: ScraperSettings | None = None) -> HandlerRegistry:
    """Registry with every built-in handler."""
    return HandlerRegistry([
        RssFeedHandler(config),
        ConfiguredCatalogHandler(),
    ])


__all__ = [
    # Base
    "RawDocument",
    "SourceHandler",
    "HttpSourceHandler",
    "HandlerRegistry",
    # Implementations
    "RssFeedHandler",
    "ConfiguredCatalogHandler",
    "default_registry",
]
