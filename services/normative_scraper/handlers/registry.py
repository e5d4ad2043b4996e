"""
Handler Registry
================

Resolves the single handler responsible for a source type.

Version: 0.1.0
"""

from services.normative_scraper.exceptions import HandlerNotFoundError
from services.normative_scraper.handlers.base import SourceHandler
from services.normative_scraper.models import SourceType
from shared.logging import get_logger


logger = get_logger(__name__)


class HandlerRegistry:
    """Ordered collection of handlers; the first one that accepts a type wins."""

    def __init__(self, handlers: list[SourceHandler] | None = None) -> None:
        self._handlers: list[SourceHandler] = list(handlers or [])

    def register(self, handler: SourceHandler) -> None:
        self._handlers.append(handler)
        logger.debug("handler_registered", handler=type(handler).__name__)

    def resolve(self, source_type: SourceType) -> SourceHandler:
        for handler in self._handlers:
            if handler.can_handle(source_type):
                return handler
        raise HandlerNotFoundError(
            f"No handler found for source type: {source_type.value}",
            source_type=source_type.value,
        )

    def supported_types(self) -> list[SourceType]:
        return [t for t in SourceType if any(h.can_handle(t) for h in self._handlers)]

    async def close(self) -> None:
        for handler in self._handlers:
            await handler.close()

    def __len__(self) -> int:
        return len(self._handlers)
