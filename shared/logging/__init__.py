"""
Logging Module
==============

Structured logging using structlog with JSON output for production
and colored console output for development.

Usage:
    from shared.logging import get_logger, setup_logging

    # Setup at application start
    setup_logging()

    # Get logger for a module
    logger = get_logger(__name__)

    # Log with context
    logger.info("execution_completed", execution_id="...", documents_new=3)
"""

from shared.logging.logger import (
    bind_context,
    clear_context,
    get_logger,
    setup_logging,
    unbind_context,
)


__all__ = [
    "get_logger",
    "setup_logging",
    "bind_context",
    "unbind_context",
    "clear_context",
]
