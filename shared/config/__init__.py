"""
Configuration Module
====================

Centralized configuration management using Pydantic Settings.
Loads from environment variables with type validation and defaults.

Usage:
    from shared.config import settings

    print(settings.environment)
    print(settings.scraper.inter_source_delay_seconds)
"""

from shared.config.settings import (
    Environment,
    LogLevel,
    NotificationBackend,
    ScraperSettings,
    Settings,
    StoreBackend,
    get_settings,
)


# Global settings instance (singleton)
settings = get_settings()

__all__ = [
    "Settings",
    "ScraperSettings",
    "get_settings",
    "settings",
    "Environment",
    "LogLevel",
    "StoreBackend",
    "NotificationBackend",
]
