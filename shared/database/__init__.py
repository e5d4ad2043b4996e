"""
Database Module
===============

Async clients for the Normwatch data stores.

Clients:
- PostgreSQL (asyncpg + SQLAlchemy)
- Redis (redis.asyncio, pub/sub for scraper events)

Usage:
    from shared.database import PostgresClient, RedisClient

    session_factory = PostgresClient.get_session_factory()
    async with session_factory() as session:
        ...
"""

from shared.database.postgres import (
    Base,
    PostgresClient,
    create_session_factory,
)
from shared.database.redis import RedisClient


__all__ = [
    # PostgreSQL
    "Base",
    "PostgresClient",
    "create_session_factory",
    # Redis
    "RedisClient",
]
