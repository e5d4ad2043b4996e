#!/usr/bin/env python3
"""
Database Initialization Script
==============================

Create the normative scraper tables and optionally seed a feed source.

Usage:
    python scripts/init_database.py
    python scripts/init_database.py --seed-feed https://www.gob.mx/consar/archivo/prensa.rss
    python scripts/init_database.py --check-redis

Version: 0.1.0
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from shared.logging import get_logger, setup_logging

setup_logging(log_level="INFO", json_logs=False, service_name="init-db")
logger = get_logger(__name__)


async def init_postgres() -> bool:
    """Create every table registered on the ORM metadata."""
    from sqlalchemy import text

    # Registers the models on Base.metadata
    import services.normative_scraper.models  # noqa: F401
    from shared.database.postgres import PostgresClient

    logger.info("Initializing PostgreSQL...")

    try:
        await PostgresClient.create_tables()

        async with PostgresClient.get_engine().begin() as conn:
            result = await conn.execute(text("SELECT version()"))
            version = result.scalar()
            logger.info(f"PostgreSQL connected: {version[:50]}...")

        logger.info("PostgreSQL initialized successfully")
        return True

    except Exception as e:
        logger.error(f"PostgreSQL initialization failed: {e}")
        return False


async def init_redis() -> bool:
    """Check the Redis pub/sub transport."""
    from shared.database.redis import RedisClient

    logger.info("Checking Redis...")

    health = await RedisClient.health_check()
    if health["status"] != "healthy":
        logger.error(f"Redis check failed: {health.get('error')}")
        return False

    logger.info(f"Redis connected: {health.get('redis_version')}")
    return True


async def seed_feed_source(url: str, name: str) -> bool:
    """Register an RSS source unless one with the same URL exists."""
    from services.normative_scraper.models import ScraperFrequency, ScraperSourceModel, SourceType
    from services.normative_scraper.store import SqlDocumentStore

    store = SqlDocumentStore()

    existing = await store.list_sources(source_type=SourceType.RSS_FEED, include_deleted=True)
    if any(s.full_url == url.rstrip("/") for s in existing):
        logger.info(f"Feed source already registered: {url}")
        return True

    source = ScraperSourceModel.create(
        name=name,
        source_type=SourceType.RSS_FEED,
        base_url=url,
        frequency=ScraperFrequency.DAILY,
        description="Seeded by init_database.py",
    )
    await store.save(source)

    logger.info(f"Feed source registered: {source.name} ({source.id})")
    return True


async def main(args: argparse.Namespace) -> int:
    """Main initialization function."""
    from shared.database.postgres import PostgresClient
    from shared.database.redis import RedisClient

    logger.info("=" * 60)
    logger.info("NORMWATCH Database Initialization")
    logger.info("=" * 60)

    results = {"PostgreSQL": await init_postgres()}

    if args.check_redis:
        results["Redis"] = await init_redis()

    if args.seed_feed and results["PostgreSQL"]:
        results["Seed Feed"] = await seed_feed_source(args.seed_feed, args.feed_name)

    await PostgresClient.close()
    await RedisClient.close()

    # Summary
    logger.info("=" * 60)
    logger.info("Initialization Summary")
    logger.info("=" * 60)

    failed = []
    for name, success in results.items():
        status = "OK" if success else "FAILED"
        logger.info(f"  {name}: {status}")
        if not success:
            failed.append(name)

    if failed:
        logger.error(f"Failed: {', '.join(failed)}")
        return 1

    logger.info("Database initialized successfully!")
    return 0


def parse_args() -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Initialize the Normwatch database",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "--seed-feed",
        metavar="URL",
        help="Register an RSS feed source with this URL",
    )
    parser.add_argument(
        "--feed-name",
        default="Seeded RSS feed",
        help="Name of the seeded feed source",
    )
    parser.add_argument(
        "--check-redis",
        action="store_true",
        help="Also check the Redis connection",
    )

    return parser.parse_args()


if __name__ == "__main__":
    args = parse_args()
    exit_code = asyncio.run(main(args))
    sys.exit(exit_code)
