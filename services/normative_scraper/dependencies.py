"""
Service Wiring
==============

Builds the scraper components and exposes them to routes as FastAPI
dependencies. The container lives on ``app.state.scraper``.

Version: 0.1.0
"""

from dataclasses import dataclass

from fastapi import Request

from services.normative_scraper.cancellation import CancellationRegistry, execution_registry
from services.normative_scraper.handlers import HandlerRegistry, default_registry
from services.normative_scraper.jobs import ScraperJobRunner
from services.normative_scraper.notifications import (
    LoggingNotificationSink,
    NotificationSink,
    RedisNotificationSink,
)
from services.normative_scraper.orchestrator import ExecutionOrchestrator
from services.normative_scraper.promoter import BatchPromoter
from services.normative_scraper.store import DocumentStore, create_store
from shared.config import NotificationBackend, ScraperSettings, settings


@dataclass
class ScraperServices:
    store: DocumentStore
    handlers: HandlerRegistry
    notifier: NotificationSink
    orchestrator: ExecutionOrchestrator
    promoter: BatchPromoter
    jobs: ScraperJobRunner


def create_notifier(config: ScraperSettings | None = None) -> NotificationSink:
    config = config or settings.scraper
    if config.notification_backend == NotificationBackend.REDIS:
        return RedisNotificationSink()
    return LoggingNotificationSink()


def build_services(
    store: DocumentStore | None = None,
    handlers: HandlerRegistry | None = None,
    notifier: NotificationSink | None = None,
    registry: CancellationRegistry | None = None,
    config: ScraperSettings | None = None,
) -> ScraperServices:
    """Assemble the scraper components; any piece can be supplied by the caller."""
    config = config or settings.scraper
    store = store or create_store(config)
    handlers = handlers if handlers is not None else default_registry(config)
    notifier = notifier or create_notifier(config)

    orchestrator = ExecutionOrchestrator(
        store=store,
        handlers=handlers,
        notifier=notifier,
        registry=registry if registry is not None else execution_registry,
        config=config,
    )
    promoter = BatchPromoter(store)

    return ScraperServices(
        store=store,
        handlers=handlers,
        notifier=notifier,
        orchestrator=orchestrator,
        promoter=promoter,
        jobs=ScraperJobRunner(orchestrator, promoter, config),
    )


def get_services(request: Request) -> ScraperServices:
    return request.app.state.scraper


def get_store(request: Request) -> DocumentStore:
    return get_services(request).store


def get_orchestrator(request: Request) -> ExecutionOrchestrator:
    return get_services(request).orchestrator


def get_promoter(request: Request) -> BatchPromoter:
    return get_services(request).promoter
