"""
Test Configuration
==================

Pytest fixtures for Normwatch tests.
"""

import asyncio
import os
import uuid
from collections.abc import AsyncGenerator, Callable
from typing import Any

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Set test environment
os.environ["ENVIRONMENT"] = "testing"
os.environ["SCRAPER_STORE_BACKEND"] = "memory"
os.environ["SCRAPER_NOTIFICATION_BACKEND"] = "log"

from services.normative_scraper.cancellation import CancellationRegistry, CancellationToken
from services.normative_scraper.handlers import (
    ConfiguredCatalogHandler,
    HandlerRegistry,
    RawDocument,
    SourceHandler,
)
from services.normative_scraper.models import (
    ScrapedDocumentModel,
    ScraperFrequency,
    ScraperSourceModel,
    SourceType,
)
from services.normative_scraper.notifications import (
    DocumentFoundMessage,
    ExecutionCompletedMessage,
    ExecutionFailedMessage,
    ExecutionLogMessage,
    ExecutionProgressMessage,
    ExecutionStartedMessage,
    NotificationSink,
)
from services.normative_scraper.orchestrator import ExecutionOrchestrator
from services.normative_scraper.promoter import BatchPromoter
from services.normative_scraper.store import InMemoryDocumentStore
from shared.config import ScraperSettings


# ============================================================================
# Test Doubles
# ============================================================================


class RecordingNotificationSink(NotificationSink):
    """Keeps every event in arrival order."""

    def __init__(self) -> None:
        self.events: list[tuple[str, Any]] = []

    @property
    def names(self) -> list[str]:
        return [name for name, _ in self.events]

    def of(self, name: str) -> list[Any]:
        return [message for event, message in self.events if event == name]

    async def execution_started(self, message: ExecutionStartedMessage) -> None:
        self.events.append(("started", message))

    async def execution_log(self, message: ExecutionLogMessage) -> None:
        self.events.append(("log", message))

    async def execution_progress(self, message: ExecutionProgressMessage) -> None:
        self.events.append(("progress", message))

    async def document_found(self, message: DocumentFoundMessage) -> None:
        self.events.append(("document_found", message))

    async def execution_completed(self, message: ExecutionCompletedMessage) -> None:
        self.events.append(("completed", message))

    async def execution_failed(self, message: ExecutionFailedMessage) -> None:
        self.events.append(("failed", message))


class StubHandler(SourceHandler):
    """
    Handler returning canned documents.

    ``error`` is raised from harvest; ``block`` makes harvest wait until
    it is cancelled.
    """

    def __init__(
        self,
        documents: list[RawDocument] | None = None,
        error: Exception | None = None,
        block: bool = False,
        source_types: tuple[SourceType, ...] = (SourceType.CUSTOM,),
        on_harvest: Callable[[], None] | None = None,
    ) -> None:
        self.documents = documents or []
        self.error = error
        self.block = block
        self.source_types = source_types
        self.on_harvest = on_harvest
        self.calls = 0
        self.started = asyncio.Event()

    def can_handle(self, source_type: SourceType) -> bool:
        return source_type in self.source_types

    async def harvest(
        self,
        source: ScraperSourceModel,
        cancel_token: CancellationToken,
    ) -> list[RawDocument]:
        self.calls += 1
        self.started.set()

        if self.on_harvest is not None:
            self.on_harvest()
        if self.block:
            await asyncio.Event().wait()
        if self.error is not None:
            raise self.error
        return list(self.documents)


def raw(external_id: str, title: str | None = None, **kwargs: Any) -> RawDocument:
    """Build a raw candidate with a default title."""
    return RawDocument(
        external_id=external_id,
        title=f"Document {external_id}" if title is None else title,
        **kwargs,
    )


def add_source(
    store: InMemoryDocumentStore,
    source_type: SourceType = SourceType.CUSTOM,
    name: str = "CONSAR circulars",
    **kwargs: Any,
) -> ScraperSourceModel:
    source = ScraperSourceModel.create(
        name=name,
        source_type=source_type,
        base_url=kwargs.pop("base_url", "https://www.gob.mx/consar"),
        frequency=kwargs.pop("frequency", ScraperFrequency.DAILY),
        **kwargs,
    )
    store.sources[source.id] = source
    return source


def add_document(
    store: InMemoryDocumentStore,
    source: ScraperSourceModel,
    external_id: str,
    title: str | None = None,
    code: str | None = None,
    description: str | None = None,
    category: str | None = None,
    execution_id: uuid.UUID | None = None,
) -> ScrapedDocumentModel:
    document = ScrapedDocumentModel.create(
        execution_id or uuid.uuid4(),
        source.id,
        external_id,
        title or f"Document {external_id}",
    )
    document.set_details(description, code, None, None, category)
    store.documents[document.id] = document
    return document


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def scraper_config() -> ScraperSettings:
    """Scraper settings with no inter-source pause."""
    return ScraperSettings(inter_source_delay_seconds=0)


@pytest.fixture
def store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture
def notifier() -> RecordingNotificationSink:
    return RecordingNotificationSink()


@pytest.fixture
def registry() -> CancellationRegistry:
    return CancellationRegistry()


@pytest.fixture
def stub_handler() -> StubHandler:
    return StubHandler()


@pytest.fixture
def orchestrator(
    store: InMemoryDocumentStore,
    stub_handler: StubHandler,
    notifier: RecordingNotificationSink,
    registry: CancellationRegistry,
    scraper_config: ScraperSettings,
) -> ExecutionOrchestrator:
    return ExecutionOrchestrator(
        store=store,
        handlers=HandlerRegistry([stub_handler]),
        notifier=notifier,
        registry=registry,
        config=scraper_config,
    )


@pytest.fixture
def promoter(store: InMemoryDocumentStore) -> BatchPromoter:
    return BatchPromoter(store)


@pytest_asyncio.fixture
async def scraper_client(
    store: InMemoryDocumentStore,
    notifier: RecordingNotificationSink,
    registry: CancellationRegistry,
    scraper_config: ScraperSettings,
) -> AsyncGenerator[AsyncClient, None]:
    """Create test client for the Normative Scraper Service."""
    from services.normative_scraper.dependencies import build_services
    from services.normative_scraper.main import app

    app.state.scraper = build_services(
        store=store,
        handlers=HandlerRegistry([ConfiguredCatalogHandler()]),
        notifier=notifier,
        registry=registry,
        config=scraper_config,
    )

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client

    del app.state.scraper


@pytest.fixture
def catalog_configuration() -> dict[str, Any]:
    """Source configuration with two reference records."""
    return {
        "documents": [
            {
                "external_id": "CIRC-19-8",
                "title": "Circular CONSAR 19-8 sobre formato de nómina",
                "code": "CONSAR 19-8",
                "publish_date": "2024-01-15",
                "pdf_url": "https://www.gob.mx/consar/circular-19-8.pdf",
            },
            {
                "external_id": "CIRC-19-9",
                "title": "Aviso informativo de calendario",
                "publish_date": "2024-02-01",
                "document_url": "https://www.gob.mx/consar/aviso-19-9",
            },
        ]
    }
