"""
Base Source Handler
===================

Contract every per-source extractor implements, plus an HTTP base with
rate limiting and retry.

Version: 0.1.0
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from typing import TYPE_CHECKING, Any

import httpx

from shared.config import ScraperSettings, settings
from shared.logging import get_logger

if TYPE_CHECKING:
    from services.normative_scraper.cancellation import CancellationToken
    from services.normative_scraper.models import ScraperSourceModel, SourceType


logger = get_logger(__name__)


@dataclass
class RawDocument:
    """A candidate document produced by a handler, before deduplication."""

    external_id: str
    title: str
    description: str | None = None
    code: str | None = None
    category: str | None = None
    publish_date: date | None = None
    effective_date: date | None = None
    document_url: str | None = None
    pdf_url: str | None = None
    raw_html: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


class SourceHandler(ABC):
    """Extracts candidate documents from one kind of source."""

    @abstractmethod
    def can_handle(self, source_type: "SourceType") -> bool:
        """Whether this handler serves the given source type."""
        ...

    @abstractmethod
    async def harvest(
        self,
        source: "ScraperSourceModel",
        cancel_token: "CancellationToken",
    ) -> list[RawDocument]:
        """
        Fetch the current candidate documents for a source.

        Implementations should check ``cancel_token`` between requests.
        Errors propagate to the orchestrator, which fails the run.
        """
        ...

    async def close(self) -> None:
        """Release any resources held by the handler."""
        return None


class HttpSourceHandler(SourceHandler):
    """
    Handler base for sources fetched over HTTP.

    Provides a lazily created ``httpx.AsyncClient``, a per-handler rate
    limit and retries on 429, 5xx, connect errors and timeouts.
    """

    def __init__(self, config: ScraperSettings | None = None) -> None:
        self.config = config or settings.scraper
        self._client: httpx.AsyncClient | None = None
        self._request_count = 0
        self._last_request_time: datetime | None = None

    @property
    def request_count(self) -> int:
        return self._request_count

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            timeout = httpx.Timeout(
                connect=self.config.connect_timeout,
                read=self.config.read_timeout,
                write=30.0,
                pool=30.0,
            )

            self._client = httpx.AsyncClient(
                timeout=timeout,
                headers={
                    "User-Agent": self.config.user_agent,
                    "Accept": "application/rss+xml, application/atom+xml, text/html, application/xml",
                },
                follow_redirects=True,
                http2=True,
            )

        return self._client

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _request(
        self,
        method: str,
        url: str,
        **kwargs: Any,
    ) -> httpx.Response:
        """
        Make an HTTP request with rate limiting and retry.

        Args:
            method: HTTP method
            url: URL to request
            **kwargs: Additional arguments for httpx

        Returns:
            HTTP response
        """
        client = await self._get_client()

        if self._last_request_time:
            elapsed = (datetime.now(UTC) - self._last_request_time).total_seconds()
            min_interval = 60.0 / self.config.requests_per_minute
            if elapsed < min_interval:
                await asyncio.sleep(min_interval - elapsed)

        last_error: Exception | None = None
        for attempt in range(self.config.retry_count):
            try:
                self._last_request_time = datetime.now(UTC)
                self._request_count += 1

                response = await client.request(method, url, **kwargs)
                response.raise_for_status()

                logger.debug(
                    "handler_request",
                    handler=type(self).__name__,
                    url=url,
                    status=response.status_code,
                )

                return response

            except httpx.HTTPStatusError as e:
                last_error = e
                if e.response.status_code == 429:
                    wait_time = self.config.retry_delay_seconds * (attempt + 1) * 2
                    logger.warning(
                        "rate_limited",
                        handler=type(self).__name__,
                        wait=wait_time,
                    )
                    await asyncio.sleep(wait_time)
                elif e.response.status_code >= 500:
                    await asyncio.sleep(self.config.retry_delay_seconds * (attempt + 1))
                else:
                    raise

            except (httpx.ConnectError, httpx.TimeoutException) as e:
                last_error = e
                logger.warning(
                    "request_failed",
                    handler=type(self).__name__,
                    attempt=attempt + 1,
                    error=str(e),
                )
                await asyncio.sleep(self.config.retry_delay_seconds * (attempt + 1))

        raise last_error or RuntimeError(f"Request failed after {self.config.retry_count} attempts")
