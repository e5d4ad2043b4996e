"""
Scraper Background Jobs
=======================

Recurring harvesting and promotion loops run inside the service process.

Features:
- Runs every due source on a fixed interval
- Promotes pending documents on a separate interval
- Loop errors are logged and the loop keeps going
- Stopping cancels in-flight work through a shared token

Version: 0.1.0
"""

import asyncio
from collections.abc import Awaitable, Callable

from services.normative_scraper.cancellation import CancellationToken
from services.normative_scraper.exceptions import ExecutionCancelledError
from services.normative_scraper.orchestrator import ExecutionOrchestrator
from services.normative_scraper.promoter import BatchPromoter
from shared.config import ScraperSettings, settings
from shared.logging import get_logger


logger = get_logger(__name__)


class ScraperJobRunner:
    """
    Drives scheduled harvesting and promotion.

    Both loops share one cancellation token so ``stop()`` interrupts
    running executions at their next check point.
    """

    def __init__(
        self,
        orchestrator: ExecutionOrchestrator,
        promoter: BatchPromoter,
        config: ScraperSettings | None = None,
    ) -> None:
        self.orchestrator = orchestrator
        self.promoter = promoter
        self.config = config or settings.scraper

        self._token = CancellationToken()
        self._tasks: list[asyncio.Task[None]] = []

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    async def start(self) -> None:
        """Start both loops as background tasks."""
        if self.running:
            return

        self._token = CancellationToken()
        self._tasks = [
            asyncio.create_task(
                self._loop("scheduled_scraping", self.run_scheduled, self.config.schedule_interval_minutes),
                name="scraper-schedule",
            ),
            asyncio.create_task(
                self._loop("document_promotion", self.run_promotion, self.config.promotion_interval_minutes),
                name="scraper-promotion",
            ),
        ]
        logger.info(
            "scraper_jobs_started",
            schedule_interval_minutes=self.config.schedule_interval_minutes,
            promotion_interval_minutes=self.config.promotion_interval_minutes,
        )

    async def stop(self) -> None:
        """Cancel the shared token and wait for both loops to finish."""
        self._token.cancel("Scraper jobs stopping")
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("scraper_jobs_stopped")

    async def run_scheduled(self) -> None:
        results = await self.orchestrator.run_all_due(self._token)
        logger.info(
            "scheduled_scraping_completed",
            executions=len(results),
            successful=sum(1 for r in results if r.success),
            documents_new=sum(r.documents_new for r in results),
        )

    async def run_promotion(self) -> None:
        batch = await self.promoter.promote_all_pending(cancel_token=self._token)
        if batch.total_processed:
            logger.info(
                "scheduled_promotion_completed",
                total=batch.total_processed,
                success=batch.success_count,
                ignored=batch.ignored_count,
                errors=batch.error_count,
            )

    async def _loop(
        self,
        name: str,
        job: Callable[[], Awaitable[None]],
        interval_minutes: int,
    ) -> None:
        while not self._token.cancelled:
            try:
                await job()
            except Exception as e:
                logger.error("job_loop_error", job=name, error=str(e))

            try:
                await self._token.sleep(interval_minutes * 60)
            except ExecutionCancelledError:
                break
