"""
Execution Orchestrator
======================

Runs one harvesting execution end to end:

- Opens a RUNNING execution record and registers a cancellation token
- Invokes the source's handler once
- Deduplicates and stores candidates one by one, notifying as it goes
- Closes the execution with exactly one terminal status

Per-document errors are counted and logged without aborting the run.
Run-level errors and cancellation are converted into a terminal status
and a result object; they never reach the caller.

Version: 0.1.0
"""

import asyncio
import traceback
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel

from services.normative_scraper.cancellation import (
    CancellationRegistry,
    CancellationToken,
    execution_registry,
)
from services.normative_scraper.exceptions import ExecutionCancelledError, ScraperError
from services.normative_scraper.handlers import HandlerRegistry, RawDocument
from services.normative_scraper.models import (
    ExecutionStatus,
    ScrapedDocumentModel,
    ScraperExecutionModel,
    ScraperSourceModel,
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
from services.normative_scraper.store import DocumentStore
from shared.config import ScraperSettings, settings
from shared.logging import bind_context, get_logger, unbind_context


logger = get_logger(__name__)

CANCELLED_BY_USER = "Execution was cancelled by user"
PROCESSING_STATUS = "processing"


@dataclass
class ExecutionResult:
    """Outcome of a single execution."""

    source_id: uuid.UUID
    success: bool
    status: ExecutionStatus
    execution_id: uuid.UUID | None = None
    source_name: str | None = None
    documents_found: int = 0
    documents_new: int = 0
    documents_duplicate: int = 0
    documents_error: int = 0
    duration_ms: int = 0
    error_message: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @classmethod
    def from_execution(
        cls,
        source: ScraperSourceModel,
        execution: ScraperExecutionModel,
        error_message: str | None = None,
    ) -> "ExecutionResult":
        return cls(
            source_id=source.id,
            success=execution.is_success,
            status=execution.status,
            execution_id=execution.id,
            source_name=source.name,
            documents_found=execution.documents_found or 0,
            documents_new=execution.documents_new or 0,
            documents_duplicate=execution.documents_duplicate or 0,
            documents_error=execution.documents_error or 0,
            duration_ms=execution.duration_ms or 0,
            error_message=error_message,
            started_at=execution.started_at,
            completed_at=execution.completed_at,
        )


@dataclass
class _Tally:
    found: int = 0
    new: int = 0
    duplicate: int = 0
    error: int = 0


class ExecutionOrchestrator:
    """
    Coordinates handlers, the document store and notifications for
    harvesting runs.
    """

    def __init__(
        self,
        store: DocumentStore,
        handlers: HandlerRegistry,
        notifier: NotificationSink,
        registry: CancellationRegistry | None = None,
        config: ScraperSettings | None = None,
    ) -> None:
        self.store = store
        self.handlers = handlers
        self.notifier = notifier
        self.registry = registry if registry is not None else execution_registry
        self.config = config or settings.scraper

    async def run_execution(
        self,
        source_id: uuid.UUID,
        triggered_by: str = "system",
        cancel_token: CancellationToken | None = None,
    ) -> ExecutionResult:
        """
        Harvest one source.

        Args:
            source_id: Source to run
            triggered_by: Actor recorded on the execution
            cancel_token: Caller token; cancelling it cancels this run

        Returns:
            Result with the terminal status and document counters
        """
        source = await self.store.get_source(source_id)
        if source is None or source.is_deleted:
            logger.warning("execution_source_not_found", source_id=str(source_id))
            return ExecutionResult(
                source_id=source_id,
                success=False,
                status=ExecutionStatus.FAILED,
                error_message="Source not found",
            )

        execution = ScraperExecutionModel.start(source.id, triggered_by)
        source.record_execution_start()
        await self.store.save(execution, source)

        # Registered before any await so cancel-by-id always finds the live run
        token = self.registry.register(execution.id, parent=cancel_token)
        bind_context(execution_id=str(execution.id), source_id=str(source.id))

        tally = _Tally()
        try:
            await self._notify(
                self.notifier.execution_started,
                ExecutionStartedMessage(
                    execution_id=execution.id,
                    source_id=source.id,
                    source_name=source.name,
                    status=execution.status.value,
                    started_at=execution.started_at,
                    triggered_by=triggered_by,
                ),
            )
            logger.info("execution_started", source=source.name, triggered_by=triggered_by)

            return await self._harvest(source, execution, token, tally)

        except ExecutionCancelledError:
            return await asyncio.shield(self._record_cancelled(source, execution, tally))

        except asyncio.CancelledError:
            # Task-level cancellation: record the outcome, then let it propagate
            await asyncio.shield(self._record_cancelled(source, execution, tally))
            raise

        except Exception as e:
            stack_trace = traceback.format_exc()
            return await asyncio.shield(self._record_failed(source, execution, tally, e, stack_trace))

        finally:
            self.registry.release(execution.id)
            unbind_context("execution_id", "source_id")

    async def _harvest(
        self,
        source: ScraperSourceModel,
        execution: ScraperExecutionModel,
        token: CancellationToken,
        tally: _Tally,
    ) -> ExecutionResult:
        token.raise_if_cancelled()
        await self._log(execution, f"Starting scraping for source: {source.name} ({source.source_type.value})")
        execution.append_log(f"URL: {source.full_url}")

        handler = self.handlers.resolve(source.source_type)
        execution.append_log(f"Using handler: {type(handler).__name__}")

        candidates = await token.guard(handler.harvest(source, token))
        tally.found = len(candidates)

        await self._log(execution, f"Scraping completed. Found {tally.found} documents")
        await self._progress(execution, tally, "Processing documents...")

        for raw in candidates:
            token.raise_if_cancelled()
            label = raw.code or raw.external_id

            try:
                document = await self._store_candidate(source, execution, raw)
            except Exception as e:
                tally.error += 1
                execution.append_log(f"Error processing document {raw.external_id}: {e}")
                logger.warning(
                    "document_processing_failed",
                    external_id=raw.external_id,
                    error=str(e),
                )
                continue

            if document is None:
                tally.duplicate += 1
                execution.append_log(f"Duplicate: {label}")
                continue

            tally.new += 1
            execution.append_log(f"New document: {label} - {document.title}")

            await self._notify(
                self.notifier.document_found,
                DocumentFoundMessage(
                    execution_id=execution.id,
                    source_id=source.id,
                    document_id=document.id,
                    title=document.title,
                    code=document.code,
                    category=document.category,
                    is_new=True,
                ),
            )
            await self._progress(execution, tally, f"Found new: {label}")

        token.raise_if_cancelled()

        execution.set_document_counts(tally.found, tally.new, tally.duplicate, tally.error)
        self._check_error_ratio(tally)

        if tally.error:
            execution.complete_with_warnings(
                tally.found,
                tally.new,
                tally.duplicate,
                tally.error,
                f"{tally.error} documents had processing errors",
            )
        else:
            execution.complete(tally.found, tally.new, tally.duplicate)
        source.record_execution_success(tally.new)

        await asyncio.shield(self.store.save(execution, source))

        await self._notify(
            self.notifier.execution_completed,
            ExecutionCompletedMessage(
                execution_id=execution.id,
                source_id=source.id,
                source_name=source.name,
                status=execution.status.value,
                completed_at=execution.completed_at,
                documents_found=tally.found,
                documents_new=tally.new,
                documents_duplicate=tally.duplicate,
                documents_error=tally.error,
                duration_ms=execution.duration_ms,
            ),
        )

        logger.info(
            "execution_completed",
            source=source.name,
            status=execution.status.value,
            found=tally.found,
            new=tally.new,
            duplicate=tally.duplicate,
            errors=tally.error,
            duration_ms=execution.duration_ms,
        )

        return ExecutionResult.from_execution(source, execution)

    async def _store_candidate(
        self,
        source: ScraperSourceModel,
        execution: ScraperExecutionModel,
        raw: RawDocument,
    ) -> ScrapedDocumentModel | None:
        """Persist a candidate, or return None if it is already stored."""
        if await self.store.is_duplicate(source.id, raw.external_id):
            return None

        document = ScrapedDocumentModel.create(execution.id, source.id, raw.external_id, raw.title)
        document.set_details(
            raw.description,
            raw.code,
            raw.publish_date,
            raw.effective_date,
            raw.category,
        )
        document.set_urls(raw.document_url, raw.pdf_url)

        if raw.raw_html:
            document.set_raw_content(raw.raw_html[: self.config.raw_content_max_chars])

        if raw.metadata:
            document.set_metadata({str(k): str(v) for k, v in raw.metadata.items()})

        await self.store.add_document(document)
        return document

    def _check_error_ratio(self, tally: _Tally) -> None:
        limit = self.config.max_document_error_ratio
        if limit is None or not tally.found:
            return
        ratio = tally.error / tally.found
        if ratio > limit:
            raise ScraperError(
                f"{tally.error} of {tally.found} documents failed, "
                f"error ratio {ratio:.2f} exceeds {limit:.2f}",
                errors=tally.error,
                found=tally.found,
            )

    async def _record_cancelled(
        self,
        source: ScraperSourceModel,
        execution: ScraperExecutionModel,
        tally: _Tally,
    ) -> ExecutionResult:
        if execution.is_terminal:
            # Already closed by this run; its terminal event has been sent
            return ExecutionResult.from_execution(source, execution)

        execution.set_document_counts(tally.found, tally.new, tally.duplicate, tally.error)
        execution.append_log("Execution cancelled")
        execution.cancel()
        await self.store.save(execution, source)

        await self._notify(
            self.notifier.execution_failed,
            ExecutionFailedMessage(
                execution_id=execution.id,
                source_id=source.id,
                source_name=source.name,
                status=ExecutionStatus.CANCELLED.value,
                error_message=CANCELLED_BY_USER,
            ),
        )

        logger.info("execution_cancelled", source=source.name, new=tally.new)

        return ExecutionResult.from_execution(
            source,
            execution,
            error_message="Execution was cancelled",
        )

    async def _record_failed(
        self,
        source: ScraperSourceModel,
        execution: ScraperExecutionModel,
        tally: _Tally,
        error: Exception,
        stack_trace: str,
    ) -> ExecutionResult:
        message = str(error) or type(error).__name__

        if not execution.is_terminal:
            execution.set_document_counts(tally.found, tally.new, tally.duplicate, tally.error)
            execution.append_log(f"Execution failed: {message}")
            execution.fail(message, stack_trace)
            source.record_execution_failure(
                message,
                max_consecutive_failures=self.config.max_consecutive_failures,
                backoff_minutes=self.config.failure_backoff_minutes,
            )
        await self.store.save(execution, source)

        await self._notify(
            self.notifier.execution_failed,
            ExecutionFailedMessage(
                execution_id=execution.id,
                source_id=source.id,
                source_name=source.name,
                status=ExecutionStatus.FAILED.value,
                error_message=message,
                error_details=stack_trace,
            ),
        )

        logger.error(
            "execution_failed",
            source=source.name,
            error=message,
            error_type=type(error).__name__,
            consecutive_failures=source.consecutive_failures,
        )

        return ExecutionResult.from_execution(source, execution, error_message=message)

    async def run_all_due(
        self,
        cancel_token: CancellationToken | None = None,
    ) -> list[ExecutionResult]:
        """
        Run every due source sequentially, pausing between sources.

        Cancelling ``cancel_token`` stops the remaining queue; results of
        runs already finished are returned.
        """
        sources = await self.store.list_due_sources(datetime.now(UTC))
        logger.info("due_sources_found", count=len(sources))

        results: list[ExecutionResult] = []
        for index, source in enumerate(sources):
            if cancel_token is not None and cancel_token.cancelled:
                logger.info("due_run_cancelled", completed=len(results), remaining=len(sources) - index)
                break

            results.append(await self.run_execution(source.id, "scheduled", cancel_token))

            if index < len(sources) - 1:
                try:
                    await self._pause(cancel_token)
                except ExecutionCancelledError:
                    logger.info("due_run_cancelled", completed=len(results), remaining=len(sources) - index - 1)
                    break

        return results

    async def _pause(self, cancel_token: CancellationToken | None) -> None:
        delay = self.config.inter_source_delay_seconds
        if delay <= 0:
            return
        if cancel_token is None:
            await asyncio.sleep(delay)
        else:
            await cancel_token.sleep(delay)

    async def cancel_execution(self, execution_id: uuid.UUID) -> bool:
        """
        Cancel a running execution.

        Live runs in this process are signalled and stop at their next
        check point. A persisted RUNNING execution with no live run is
        moved to CANCELLED directly.

        Returns:
            True if a run was signalled or repaired, False otherwise
        """
        if self.registry.cancel(execution_id, reason=CANCELLED_BY_USER):
            return True

        execution = await self.store.get_execution(execution_id)
        if execution is None or execution.status != ExecutionStatus.RUNNING:
            return False

        execution.append_log("Cancelled with no live run in this process")
        execution.cancel(CANCELLED_BY_USER)
        await self.store.save(execution)

        logger.warning("orphaned_execution_cancelled", execution_id=str(execution_id))

        source = await self.store.get_source(execution.source_id)
        await self._notify(
            self.notifier.execution_failed,
            ExecutionFailedMessage(
                execution_id=execution.id,
                source_id=execution.source_id,
                source_name=source.name if source else "",
                status=ExecutionStatus.CANCELLED.value,
                error_message=CANCELLED_BY_USER,
            ),
        )
        return True

    # Notifications

    async def _log(self, execution: ScraperExecutionModel, message: str, level: str = "info") -> None:
        execution.append_log(message)
        await self._notify(
            self.notifier.execution_log,
            ExecutionLogMessage(
                execution_id=execution.id,
                source_id=execution.source_id,
                message=message,
                level=level,
            ),
        )

    async def _progress(self, execution: ScraperExecutionModel, tally: _Tally, activity: str) -> None:
        await self._notify(
            self.notifier.execution_progress,
            ExecutionProgressMessage(
                execution_id=execution.id,
                source_id=execution.source_id,
                status=PROCESSING_STATUS,
                documents_found=tally.found,
                documents_new=tally.new,
                documents_duplicate=tally.duplicate,
                documents_error=tally.error,
                current_activity=activity,
            ),
        )

    async def _notify(self, send: Callable[[Any], Awaitable[None]], message: BaseModel) -> None:
        try:
            await send(message)
        except Exception as e:
            logger.warning("notification_failed", message_type=type(message).__name__, error=str(e))
