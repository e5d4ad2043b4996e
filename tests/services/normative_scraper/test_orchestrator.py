"""
Tests for the Execution Orchestrator
====================================

Tests for:
- Deduplication and per-document error accounting
- Terminal statuses and source bookkeeping
- Notification ordering
- Cancellation by id, by caller token and orphan repair
- Sequential runs of due sources

Version: 0.1.0
"""

import asyncio
import uuid
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, patch

import pytest

from services.normative_scraper.cancellation import CancellationRegistry, CancellationToken
from services.normative_scraper.exceptions import DuplicateDocumentError
from services.normative_scraper.handlers import HandlerRegistry
from services.normative_scraper.models import (
    ExecutionStatus,
    ScraperExecutionModel,
    SourceType,
)
from services.normative_scraper.orchestrator import ExecutionOrchestrator
from services.normative_scraper.store import InMemoryDocumentStore
from shared.config import ScraperSettings
from tests.conftest import (
    RecordingNotificationSink,
    StubHandler,
    add_document,
    add_source,
    raw,
)


def make_orchestrator(
    store: InMemoryDocumentStore,
    handler: StubHandler,
    notifier: RecordingNotificationSink,
    registry: CancellationRegistry,
    **config: object,
) -> ExecutionOrchestrator:
    return ExecutionOrchestrator(
        store=store,
        handlers=HandlerRegistry([handler]),
        notifier=notifier,
        registry=registry,
        config=ScraperSettings(inter_source_delay_seconds=0, **config),
    )


# ============================================================================
# Successful Runs
# ============================================================================


class TestRunExecution:
    """Tests for run_execution outcomes."""

    @pytest.mark.asyncio
    async def test_mixed_candidates_complete_with_warnings(
        self,
        store: InMemoryDocumentStore,
        stub_handler: StubHandler,
        registry: CancellationRegistry,
        orchestrator: ExecutionOrchestrator,
    ) -> None:
        """Test 5 candidates with 2 stored earlier and 1 malformed."""
        source = add_source(store)
        add_document(store, source, "A")
        add_document(store, source, "B")
        stub_handler.documents = [raw("A"), raw("B"), raw("C"), raw("D"), raw("E", title="")]

        result = await orchestrator.run_execution(source.id, triggered_by="tester")

        assert result.success is True
        assert result.status == ExecutionStatus.COMPLETED_WITH_WARNINGS
        assert result.documents_found == 5
        assert result.documents_new == 2
        assert result.documents_duplicate == 2
        assert result.documents_error == 1

        execution = await store.get_execution(result.execution_id)
        assert execution.status == ExecutionStatus.COMPLETED_WITH_WARNINGS
        assert execution.triggered_by == "tester"
        assert execution.documents_error == 1
        assert execution.error_message == "1 documents had processing errors"
        assert "Error processing document E" in execution.execution_log
        assert "Duplicate: A" in execution.execution_log

        assert len(store.documents) == 4
        assert result.execution_id not in registry

    @pytest.mark.asyncio
    async def test_clean_run_completes(
        self,
        store: InMemoryDocumentStore,
        stub_handler: StubHandler,
        orchestrator: ExecutionOrchestrator,
    ) -> None:
        """Test a run without errors ends COMPLETED and updates the source."""
        source = add_source(store)
        stub_handler.documents = [raw("A", code="consar 1-1"), raw("B")]

        result = await orchestrator.run_execution(source.id)

        assert result.status == ExecutionStatus.COMPLETED
        assert result.documents_new == 2
        assert result.completed_at is not None
        assert source.total_executions == 1
        assert source.total_documents_found == 2
        assert source.consecutive_failures == 0
        assert source.last_execution_at is not None

        codes = {d.code for d in store.documents.values()}
        assert codes == {"CONSAR 1-1", None}

    @pytest.mark.asyncio
    async def test_rerun_counts_duplicates(
        self,
        store: InMemoryDocumentStore,
        stub_handler: StubHandler,
        orchestrator: ExecutionOrchestrator,
    ) -> None:
        """Test re-harvesting the same candidates creates no new rows."""
        source = add_source(store)
        stub_handler.documents = [raw("A"), raw("B")]

        await orchestrator.run_execution(source.id)
        second = await orchestrator.run_execution(source.id)

        assert second.status == ExecutionStatus.COMPLETED
        assert second.documents_new == 0
        assert second.documents_duplicate == 2
        assert len(store.documents) == 2
        assert source.total_executions == 2

    @pytest.mark.asyncio
    async def test_notifications_follow_document_loop(
        self,
        store: InMemoryDocumentStore,
        stub_handler: StubHandler,
        notifier: RecordingNotificationSink,
        orchestrator: ExecutionOrchestrator,
    ) -> None:
        """Test events are ordered and progress counters never decrease."""
        source = add_source(store)
        add_document(store, source, "B")
        stub_handler.documents = [raw("A"), raw("B"), raw("C")]

        await orchestrator.run_execution(source.id)

        assert notifier.names == [
            "started",
            "log",
            "log",
            "progress",
            "document_found",
            "progress",
            "document_found",
            "progress",
            "completed",
        ]

        progress = notifier.of("progress")
        assert [p.documents_new for p in progress] == [0, 1, 2]
        assert [p.documents_duplicate for p in progress] == [0, 0, 1]
        assert all(p.documents_found == 3 for p in progress)

        completed = notifier.of("completed")[0]
        assert completed.documents_new == 2
        assert completed.documents_duplicate == 1

    @pytest.mark.asyncio
    async def test_raw_content_is_capped(
        self,
        store: InMemoryDocumentStore,
        notifier: RecordingNotificationSink,
        registry: CancellationRegistry,
    ) -> None:
        """Test raw HTML snapshots are truncated."""
        source = add_source(store)
        handler = StubHandler(documents=[raw("A", raw_html="x" * 100, metadata={"page": 3})])
        orchestrator = make_orchestrator(store, handler, notifier, registry, raw_content_max_chars=10)

        await orchestrator.run_execution(source.id)

        document = next(iter(store.documents.values()))
        assert document.raw_html == "x" * 10
        assert document.document_metadata == {"page": "3"}

    @pytest.mark.asyncio
    async def test_constraint_violation_is_per_document_error(
        self,
        store: InMemoryDocumentStore,
        stub_handler: StubHandler,
        orchestrator: ExecutionOrchestrator,
    ) -> None:
        """Test a store-level uniqueness violation does not abort the run."""
        source = add_source(store)
        add_document(store, source, "A")
        stub_handler.documents = [raw("A"), raw("B")]

        with patch.object(store, "is_duplicate", new_callable=AsyncMock, return_value=False):
            result = await orchestrator.run_execution(source.id)

        assert result.status == ExecutionStatus.COMPLETED_WITH_WARNINGS
        assert result.documents_error == 1
        assert result.documents_new == 1
        assert len(store.documents) == 2

    @pytest.mark.asyncio
    async def test_notification_failures_do_not_fail_run(
        self,
        store: InMemoryDocumentStore,
        stub_handler: StubHandler,
        notifier: RecordingNotificationSink,
        orchestrator: ExecutionOrchestrator,
    ) -> None:
        """Test a broken sink is ignored."""
        source = add_source(store)
        stub_handler.documents = [raw("A")]

        with patch.object(
            notifier,
            "document_found",
            new_callable=AsyncMock,
            side_effect=ConnectionError("redis down"),
        ):
            result = await orchestrator.run_execution(source.id)

        assert result.status == ExecutionStatus.COMPLETED
        assert notifier.names[-1] == "completed"


# ============================================================================
# Failed Runs
# ============================================================================


class TestRunExecutionFailures:
    """Tests for run-level failures."""

    @pytest.mark.asyncio
    async def test_unknown_source_creates_no_execution(
        self,
        store: InMemoryDocumentStore,
        notifier: RecordingNotificationSink,
        orchestrator: ExecutionOrchestrator,
    ) -> None:
        """Test an unknown source yields a FAILED result and nothing else."""
        result = await orchestrator.run_execution(uuid.uuid4())

        assert result.success is False
        assert result.status == ExecutionStatus.FAILED
        assert result.execution_id is None
        assert result.error_message == "Source not found"
        assert store.executions == {}
        assert notifier.events == []

    @pytest.mark.asyncio
    async def test_deleted_source_creates_no_execution(
        self,
        store: InMemoryDocumentStore,
        orchestrator: ExecutionOrchestrator,
    ) -> None:
        """Test a soft-deleted source is treated as missing."""
        source = add_source(store)
        source.soft_delete()

        result = await orchestrator.run_execution(source.id)

        assert result.status == ExecutionStatus.FAILED
        assert store.executions == {}

    @pytest.mark.asyncio
    async def test_missing_handler_fails_run(
        self,
        store: InMemoryDocumentStore,
        notifier: RecordingNotificationSink,
        registry: CancellationRegistry,
        orchestrator: ExecutionOrchestrator,
    ) -> None:
        """Test a source type without handler is a configuration error."""
        source = add_source(store, source_type=SourceType.DOF)

        result = await orchestrator.run_execution(source.id)

        assert result.status == ExecutionStatus.FAILED
        assert "No handler found for source type: dof" in result.error_message
        assert source.consecutive_failures == 1
        assert source.last_error == result.error_message
        assert notifier.names[0] == "started"
        assert notifier.names[-1] == "failed"
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_handler_error_fails_run(
        self,
        store: InMemoryDocumentStore,
        stub_handler: StubHandler,
        notifier: RecordingNotificationSink,
        orchestrator: ExecutionOrchestrator,
    ) -> None:
        """Test a transport error ends FAILED with diagnostics and backoff."""
        source = add_source(store)
        stub_handler.error = RuntimeError("connection reset")
        before = datetime.now(UTC)

        result = await orchestrator.run_execution(source.id)

        assert result.status == ExecutionStatus.FAILED
        assert result.error_message == "connection reset"
        assert store.documents == {}

        execution = await store.get_execution(result.execution_id)
        assert execution.status == ExecutionStatus.FAILED
        assert "RuntimeError" in execution.error_stack_trace

        # First failure backs off 2 * 15 minutes
        assert source.next_scheduled_at >= before + timedelta(minutes=30)
        assert source.is_enabled is True

        failed = notifier.of("failed")[0]
        assert failed.status == "failed"
        assert failed.error_message == "connection reset"

    @pytest.mark.asyncio
    async def test_repeated_failures_disable_source(
        self,
        store: InMemoryDocumentStore,
        stub_handler: StubHandler,
        orchestrator: ExecutionOrchestrator,
    ) -> None:
        """Test the source is disabled after five consecutive failures."""
        source = add_source(store)
        stub_handler.error = RuntimeError("down")

        for _ in range(5):
            await orchestrator.run_execution(source.id)

        assert source.consecutive_failures == 5
        assert source.is_enabled is False
        assert source.next_scheduled_at is None

    @pytest.mark.asyncio
    async def test_error_ratio_escalates_to_failed(
        self,
        store: InMemoryDocumentStore,
        notifier: RecordingNotificationSink,
        registry: CancellationRegistry,
    ) -> None:
        """Test a configured error ratio turns a warning run into a failure."""
        source = add_source(store)
        handler = StubHandler(documents=[raw("A"), raw("", title="x"), raw("C", title=" ")])
        orchestrator = make_orchestrator(store, handler, notifier, registry, max_document_error_ratio=0.5)

        result = await orchestrator.run_execution(source.id)

        assert result.status == ExecutionStatus.FAILED
        assert result.documents_error == 2
        assert result.documents_new == 1
        assert source.consecutive_failures == 1

    @pytest.mark.asyncio
    async def test_error_ratio_within_limit_still_warns(
        self,
        store: InMemoryDocumentStore,
        notifier: RecordingNotificationSink,
        registry: CancellationRegistry,
    ) -> None:
        """Test a ratio under the limit keeps COMPLETED_WITH_WARNINGS."""
        source = add_source(store)
        handler = StubHandler(documents=[raw("A"), raw("B"), raw("C", title="")])
        orchestrator = make_orchestrator(store, handler, notifier, registry, max_document_error_ratio=0.5)

        result = await orchestrator.run_execution(source.id)

        assert result.status == ExecutionStatus.COMPLETED_WITH_WARNINGS


# ============================================================================
# Cancellation
# ============================================================================


class TestCancellation:
    """Tests for cancel_execution and caller tokens."""

    @pytest.mark.asyncio
    async def test_cancel_running_execution_by_id(
        self,
        store: InMemoryDocumentStore,
        notifier: RecordingNotificationSink,
        registry: CancellationRegistry,
    ) -> None:
        """Test cancel-by-id stops a live run without touching the caller token."""
        source = add_source(store)
        handler = StubHandler(block=True)
        orchestrator = make_orchestrator(store, handler, notifier, registry)
        caller = CancellationToken()

        task = asyncio.create_task(orchestrator.run_execution(source.id, cancel_token=caller))
        await handler.started.wait()

        execution_id = registry.running()[0]
        assert await orchestrator.cancel_execution(execution_id) is True

        result = await task

        assert result.status == ExecutionStatus.CANCELLED
        assert result.success is False
        assert caller.cancelled is False
        assert execution_id not in registry
        assert source.consecutive_failures == 0

        execution = await store.get_execution(execution_id)
        assert execution.status == ExecutionStatus.CANCELLED

        failed = notifier.of("failed")[0]
        assert failed.status == "cancelled"
        assert failed.error_message == "Execution was cancelled by user"
        assert notifier.of("completed") == []

    @pytest.mark.asyncio
    async def test_caller_token_cancels_execution(
        self,
        store: InMemoryDocumentStore,
        notifier: RecordingNotificationSink,
        registry: CancellationRegistry,
    ) -> None:
        """Test cancelling the caller token cancels the linked run."""
        source = add_source(store)
        handler = StubHandler(block=True)
        orchestrator = make_orchestrator(store, handler, notifier, registry)
        caller = CancellationToken()

        task = asyncio.create_task(orchestrator.run_execution(source.id, cancel_token=caller))
        await handler.started.wait()
        caller.cancel()

        result = await task

        assert result.status == ExecutionStatus.CANCELLED
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_task_cancellation_records_cancelled(
        self,
        store: InMemoryDocumentStore,
        notifier: RecordingNotificationSink,
        registry: CancellationRegistry,
    ) -> None:
        """Test cancelling the asyncio task still persists CANCELLED."""
        source = add_source(store)
        handler = StubHandler(block=True)
        orchestrator = make_orchestrator(store, handler, notifier, registry)

        task = asyncio.create_task(orchestrator.run_execution(source.id))
        await handler.started.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        execution = next(iter(store.executions.values()))
        assert execution.status == ExecutionStatus.CANCELLED
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_orphaned_running_execution_is_repaired(
        self,
        store: InMemoryDocumentStore,
        orchestrator: ExecutionOrchestrator,
    ) -> None:
        """Test a RUNNING record with no live run is forced to CANCELLED once."""
        source = add_source(store)
        execution = ScraperExecutionModel.start(source.id, "scheduled")
        await store.save(execution)

        assert await orchestrator.cancel_execution(execution.id) is True
        assert execution.status == ExecutionStatus.CANCELLED

        completed_at = execution.completed_at
        assert await orchestrator.cancel_execution(execution.id) is False
        assert execution.status == ExecutionStatus.CANCELLED
        assert execution.completed_at == completed_at

    @pytest.mark.asyncio
    async def test_cancel_unknown_execution_is_noop(
        self,
        orchestrator: ExecutionOrchestrator,
    ) -> None:
        """Test cancelling an unknown id does nothing."""
        assert await orchestrator.cancel_execution(uuid.uuid4()) is False

    @pytest.mark.asyncio
    async def test_cancel_during_started_notification(
        self,
        store: InMemoryDocumentStore,
        registry: CancellationRegistry,
    ) -> None:
        """Test a cancel sent while the started event is delivered stops the live run once."""
        source = add_source(store)
        handler = StubHandler(documents=[raw("A")])
        orchestrator: ExecutionOrchestrator

        class CancellingSink(RecordingNotificationSink):
            async def execution_started(self, message):
                await super().execution_started(message)
                self.cancel_accepted = await orchestrator.cancel_execution(message.execution_id)

        notifier = CancellingSink()
        orchestrator = make_orchestrator(store, handler, notifier, registry)

        result = await orchestrator.run_execution(source.id)

        assert notifier.cancel_accepted is True
        assert result.status == ExecutionStatus.CANCELLED
        assert handler.calls == 0
        assert len(registry) == 0

        terminal = notifier.of("completed") + notifier.of("failed")
        assert len(terminal) == 1
        assert terminal[0].status == "cancelled"

        execution = await store.get_execution(result.execution_id)
        assert execution.status == ExecutionStatus.CANCELLED
        assert store.documents == {}

    @pytest.mark.asyncio
    async def test_task_cancel_after_completion_keeps_completed(
        self,
        store: InMemoryDocumentStore,
        registry: CancellationRegistry,
    ) -> None:
        """Test a task cancel during the completed event sends no cancelled event."""
        source = add_source(store)
        handler = StubHandler(documents=[raw("A")])
        delivering = asyncio.Event()

        class SlowCompletedSink(RecordingNotificationSink):
            async def execution_completed(self, message):
                await super().execution_completed(message)
                delivering.set()
                await asyncio.Event().wait()

        notifier = SlowCompletedSink()
        orchestrator = make_orchestrator(store, handler, notifier, registry)

        task = asyncio.create_task(orchestrator.run_execution(source.id))
        await delivering.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        execution = next(iter(store.executions.values()))
        assert execution.status == ExecutionStatus.COMPLETED
        assert notifier.of("failed") == []
        assert len(notifier.of("completed")) == 1
        assert len(registry) == 0


# ============================================================================
# Due Runs
# ============================================================================


class TestRunAllDue:
    """Tests for run_all_due."""

    @staticmethod
    def make_due(store: InMemoryDocumentStore, name: str, minutes_ago: int = 5):
        source = add_source(store, name=name)
        source.next_scheduled_at = datetime.now(UTC) - timedelta(minutes=minutes_ago)
        return source

    @pytest.mark.asyncio
    async def test_runs_only_due_sources_in_order(
        self,
        store: InMemoryDocumentStore,
        stub_handler: StubHandler,
        orchestrator: ExecutionOrchestrator,
    ) -> None:
        """Test enabled sources past their schedule run oldest first."""
        later = self.make_due(store, "later", minutes_ago=1)
        earlier = self.make_due(store, "earlier", minutes_ago=10)
        add_source(store, name="not due")
        disabled = self.make_due(store, "disabled")
        disabled.disable()

        results = await orchestrator.run_all_due()

        assert [r.source_id for r in results] == [earlier.id, later.id]
        assert stub_handler.calls == 2

        executions = await store.list_executions()
        assert {e.triggered_by for e in executions} == {"scheduled"}

    @pytest.mark.asyncio
    async def test_cancelled_token_runs_nothing(
        self,
        store: InMemoryDocumentStore,
        stub_handler: StubHandler,
        orchestrator: ExecutionOrchestrator,
    ) -> None:
        """Test a token cancelled up front skips the whole queue."""
        self.make_due(store, "one")
        token = CancellationToken()
        token.cancel()

        results = await orchestrator.run_all_due(token)

        assert results == []
        assert stub_handler.calls == 0

    @pytest.mark.asyncio
    async def test_cancellation_stops_remaining_queue(
        self,
        store: InMemoryDocumentStore,
        notifier: RecordingNotificationSink,
        registry: CancellationRegistry,
    ) -> None:
        """Test cancelling mid-queue keeps finished results and skips the rest."""
        self.make_due(store, "one", minutes_ago=10)
        self.make_due(store, "two", minutes_ago=5)
        token = CancellationToken()
        handler = StubHandler(documents=[raw("A")], on_harvest=token.cancel)
        orchestrator = make_orchestrator(store, handler, notifier, registry)

        results = await orchestrator.run_all_due(token)

        assert len(results) == 1
        assert results[0].status == ExecutionStatus.CANCELLED
        assert handler.calls == 1
