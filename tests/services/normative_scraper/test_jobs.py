"""
Tests for Scraper Background Jobs
=================================

Version: 0.1.0
"""

import asyncio
import uuid
from unittest.mock import AsyncMock, MagicMock

import pytest

from services.normative_scraper.jobs import ScraperJobRunner
from services.normative_scraper.models import ExecutionStatus
from services.normative_scraper.orchestrator import ExecutionResult
from services.normative_scraper.promoter import PromotionBatchResult
from shared.config import ScraperSettings


@pytest.fixture
def mock_orchestrator() -> MagicMock:
    orchestrator = MagicMock()
    orchestrator.run_all_due = AsyncMock(return_value=[])
    return orchestrator


@pytest.fixture
def mock_promoter() -> MagicMock:
    promoter = MagicMock()
    promoter.promote_all_pending = AsyncMock(return_value=PromotionBatchResult())
    return promoter


@pytest.fixture
def runner(mock_orchestrator: MagicMock, mock_promoter: MagicMock) -> ScraperJobRunner:
    return ScraperJobRunner(mock_orchestrator, mock_promoter, ScraperSettings())


class TestScraperJobRunner:
    """Tests for ScraperJobRunner."""

    @pytest.mark.asyncio
    async def test_start_runs_both_jobs_then_stops(
        self,
        runner: ScraperJobRunner,
        mock_orchestrator: MagicMock,
        mock_promoter: MagicMock,
    ) -> None:
        """Test each loop runs immediately and stop ends both."""
        await runner.start()
        await asyncio.sleep(0.05)

        assert runner.running is True
        mock_orchestrator.run_all_due.assert_awaited_once()
        mock_promoter.promote_all_pending.assert_awaited_once()

        await runner.stop()

        assert runner.running is False

    @pytest.mark.asyncio
    async def test_start_is_idempotent(
        self,
        runner: ScraperJobRunner,
        mock_orchestrator: MagicMock,
    ) -> None:
        """Test a second start does not spawn more loops."""
        await runner.start()
        await runner.start()
        await asyncio.sleep(0.05)

        mock_orchestrator.run_all_due.assert_awaited_once()
        await runner.stop()

    @pytest.mark.asyncio
    async def test_jobs_share_stop_token(
        self,
        runner: ScraperJobRunner,
        mock_orchestrator: MagicMock,
        mock_promoter: MagicMock,
    ) -> None:
        """Test the stop token is handed to the orchestrator and promoter."""
        await runner.run_scheduled()
        await runner.run_promotion()

        due_token = mock_orchestrator.run_all_due.await_args.args[0]
        promotion_token = mock_promoter.promote_all_pending.await_args.kwargs["cancel_token"]
        assert due_token is promotion_token

        await runner.stop()

        assert due_token.cancelled is True

    @pytest.mark.asyncio
    async def test_loop_survives_job_errors(
        self,
        runner: ScraperJobRunner,
        mock_orchestrator: MagicMock,
    ) -> None:
        """Test a failing job is logged and the loop keeps waiting."""
        mock_orchestrator.run_all_due.side_effect = RuntimeError("database down")

        await runner.start()
        await asyncio.sleep(0.05)

        assert runner.running is True

        await runner.stop()

    @pytest.mark.asyncio
    async def test_run_scheduled_summarizes_results(
        self,
        runner: ScraperJobRunner,
        mock_orchestrator: MagicMock,
    ) -> None:
        """Test results of the due run are consumed without error."""
        mock_orchestrator.run_all_due.return_value = [
            ExecutionResult(
                source_id=uuid.uuid4(),
                success=True,
                status=ExecutionStatus.COMPLETED,
                documents_new=2,
            ),
            ExecutionResult(
                source_id=uuid.uuid4(),
                success=False,
                status=ExecutionStatus.FAILED,
            ),
        ]

        await runner.run_scheduled()

        mock_orchestrator.run_all_due.assert_awaited_once()
