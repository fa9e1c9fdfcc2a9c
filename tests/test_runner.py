"""
Tests for the cycle runner (overlap guard, status, persistence) and CLI parsing.
"""

import asyncio
import sqlite3
from unittest.mock import AsyncMock, MagicMock

import pytest

from dividend_router.cycle_history import CycleHistoryDB
from dividend_router.errors import CycleAlreadyRunning, PreconditionFailure
from dividend_router.models import CycleResult, CycleStatus
from dividend_router.runner import CycleRunner, build_parser


def completed_result():
    return CycleResult(status=CycleStatus.COMPLETED, total_balance="3.0", attempted=2, succeeded=1, failed=1)


class TestCycleRunner:

    @pytest.mark.asyncio
    async def test_overlapping_run_rejected(self):
        release = asyncio.Event()

        class SlowController:
            async def run_cycle(self):
                await release.wait()
                return completed_result()

        runner = CycleRunner(SlowController())
        first = asyncio.create_task(runner.run_once())
        await asyncio.sleep(0)

        assert runner.is_running
        with pytest.raises(CycleAlreadyRunning):
            await runner.run_once()

        release.set()
        result = await first
        assert result.status is CycleStatus.COMPLETED
        assert not runner.is_running

    @pytest.mark.asyncio
    async def test_status_and_history(self):
        controller = AsyncMock()
        controller.run_cycle.return_value = completed_result()
        history = CycleHistoryDB(":memory:")
        runner = CycleRunner(controller, history)

        await runner.run_once()

        status = runner.status()
        assert status['is_running'] is False
        assert status['last_run_status'] == "Success: 1/2 orders"
        assert status['last_run_time'] is not None
        assert history.get_statistics()['total_cycles'] == 1
        history.close()

    @pytest.mark.asyncio
    async def test_skipped_status(self):
        controller = AsyncMock()
        controller.run_cycle.return_value = CycleResult(
            status=CycleStatus.SKIPPED_LOW_BALANCE, total_balance="0.2"
        )
        runner = CycleRunner(controller)

        await runner.run_once()
        assert runner.last_run_status == "Skipped: balance 0.2 below minimum"

    @pytest.mark.asyncio
    async def test_precondition_failure_propagates_and_releases_guard(self):
        controller = AsyncMock()
        controller.run_cycle.side_effect = PreconditionFailure("balance query failed")
        runner = CycleRunner(controller)

        with pytest.raises(PreconditionFailure):
            await runner.run_once()

        assert runner.last_run_status == "Error: balance query failed"
        assert not runner.is_running


class TestParser:

    def test_defaults(self):
        args = build_parser().parse_args([])
        assert args.config == "distribution_config.yaml"
        assert args.once is False
        assert args.interval is None
        assert args.dry_run is False

    def test_once_and_interval_exclusive(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(['--once', '--interval', '60'])

    def test_dry_run_once(self):
        args = build_parser().parse_args(['--once', '--dry-run', '--config', 'x.yaml'])
        assert args.once and args.dry_run
        assert args.config == 'x.yaml'


class TestHistoryFailure:

    @pytest.mark.asyncio
    async def test_result_returned_when_history_write_fails(self):
        controller = AsyncMock()
        controller.run_cycle.return_value = completed_result()
        history = MagicMock()
        history.record_cycle.side_effect = sqlite3.OperationalError("database is locked")
        runner = CycleRunner(controller, history)

        result = await runner.run_once()

        assert result.succeeded == 1
        assert runner.last_result is result
        assert runner.last_run_status == "Success: 1/2 orders"
        history.record_cycle.assert_called_once_with(result)
