"""Unit tests for the stale AI-processing sweep and the scheduler wrapper."""

from __future__ import annotations

from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from app.services.scheduler import Scheduler, run_stale_ai_processing_sweep

from tests.helpers.mock_factories import make_mock_db

MODULE = "app.services.scheduler"


def _lock(acquired: bool):
    @asynccontextmanager
    async def fake_lock(lock_id: int):
        yield acquired

    return fake_lock


def _session_maker(db):
    maker = MagicMock()
    maker.return_value.__aenter__ = AsyncMock(return_value=db)
    maker.return_value.__aexit__ = AsyncMock(return_value=False)
    return maker


class TestStaleSweep:
    @pytest.mark.asyncio
    async def test_skipped_when_lock_held(self):
        with (
            patch(f"{MODULE}.advisory_lock", _lock(False)),
            patch("app.domain.feedback_thread_operations.feedback_thread_ops") as ops,
        ):
            assert await run_stale_ai_processing_sweep() is None
        ops.clear_stale_ai_processing.assert_not_called()

    @pytest.mark.asyncio
    async def test_clears_and_commits(self):
        db = make_mock_db()
        with (
            patch(f"{MODULE}.advisory_lock", _lock(True)),
            patch(f"{MODULE}.async_session_maker", _session_maker(db)),
            patch(
                "app.domain.feedback_thread_operations.feedback_thread_ops."
                "clear_stale_ai_processing",
                AsyncMock(return_value=3),
            ) as clear,
        ):
            report = await run_stale_ai_processing_sweep()

        assert report is not None
        assert report["cleared"] == 3
        clear.assert_awaited_once()
        db.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_errors_are_reported_not_raised(self):
        db = make_mock_db()
        with (
            patch(f"{MODULE}.advisory_lock", _lock(True)),
            patch(f"{MODULE}.async_session_maker", _session_maker(db)),
            patch(
                "app.domain.feedback_thread_operations.feedback_thread_ops."
                "clear_stale_ai_processing",
                AsyncMock(side_effect=RuntimeError("db gone")),
            ),
        ):
            assert await run_stale_ai_processing_sweep() is None


class TestScheduler:
    def test_disabled_does_not_start(self):
        with patch(f"{MODULE}.settings") as settings, patch(f"{MODULE}.AsyncIOScheduler") as cls:
            settings.scheduler_enabled = False
            Scheduler().start()
        cls.assert_not_called()

    def test_start_registers_sweep_and_stop_shuts_down(self):
        with patch(f"{MODULE}.settings") as settings, patch(f"{MODULE}.AsyncIOScheduler") as cls:
            settings.scheduler_enabled = True
            settings.stale_ai_sweep_interval_minutes = 5
            scheduler = Scheduler()
            scheduler.start()
            scheduler.stop()

        instance = cls.return_value
        assert instance.add_job.call_args.kwargs["id"] == "stale_ai_processing"
        instance.start.assert_called_once()
        instance.shutdown.assert_called_once_with(wait=False)

    @pytest.mark.asyncio
    async def test_trigger_unknown_job(self):
        assert await Scheduler().trigger_now("nope") is None
