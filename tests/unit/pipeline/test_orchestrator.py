"""Unit tests for IngestOrchestrator: executor, session and ops mocked."""

from __future__ import annotations

import asyncio
import uuid
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy.exc import OperationalError

from app.models.feedback_thread import ThreadStatus
from app.schemas.thread_state import ThreadState
from app.services.pipeline.debounce import DebounceScheduler
from app.services.pipeline.executor import (
    IngestPipelineResult,
    LocalPipelineExecutor,
    RemotePipelineExecutor,
    WorkItemRef,
)
from app.services.pipeline.gatekeeper import GatekeeperResult
from app.services.pipeline.orchestrator import (
    SUGGESTION_MESSAGE_TYPE,
    IngestOrchestrator,
    build_orchestrator,
)

from tests.helpers.mock_factories import make_mock_db, make_mock_thread

MODULE = "app.services.pipeline.orchestrator"


def _result(work_item: WorkItemRef | None = None, reason: str = "Clear repro"):
    return IngestPipelineResult(
        thread_state=ThreadState(summary="Login fails"),
        gatekeeper=GatekeeperResult(
            should_create_work_item=work_item is not None,
            thread_status=ThreadStatus.OPEN,
            reason=reason,
        ),
        work_item=work_item,
    )


def _session_maker(db):
    maker = MagicMock()
    maker.return_value.__aenter__ = AsyncMock(return_value=db)
    maker.return_value.__aexit__ = AsyncMock(return_value=False)
    return maker


class _ManualDebouncer(DebounceScheduler):
    """Debouncer whose timers are fired by the test."""

    def __init__(self):
        self.timers: list[tuple] = []
        super().__init__(window_seconds=3.0, call_later=self._call_later)

    def _call_later(self, delay, callback, *args):
        timer = MagicMock()
        self.timers.append((timer, callback, args))
        return timer

    def fire_last(self) -> None:
        _, callback, args = self.timers[-1]
        callback(*args)


class TestRunIngestPipeline:
    def setup_method(self):
        self.executor = MagicMock()
        self.executor.run = AsyncMock()
        self.orchestrator = IngestOrchestrator(self.executor, system_sender_name="Bot")
        self.db = make_mock_db()
        self.thread_id = uuid.uuid4()

    @pytest.mark.asyncio
    async def test_posts_internal_suggestion_when_work_item_created(self):
        self.executor.run.return_value = _result(WorkItemRef(id="1", public_id="wi9"))

        with patch(f"{MODULE}.feedback_message_ops") as message_ops:
            message_ops.create = AsyncMock()
            result = await self.orchestrator.run_ingest_pipeline(
                self.db, self.thread_id, ThreadState.empty(), "Login broken"
            )

        assert result.work_item.public_id == "wi9"
        _, thread_id, fields = message_ops.create.await_args.args
        assert thread_id == self.thread_id
        assert fields["visibility"] == "internal"
        assert fields["sender_type"] == "internal"
        assert fields["sender_name"] == "Bot"
        assert fields["raw_text"] == (
            'AI suggested a work item: "Clear repro". Check the Work Items board for details.'
        )
        assert fields["metadata_json"] == {
            "type": SUGGESTION_MESSAGE_TYPE,
            "workItemPublicId": "wi9",
        }
        self.db.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_no_suggestion_without_work_item(self):
        self.executor.run.return_value = _result()

        with patch(f"{MODULE}.feedback_message_ops") as message_ops:
            message_ops.create = AsyncMock()
            await self.orchestrator.run_ingest_pipeline(
                self.db, self.thread_id, ThreadState.empty(), "hi", {"a": 1}
            )

        message_ops.create.assert_not_awaited()
        self.executor.run.assert_awaited_once_with(
            self.db, self.thread_id, ThreadState.empty(), "hi", {"a": 1}
        )

    @pytest.mark.asyncio
    async def test_suggestion_failure_does_not_fail_pipeline(self):
        self.executor.run.return_value = _result(WorkItemRef(id="1", public_id="wi9"))

        with patch(f"{MODULE}.feedback_message_ops") as message_ops:
            message_ops.create = AsyncMock(side_effect=OperationalError("insert", {}, Exception()))
            result = await self.orchestrator.run_ingest_pipeline(
                self.db, self.thread_id, ThreadState.empty(), "x"
            )

        assert result.work_item is not None
        self.db.rollback.assert_awaited_once()


class TestRunIngestPipelineAsync:
    def setup_method(self):
        self.executor = MagicMock()
        self.executor.run = AsyncMock(return_value=_result())
        self.debouncer = _ManualDebouncer()
        self.worker_db = make_mock_db()
        self.orchestrator = IngestOrchestrator(
            self.executor,
            debouncer=self.debouncer,
            session_maker=_session_maker(self.worker_db),
        )
        self.request_db = make_mock_db()
        self.thread = make_mock_thread(thread_state={"summary": "Stored summary"})

    @pytest.mark.asyncio
    async def test_flags_thread_and_schedules(self):
        with patch(f"{MODULE}.feedback_thread_ops") as thread_ops:
            thread_ops.set_ai_processing = AsyncMock()
            await self.orchestrator.run_ingest_pipeline_async(
                self.request_db, self.thread.id, "first message"
            )

        thread_ops.set_ai_processing.assert_awaited_once_with(self.request_db, self.thread.id)
        self.request_db.commit.assert_awaited_once()
        assert self.debouncer.is_pending(self.thread.id)
        self.executor.run.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_burst_processes_only_last_message_with_fresh_state(self):
        with patch(f"{MODULE}.feedback_thread_ops") as thread_ops:
            thread_ops.set_ai_processing = AsyncMock()
            thread_ops.get = AsyncMock(return_value=self.thread)
            thread_ops.clear_ai_processing = AsyncMock()

            for text in ("one", "two", "three"):
                await self.orchestrator.run_ingest_pipeline_async(
                    self.request_db, self.thread.id, text, {"n": text}
                )
            self.debouncer.fire_last()
            await self.debouncer.wait_idle()

        self.executor.run.assert_awaited_once()
        args = self.executor.run.await_args.args
        assert args[0] is self.worker_db
        assert args[2].summary == "Stored summary"
        assert args[3] == "three"
        assert args[4] == {"n": "three"}
        thread_ops.clear_ai_processing.assert_awaited_once_with(self.worker_db, self.thread.id)

    @pytest.mark.asyncio
    async def test_failure_is_logged_and_flag_cleared(self, caplog):
        self.executor.run.side_effect = RuntimeError("LLM exploded")

        with patch(f"{MODULE}.feedback_thread_ops") as thread_ops:
            thread_ops.set_ai_processing = AsyncMock()
            thread_ops.get = AsyncMock(return_value=self.thread)
            thread_ops.clear_ai_processing = AsyncMock()

            await self.orchestrator.run_ingest_pipeline_async(
                self.request_db, self.thread.id, "x"
            )
            self.debouncer.fire_last()
            await self.debouncer.wait_idle()

        assert "Async ingest failed" in caplog.text
        self.worker_db.rollback.assert_awaited_once()
        thread_ops.clear_ai_processing.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_flag_kept_when_newer_run_is_pending(self):
        with patch(f"{MODULE}.feedback_thread_ops") as thread_ops:
            thread_ops.set_ai_processing = AsyncMock()
            thread_ops.get = AsyncMock(return_value=self.thread)
            thread_ops.clear_ai_processing = AsyncMock()

            await self.orchestrator.run_ingest_pipeline_async(
                self.request_db, self.thread.id, "first"
            )
            self.debouncer.fire_last()
            # Second message arrives while the first run is in flight
            await self.orchestrator.run_ingest_pipeline_async(
                self.request_db, self.thread.id, "second"
            )
            await self.debouncer.wait_idle()

        thread_ops.clear_ai_processing.assert_not_awaited()
        assert self.debouncer.is_pending(self.thread.id)

    @pytest.mark.asyncio
    async def test_runs_for_same_thread_do_not_overlap(self):
        release = asyncio.Event()
        calls: list[str] = []

        async def run(db, thread_id, state, text, metadata):
            calls.append(f"start {text}")
            if text == "first":
                await release.wait()
            calls.append(f"end {text}")
            return _result()

        self.executor.run.side_effect = run

        with patch(f"{MODULE}.feedback_thread_ops") as thread_ops:
            thread_ops.set_ai_processing = AsyncMock()
            thread_ops.get = AsyncMock(return_value=self.thread)
            thread_ops.clear_ai_processing = AsyncMock()

            await self.orchestrator.run_ingest_pipeline_async(
                self.request_db, self.thread.id, "first"
            )
            self.debouncer.fire_last()
            for _ in range(5):
                await asyncio.sleep(0)
            await self.orchestrator.run_ingest_pipeline_async(
                self.request_db, self.thread.id, "second"
            )
            self.debouncer.fire_last()
            for _ in range(5):
                await asyncio.sleep(0)

            assert calls == ["start first"]

            release.set()
            await self.debouncer.wait_idle()

        assert calls == ["start first", "end first", "start second", "end second"]
        # Only the last queued run clears the flag
        thread_ops.clear_ai_processing.assert_awaited_once_with(self.worker_db, self.thread.id)
        assert self.orchestrator._run_locks == {}
        assert self.orchestrator._run_users == {}

    @pytest.mark.asyncio
    async def test_deleted_thread_is_skipped(self):
        with patch(f"{MODULE}.feedback_thread_ops") as thread_ops:
            thread_ops.set_ai_processing = AsyncMock()
            thread_ops.get = AsyncMock(return_value=None)
            thread_ops.clear_ai_processing = AsyncMock()

            await self.orchestrator.run_ingest_pipeline_async(
                self.request_db, self.thread.id, "x"
            )
            self.debouncer.fire_last()
            await self.debouncer.wait_idle()

        self.executor.run.assert_not_awaited()


@pytest.mark.asyncio
async def test_shutdown_cancels_pending_timers():
    debouncer = _ManualDebouncer()
    orchestrator = IngestOrchestrator(MagicMock(), debouncer=debouncer)

    async def run():
        return None

    debouncer.schedule("k", run)
    await orchestrator.shutdown()

    assert debouncer.pending_count == 0
    debouncer.timers[0][0].cancel.assert_called_once()


class TestBuildOrchestrator:
    def test_local_executor_by_default(self, make_settings):
        config = make_settings(gatekeeper_confidence_threshold=0.8, ingest_debounce_seconds=1.5)

        orchestrator = build_orchestrator(config)

        assert isinstance(orchestrator.executor, LocalPipelineExecutor)
        assert orchestrator.executor.threshold == 0.8
        assert orchestrator.debouncer.window_seconds == 1.5

    def test_remote_executor_when_service_configured(self, make_settings):
        config = make_settings(llm_service_url="http://jobs", llm_service_secret="s")

        orchestrator = build_orchestrator(config)

        assert isinstance(orchestrator.executor, RemotePipelineExecutor)
        assert orchestrator.executor.jobs.base_url == "http://jobs"
