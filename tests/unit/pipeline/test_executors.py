"""Unit tests for the local and remote pipeline executors."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from app.models.feedback_thread import ThreadStatus
from app.models.work_item import WorkItemType
from app.schemas.thread_state import (
    Recommendation,
    RecommendationAction,
    ThreadState,
)
from app.services.pipeline.exceptions import RemoteJobError, RemoteJobTimeoutError
from app.services.pipeline.executor import (
    IngestPipelineResult,
    LocalPipelineExecutor,
    RemotePipelineExecutor,
    WorkItemRef,
)
from app.services.pipeline.gatekeeper import GatekeeperResult
from app.services.pipeline.remote import JOB_KIND_INGEST, JOB_KIND_WORKITEM

from tests.helpers.mock_factories import make_mock_db, make_mock_thread, make_mock_work_item

MODULE = "app.services.pipeline.executor"


def _state(action: RecommendationAction, confidence: float, **kwargs) -> ThreadState:
    return ThreadState(
        summary="Login fails on Safari 17",
        recommendation=Recommendation(action=action, reason="because", confidence=confidence),
        **kwargs,
    )


class TestLocalPipelineExecutor:
    def setup_method(self):
        self.merger = MagicMock()
        self.merger.update = AsyncMock()
        self.generator = MagicMock()
        self.generator.generate = AsyncMock()
        self.executor = LocalPipelineExecutor(self.merger, self.generator)
        self.db = make_mock_db()
        self.thread = make_mock_thread()

    @pytest.mark.asyncio
    async def test_confident_bug_creates_work_item(self):
        state = _state(RecommendationAction.CREATE_BUG, 0.85)
        item = make_mock_work_item(public_id="wi0000000001")
        self.merger.update.return_value = state
        self.generator.generate.return_value = item

        with (
            patch(f"{MODULE}.feedback_thread_ops") as thread_ops,
            patch(f"{MODULE}.audit_log_ops") as audit_ops,
        ):
            thread_ops.get = AsyncMock(return_value=self.thread)
            thread_ops.update_status = AsyncMock()
            audit_ops.create = AsyncMock()

            result = await self.executor.run(
                self.db, self.thread.id, ThreadState.empty(), "Login broken", {}
            )

        assert result.gatekeeper.should_create_work_item is True
        assert result.work_item == WorkItemRef(id=str(item.id), public_id="wi0000000001")
        self.generator.generate.assert_awaited_once_with(
            self.db, self.thread.id, state, WorkItemType.BUG
        )
        thread_ops.update_status.assert_awaited_once_with(
            self.db, self.thread, ThreadStatus.OPEN
        )
        actions = [c.args[3] for c in audit_ops.create.await_args_list]
        assert actions == ["gatekeeper_decided"]

    @pytest.mark.asyncio
    async def test_ask_questions_sets_waiting_and_audits_questions(self):
        state = _state(
            RecommendationAction.ASK_QUESTIONS, 0.6, open_questions=["Which browser version?"]
        )
        self.merger.update.return_value = state

        with (
            patch(f"{MODULE}.feedback_thread_ops") as thread_ops,
            patch(f"{MODULE}.audit_log_ops") as audit_ops,
        ):
            thread_ops.get = AsyncMock(return_value=self.thread)
            thread_ops.update_status = AsyncMock()
            audit_ops.create = AsyncMock()

            result = await self.executor.run(self.db, self.thread.id, ThreadState.empty(), "x", {})

        assert result.work_item is None
        self.generator.generate.assert_not_awaited()
        thread_ops.update_status.assert_awaited_once_with(
            self.db, self.thread, ThreadStatus.WAITING_ON_USER
        )
        calls = audit_ops.create.await_args_list
        assert [c.args[3] for c in calls] == ["gatekeeper_decided", "ai_asked_questions"]
        assert calls[1].args[4] == {"questions": ["Which browser version?"]}

    @pytest.mark.asyncio
    async def test_generator_failure_yields_no_work_item(self):
        self.merger.update.return_value = _state(RecommendationAction.CREATE_FEATURE, 0.9)
        self.generator.generate.return_value = None

        with (
            patch(f"{MODULE}.feedback_thread_ops") as thread_ops,
            patch(f"{MODULE}.audit_log_ops") as audit_ops,
        ):
            thread_ops.get = AsyncMock(return_value=self.thread)
            thread_ops.update_status = AsyncMock()
            audit_ops.create = AsyncMock()

            result = await self.executor.run(self.db, self.thread.id, ThreadState.empty(), "x", {})

        assert result.gatekeeper.should_create_work_item is True
        assert result.work_item is None

    @pytest.mark.asyncio
    async def test_threshold_is_configurable(self):
        executor = LocalPipelineExecutor(self.merger, self.generator, threshold=0.9)
        self.merger.update.return_value = _state(RecommendationAction.CREATE_BUG, 0.85)

        with (
            patch(f"{MODULE}.feedback_thread_ops") as thread_ops,
            patch(f"{MODULE}.audit_log_ops") as audit_ops,
        ):
            thread_ops.get = AsyncMock(return_value=self.thread)
            thread_ops.update_status = AsyncMock()
            audit_ops.create = AsyncMock()

            result = await executor.run(self.db, self.thread.id, ThreadState.empty(), "x", {})

        assert result.gatekeeper.should_create_work_item is False
        self.generator.generate.assert_not_awaited()


class TestRemotePipelineExecutor:
    def setup_method(self):
        self.jobs = MagicMock()
        self.jobs.run = AsyncMock()
        self.executor = RemotePipelineExecutor(self.jobs)
        self.db = make_mock_db()
        self.thread = make_mock_thread()

    @pytest.mark.asyncio
    async def test_translates_job_result(self):
        self.jobs.run.return_value = {
            "threadState": {
                "summary": "Login fails",
                "recommendation": {"action": "CreateBugWorkItem", "confidence": 0.8},
            },
            "gatekeeper": {
                "shouldCreateWorkItem": True,
                "workItemType": "Bug",
                "threadStatus": "Open",
                "reason": "Clear repro",
            },
            "workItem": {"id": "abc", "publicId": "wi1"},
        }

        result = await self.executor.run(
            self.db, self.thread.id, ThreadState.empty(), "Login broken", {"k": "v"}
        )

        kind, payload = self.jobs.run.await_args.args
        assert kind == JOB_KIND_INGEST
        assert payload["threadId"] == str(self.thread.id)
        assert payload["messageText"] == "Login broken"
        assert payload["metadata"] == {"k": "v"}
        assert result.thread_state.summary == "Login fails"
        assert result.gatekeeper.work_item_type == WorkItemType.BUG
        assert result.work_item == WorkItemRef(id="abc", public_id="wi1")

    @pytest.mark.asyncio
    async def test_missing_state_and_decision_fall_back(self):
        current = _state(RecommendationAction.ASK_QUESTIONS, 0.5)
        self.jobs.run.return_value = {}

        result = await self.executor.run(self.db, self.thread.id, current, "x", {})

        assert result.thread_state is current
        assert result.gatekeeper.thread_status == ThreadStatus.WAITING_ON_USER
        assert result.work_item is None

    @pytest.mark.asyncio
    async def test_invalid_state_raises_remote_error(self):
        self.jobs.run.return_value = {"threadState": {"intent": "Bug"}}

        with pytest.raises(RemoteJobError, match="invalid threadState"):
            await self.executor.run(self.db, self.thread.id, ThreadState.empty(), "x", {})

    @pytest.mark.asyncio
    async def test_job_errors_propagate_from_run(self):
        self.jobs.run.side_effect = RemoteJobTimeoutError("job-1", 120)

        with pytest.raises(RemoteJobTimeoutError):
            await self.executor.run(self.db, self.thread.id, ThreadState.empty(), "x", {})

    @pytest.mark.asyncio
    async def test_generate_work_item_returns_ref(self):
        self.jobs.run.return_value = {"workItem": {"id": "w1", "publicId": "pub1"}}

        ref = await self.executor.generate_work_item(
            self.db, self.thread.id, ThreadState.empty(), WorkItemType.FEATURE
        )

        kind, payload = self.jobs.run.await_args.args
        assert kind == JOB_KIND_WORKITEM
        assert payload["workItemType"] == "Feature"
        assert ref == WorkItemRef(id="w1", public_id="pub1")

    @pytest.mark.asyncio
    async def test_generate_work_item_swallows_job_failure(self):
        self.jobs.run.side_effect = RemoteJobError("boom")

        ref = await self.executor.generate_work_item(
            self.db, self.thread.id, ThreadState.empty(), WorkItemType.BUG
        )

        assert ref is None


def test_result_to_dict_shape():
    result = IngestPipelineResult(
        thread_state=ThreadState(summary="s"),
        gatekeeper=GatekeeperResult(
            should_create_work_item=False, thread_status=ThreadStatus.OPEN, reason="No ticket needed"
        ),
    )

    data = result.to_dict()

    assert set(data) == {"threadState", "gatekeeper", "workItem"}
    assert data["threadState"]["summary"] == "s"
    assert data["threadState"]["recommendation"]["action"] == "NoTicket"
    assert data["workItem"] is None
