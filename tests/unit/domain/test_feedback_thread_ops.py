"""Unit tests for FeedbackThread/FeedbackMessage operations — DB mocked."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from unittest.mock import AsyncMock

import pytest

from app.domain.feedback_thread_operations import (
    FeedbackMessageOperations,
    FeedbackThreadOperations,
)
from app.models.feedback_thread import FeedbackThread, ThreadStatus
from app.schemas.thread_state import ThreadState

from tests.helpers.mock_factories import (
    make_mock_db,
    make_mock_message,
    make_mock_thread,
    mock_scalar_result,
    mock_scalars_result,
)


class TestFeedbackThreadOperations:
    def setup_method(self):
        self.ops = FeedbackThreadOperations()
        self.db = make_mock_db()

    @pytest.mark.asyncio
    async def test_create_starts_with_empty_state(self):
        thread = await self.ops.create(self.db, {"subject": "Login", "source": "email"})

        assert isinstance(thread, FeedbackThread)
        assert thread.thread_state == ThreadState.empty().to_document()
        assert thread.status == "Open"
        assert thread.last_activity_at is not None
        self.db.flush.assert_awaited_once()
        self.db.refresh.assert_awaited_once_with(thread)

    @pytest.mark.asyncio
    async def test_update_state_stores_camel_case_document(self):
        thread = make_mock_thread()
        state = ThreadState(summary="Login fails", open_questions=["Which OS?"])

        await self.ops.update_state(self.db, thread, state)

        assert thread.thread_state["summary"] == "Login fails"
        assert thread.thread_state["openQuestions"] == ["Which OS?"]
        self.db.add.assert_called_once_with(thread)

    @pytest.mark.asyncio
    async def test_update_status(self):
        thread = make_mock_thread(status="Open")

        await self.ops.update_status(self.db, thread, ThreadStatus.WAITING_ON_USER)

        assert thread.status == "WaitingOnUser"

    @pytest.mark.asyncio
    async def test_get_by_identifier_accepts_uuid_or_public_id(self):
        thread = make_mock_thread()
        self.ops.get = AsyncMock(return_value=thread)
        self.ops.get_by_public_id = AsyncMock(return_value=thread)

        await self.ops.get_by_identifier(self.db, str(thread.id))
        self.ops.get.assert_awaited_once_with(self.db, thread.id)

        await self.ops.get_by_identifier(self.db, "thr4x9k2m1pq")
        self.ops.get_by_public_id.assert_awaited_once_with(self.db, "thr4x9k2m1pq")

    @pytest.mark.asyncio
    async def test_get_by_external_id(self):
        thread = make_mock_thread(external_thread_id="<abc@mail>")
        self.db.execute.return_value = mock_scalar_result(thread)

        assert await self.ops.get_by_external_id(self.db, "<abc@mail>") is thread

    @pytest.mark.asyncio
    async def test_clear_stale_returns_rowcount(self):
        result = AsyncMock()
        result.rowcount = 3
        self.db.execute.return_value = result

        cleared = await self.ops.clear_stale_ai_processing(self.db, datetime.now(UTC))

        assert cleared == 3

    @pytest.mark.asyncio
    async def test_set_and_clear_processing_issue_updates(self):
        thread_id = uuid.uuid4()

        await self.ops.set_ai_processing(self.db, thread_id)
        await self.ops.clear_ai_processing(self.db, thread_id)

        statements = [str(c.args[0]) for c in self.db.execute.await_args_list]
        assert all(s.startswith("UPDATE feedback_threads") for s in statements)
        assert all("ai_processing_since" in s for s in statements)


class TestFeedbackMessageOperations:
    def setup_method(self):
        self.ops = FeedbackMessageOperations()
        self.db = make_mock_db()

    @pytest.mark.asyncio
    async def test_create_binds_thread(self):
        thread_id = uuid.uuid4()

        message = await self.ops.create(self.db, thread_id, {"raw_text": "Login broken"})

        assert message.thread_id == thread_id
        assert message.visibility == "public"
        assert message.sender_type == "user"

    @pytest.mark.asyncio
    async def test_list_public_only(self):
        messages = [make_mock_message()]
        self.db.execute.return_value = mock_scalars_result(messages)

        result = await self.ops.list_by_thread(self.db, uuid.uuid4(), include_internal=False)

        assert result == messages
        sql = str(self.db.execute.await_args.args[0])
        assert "feedback_messages.visibility" in sql
