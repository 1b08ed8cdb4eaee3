"""Unit tests for WorkItemOperations — all DB calls mocked."""

import uuid

import pytest

from app.domain.work_item_operations import WorkItemOperations
from app.models.work_item import WorkItem

from tests.helpers.mock_factories import (
    make_mock_db,
    make_mock_work_item,
    mock_scalar_result,
    mock_scalars_result,
)


class TestWorkItemGet:
    """Tests for single work item retrieval."""

    def setup_method(self):
        self.ops = WorkItemOperations()
        self.db = make_mock_db()

    @pytest.mark.asyncio
    async def test_get_returns_work_item(self):
        item = make_mock_work_item()
        self.db.execute.return_value = mock_scalar_result(item)

        result = await self.ops.get(self.db, item.id)
        assert result == item

    @pytest.mark.asyncio
    async def test_get_returns_none_when_not_found(self):
        self.db.execute.return_value = mock_scalar_result(None)

        result = await self.ops.get(self.db, uuid.uuid4())
        assert result is None

    @pytest.mark.asyncio
    async def test_get_by_public_id(self):
        item = make_mock_work_item(public_id="wi3b8n5c2vtr")
        self.db.execute.return_value = mock_scalar_result(item)

        assert await self.ops.get_by_public_id(self.db, "wi3b8n5c2vtr") is item


class TestWorkItemGetMulti:
    """Tests for work item listing with filters."""

    def setup_method(self):
        self.ops = WorkItemOperations()
        self.db = make_mock_db()

    @pytest.mark.asyncio
    async def test_returns_all_items(self):
        items = [make_mock_work_item() for _ in range(3)]
        self.db.execute.return_value = mock_scalars_result(items)

        result = await self.ops.get_multi(self.db)
        assert len(result) == 3

    @pytest.mark.asyncio
    async def test_returns_empty_list_when_no_items(self):
        self.db.execute.return_value = mock_scalars_result([])

        result = await self.ops.get_multi(self.db)
        assert result == []

    @pytest.mark.asyncio
    async def test_filters_are_applied(self):
        self.db.execute.return_value = mock_scalars_result([])

        await self.ops.get_multi(
            self.db, status="PendingApproval", type="Bug", thread_id=uuid.uuid4()
        )

        sql = str(self.db.execute.await_args.args[0])
        assert "work_items.status" in sql
        assert "work_items.type" in sql
        assert "work_items.thread_id" in sql


class TestWorkItemCreateUpdate:
    def setup_method(self):
        self.ops = WorkItemOperations()
        self.db = make_mock_db()

    @pytest.mark.asyncio
    async def test_create_builds_model(self):
        thread_id = uuid.uuid4()

        item = await self.ops.create(
            self.db, {"thread_id": thread_id, "type": "Bug", "title": "Fix login"}
        )

        assert isinstance(item, WorkItem)
        assert item.status == "PendingApproval"
        assert len(item.public_id) == 12
        self.db.add.assert_called_once_with(item)
        self.db.flush.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_update_sets_fields_and_timestamp(self):
        item = make_mock_work_item(title="Old")
        before = item.updated_at

        result = await self.ops.update(self.db, item, {"title": "New", "severity": 5})

        assert result.title == "New"
        assert result.severity == 5
        assert result.updated_at >= before
        self.db.refresh.assert_awaited_once_with(item)
