import uuid as uuid_pkg
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.domain.base_operations import BaseOperations
from app.models.work_item import WorkItem


class WorkItemOperations(BaseOperations[WorkItem]):
    """CRUD operations for WorkItem model.

    Status is not written here: lifecycle changes go through
    ``app.services.work_item_lifecycle`` so every transition is validated
    and audited.
    """

    def __init__(self) -> None:
        super().__init__(WorkItem)

    async def get_multi(
        self,
        db: AsyncSession,
        status: str | None = None,
        type: str | None = None,
        thread_id: uuid_pkg.UUID | None = None,
        skip: int = 0,
        limit: int = 100,
    ) -> list[WorkItem]:
        """List work items with optional filtering by status, type and thread."""
        statement = select(WorkItem)

        if status:
            statement = statement.where(WorkItem.status == status)
        if type:
            statement = statement.where(WorkItem.type == type)
        if thread_id:
            statement = statement.where(WorkItem.thread_id == thread_id)

        statement = (
            statement.order_by(WorkItem.created_at.desc())  # type: ignore[attr-defined]
            .offset(skip)
            .limit(limit)
        )
        result = await db.execute(statement)
        return list(result.scalars().all())

    async def create(self, db: AsyncSession, obj_in: dict[str, Any]) -> WorkItem:
        """Create a new work item."""
        db_obj = WorkItem(**obj_in)
        db.add(db_obj)
        await db.flush()
        await db.refresh(db_obj)
        return db_obj

    async def update(
        self,
        db: AsyncSession,
        db_obj: WorkItem,
        obj_in: dict[str, Any],
    ) -> WorkItem:
        """Apply field values to an existing work item."""
        for field, value in obj_in.items():
            setattr(db_obj, field, value)
        db_obj.updated_at = datetime.now(UTC)
        db.add(db_obj)
        await db.flush()
        await db.refresh(db_obj)
        return db_obj


work_item_ops = WorkItemOperations()
