"""Domain operations for feedback threads and messages."""

import uuid as uuid_pkg
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.domain.base_operations import BaseOperations
from app.models.feedback_thread import FeedbackMessage, FeedbackThread, ThreadStatus
from app.schemas.thread_state import ThreadState


class FeedbackThreadOperations(BaseOperations[FeedbackThread]):
    """CRUD operations for FeedbackThread model."""

    def __init__(self) -> None:
        super().__init__(FeedbackThread)

    async def get_by_external_id(
        self,
        db: AsyncSession,
        external_thread_id: str,
    ) -> FeedbackThread | None:
        """Most recent thread carrying a channel-specific thread id (email/Slack)."""
        statement = (
            select(FeedbackThread)
            .where(FeedbackThread.external_thread_id == external_thread_id)
            .order_by(FeedbackThread.created_at.desc())  # type: ignore[attr-defined]
            .limit(1)
        )
        result = await db.execute(statement)
        return result.scalar_one_or_none()

    async def create(self, db: AsyncSession, obj_in: dict[str, Any]) -> FeedbackThread:
        """Create a thread with an empty ThreadState."""
        now = datetime.now(UTC)
        thread = FeedbackThread(
            **obj_in,
            thread_state=ThreadState.empty().to_document(),
            last_activity_at=now,
        )
        db.add(thread)
        await db.flush()
        await db.refresh(thread)
        return thread

    async def update_state(
        self,
        db: AsyncSession,
        thread: FeedbackThread,
        state: ThreadState,
    ) -> FeedbackThread:
        """Persist a merged ThreadState and bump activity time."""
        thread.thread_state = state.to_document()
        thread.last_activity_at = datetime.now(UTC)
        thread.updated_at = datetime.now(UTC)
        db.add(thread)
        await db.flush()
        return thread

    async def update_status(
        self,
        db: AsyncSession,
        thread: FeedbackThread,
        status: ThreadStatus,
    ) -> FeedbackThread:
        thread.status = status.value
        thread.updated_at = datetime.now(UTC)
        db.add(thread)
        await db.flush()
        return thread

    async def set_ai_processing(self, db: AsyncSession, thread_id: uuid_pkg.UUID) -> None:
        """Flag the thread as having a pipeline run pending or in flight."""
        await db.execute(
            update(FeedbackThread)
            .where(FeedbackThread.id == thread_id)  # type: ignore[arg-type]
            .values(ai_processing_since=datetime.now(UTC))
        )

    async def clear_ai_processing(self, db: AsyncSession, thread_id: uuid_pkg.UUID) -> None:
        await db.execute(
            update(FeedbackThread)
            .where(FeedbackThread.id == thread_id)  # type: ignore[arg-type]
            .values(ai_processing_since=None)
        )

    async def clear_stale_ai_processing(self, db: AsyncSession, older_than: datetime) -> int:
        """Clear processing flags set before ``older_than``. Returns rows cleared."""
        result = await db.execute(
            update(FeedbackThread)
            .where(
                FeedbackThread.ai_processing_since.is_not(None),  # type: ignore[union-attr]
                FeedbackThread.ai_processing_since < older_than,  # type: ignore[operator]
            )
            .values(ai_processing_since=None)
        )
        return result.rowcount or 0


class FeedbackMessageOperations(BaseOperations[FeedbackMessage]):
    """Create and read operations for FeedbackMessage. Messages are never edited."""

    def __init__(self) -> None:
        super().__init__(FeedbackMessage)

    async def create(
        self,
        db: AsyncSession,
        thread_id: uuid_pkg.UUID,
        obj_in: dict[str, Any],
    ) -> FeedbackMessage:
        message = FeedbackMessage(thread_id=thread_id, **obj_in)
        db.add(message)
        await db.flush()
        await db.refresh(message)
        return message

    async def list_by_thread(
        self,
        db: AsyncSession,
        thread_id: uuid_pkg.UUID,
        include_internal: bool = True,
    ) -> list[FeedbackMessage]:
        """Messages in a thread, oldest first."""
        statement = select(FeedbackMessage).where(FeedbackMessage.thread_id == thread_id)
        if not include_internal:
            statement = statement.where(FeedbackMessage.visibility == "public")
        statement = statement.order_by(FeedbackMessage.created_at.asc())  # type: ignore[attr-defined]
        result = await db.execute(statement)
        return list(result.scalars().all())


feedback_thread_ops = FeedbackThreadOperations()
feedback_message_ops = FeedbackMessageOperations()
