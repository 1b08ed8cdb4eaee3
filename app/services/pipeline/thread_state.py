"""
ThreadState merger.

Merges one new message (or the whole history) into a thread's cumulative
ThreadState through the LLM. On any completion failure the previous state
is returned unchanged, so ingest never loses understanding it already had.
"""

import logging
import uuid as uuid_pkg
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from app.domain.audit_log_operations import audit_log_ops
from app.domain.feedback_thread_operations import feedback_message_ops, feedback_thread_ops
from app.models.audit_log import AuditEntityType
from app.models.feedback_thread import MessageVisibility
from app.schemas.thread_state import ThreadState
from app.services.llm.client import CompletionFailure, CompletionSuccess
from app.services.pipeline.base import StructuredLlmStep
from app.services.pipeline.coercion import coerce_thread_state, reconcile_thread_state
from app.services.pipeline.prompts import (
    THREAD_STATE_SYSTEM_PROMPT,
    build_thread_history_prompt,
    build_thread_state_prompt,
)

logger = logging.getLogger(__name__)

RAW_AUDIT_LIMIT = 2000


@dataclass
class MergeInput:
    current: ThreadState
    message_text: str
    metadata: dict[str, Any] = field(default_factory=dict)


class ThreadStateMerger(StructuredLlmStep[MergeInput, ThreadState]):
    """Cumulative, lossless merge of new messages into a ThreadState."""

    temperature = 0.1
    max_tokens = 4096
    max_retries = 1

    def get_system_prompt(self) -> str:
        return THREAD_STATE_SYSTEM_PROMPT

    def format_input(self, input_data: MergeInput) -> str:
        return build_thread_state_prompt(
            input_data.current.to_document(), input_data.message_text, input_data.metadata
        )

    def validate(self, raw: Any) -> ThreadState:
        return coerce_thread_state(raw)

    async def update(
        self,
        db: AsyncSession,
        thread_id: uuid_pkg.UUID,
        current: ThreadState,
        message_text: str,
        metadata: dict[str, Any] | None = None,
    ) -> ThreadState:
        """
        Merge one message into the thread state and persist it.

        Returns:
            The merged state, or ``current`` unchanged when the model call failed
        """
        result = await self.complete(MergeInput(current, message_text, metadata or {}))
        return await self._apply(db, thread_id, current, result)

    async def update_from_history(
        self,
        db: AsyncSession,
        thread_id: uuid_pkg.UUID,
        current: ThreadState,
    ) -> ThreadState:
        """Rebuild the state from every public message in the thread."""
        messages = await feedback_message_ops.list_by_thread(
            db, thread_id, include_internal=False
        )
        history = [
            {
                "sender": m.sender_type,
                "text": m.raw_text,
                "sentAt": m.created_at.isoformat() if m.created_at else None,
            }
            for m in messages
            if m.visibility == MessageVisibility.PUBLIC.value
        ]
        result = await self.client.complete_structured(
            self.get_system_prompt(),
            build_thread_history_prompt(current.to_document(), history),
            self.validate,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            max_retries=self.max_retries,
        )
        return await self._apply(db, thread_id, current, result)

    async def _apply(
        self,
        db: AsyncSession,
        thread_id: uuid_pkg.UUID,
        current: ThreadState,
        result: CompletionSuccess[ThreadState] | CompletionFailure,
    ) -> ThreadState:
        if isinstance(result, CompletionFailure):
            logger.warning(
                f"[merger] ThreadState update failed for thread {thread_id} "
                f"({result.kind} via {result.endpoint}): {result.error}"
            )
            await audit_log_ops.create(
                db,
                AuditEntityType.THREAD,
                thread_id,
                "threadstate_update_failed",
                {
                    "error": result.error,
                    "kind": result.kind,
                    "endpoint": result.endpoint,
                    "rawContent": (result.raw_content or "")[:RAW_AUDIT_LIMIT],
                },
            )
            await db.commit()
            return current

        merged = reconcile_thread_state(current, result.data)

        thread = await feedback_thread_ops.get(db, thread_id)
        if thread is None:
            logger.warning(f"[merger] Thread {thread_id} disappeared before state was saved")
            return merged

        await feedback_thread_ops.update_state(db, thread, merged)
        await audit_log_ops.create(
            db,
            AuditEntityType.THREAD,
            thread_id,
            "threadstate_updated",
            {
                "recommendation": merged.recommendation.to_document(),
                "attempts": result.attempts,
                "repaired": result.repaired,
            },
        )
        await db.commit()
        logger.info(
            f"[merger] Thread {thread_id} state updated: "
            f"{merged.recommendation.action.value} ({merged.recommendation.confidence:.2f})"
        )
        return merged
