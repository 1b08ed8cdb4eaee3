"""
WorkItem generator.

Turns a ThreadState the gatekeeper escalated into a persisted WorkItem in
PendingApproval. Model output is coerced field by field; only a missing
title makes an attempt unusable.
"""

import logging
import uuid as uuid_pkg
from dataclasses import dataclass
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from app.domain.audit_log_operations import audit_log_ops
from app.domain.work_item_operations import work_item_ops
from app.models.audit_log import AuditEntityType
from app.models.work_item import WorkItem, WorkItemStatus, WorkItemType
from app.schemas.thread_state import ThreadState
from app.schemas.work_item_draft import WorkItemDraft
from app.services.llm.client import CompletionFailure
from app.services.pipeline.base import StructuredLlmStep
from app.services.pipeline.coercion import coerce_work_item_draft
from app.services.pipeline.prompts import WORK_ITEM_SYSTEM_PROMPT, build_work_item_prompt

logger = logging.getLogger(__name__)

RAW_AUDIT_LIMIT = 2000


@dataclass
class GenerateInput:
    state: ThreadState
    work_item_type: WorkItemType


class WorkItemGenerator(StructuredLlmStep[GenerateInput, WorkItemDraft]):
    """Generates a structured engineering ticket from a thread state."""

    temperature = 0.3
    max_tokens = 4096
    max_retries = 2

    def get_system_prompt(self) -> str:
        return WORK_ITEM_SYSTEM_PROMPT

    def format_input(self, input_data: GenerateInput) -> str:
        return build_work_item_prompt(
            input_data.state.to_document(), input_data.work_item_type.value
        )

    def validate(self, raw: Any) -> WorkItemDraft:
        return coerce_work_item_draft(raw)

    async def generate(
        self,
        db: AsyncSession,
        thread_id: uuid_pkg.UUID,
        state: ThreadState,
        work_item_type: WorkItemType,
    ) -> WorkItem | None:
        """
        Generate and persist a work item.

        Returns:
            The new WorkItem (status PendingApproval), or None when the model
            never produced usable output. Failures are logged and audited.
        """
        result = await self.complete(GenerateInput(state, work_item_type))

        if isinstance(result, CompletionFailure):
            logger.error(
                f"[generator] Work item generation failed for thread {thread_id} "
                f"({result.kind} via {result.endpoint}): {result.error}. "
                f"Raw: {(result.raw_content or '')[:500]!r}"
            )
            await audit_log_ops.create(
                db,
                AuditEntityType.THREAD,
                thread_id,
                "workitem_generation_failed",
                {
                    "error": result.error,
                    "kind": result.kind,
                    "endpoint": result.endpoint,
                    "rawContent": (result.raw_content or "")[:RAW_AUDIT_LIMIT],
                },
            )
            await db.commit()
            return None

        return await self.persist(db, thread_id, state, work_item_type, result.data)

    async def persist(
        self,
        db: AsyncSession,
        thread_id: uuid_pkg.UUID,
        state: ThreadState,
        work_item_type: WorkItemType,
        draft: WorkItemDraft,
    ) -> WorkItem:
        """Store a validated draft as a PendingApproval work item."""
        # The gatekeeper's type wins over the model's guess
        work_item = await work_item_ops.create(
            db,
            {
                "thread_id": thread_id,
                "type": work_item_type.value,
                "title": draft.title,
                "structured_description": draft.structured_description,
                "acceptance_criteria": draft.acceptance_criteria,
                "priority": draft.priority.value,
                "severity": draft.severity,
                "risk_level": draft.risk_level.value,
                "confidence_score": state.recommendation.confidence,
                "status": WorkItemStatus.PENDING_APPROVAL.value,
                "labels": draft.labels,
                "estimated_effort": draft.estimated_effort.to_document(),
                "prompt_bundle": draft.prompt_bundle.to_document(),
            },
        )
        await audit_log_ops.create(
            db,
            AuditEntityType.WORK_ITEM,
            work_item.id,
            "created",
            {
                "threadId": str(thread_id),
                "type": work_item.type,
                "title": work_item.title,
                "priority": work_item.priority,
                "confidence": work_item.confidence_score,
            },
        )
        await db.commit()
        logger.info(
            f"[generator] Created work item {work_item.public_id} "
            f"({work_item.type}, {work_item.priority}) for thread {thread_id}"
        )
        return work_item
