"""
Pipeline executors: where the merge/gate/generate sequence actually runs.

``LocalPipelineExecutor`` calls the LLM from this process.
``RemotePipelineExecutor`` delegates the whole sequence to the job service
and translates its result into the same ``IngestPipelineResult``.
"""

import logging
import uuid as uuid_pkg
from dataclasses import dataclass
from typing import Any, Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from app.domain.audit_log_operations import audit_log_ops
from app.domain.feedback_thread_operations import feedback_thread_ops
from app.models.audit_log import AuditEntityType
from app.models.feedback_thread import ThreadStatus
from app.models.work_item import WorkItemType
from app.schemas.thread_state import ThreadState
from app.services.pipeline.coercion import coerce_thread_state
from app.services.pipeline.exceptions import CoercionError, RemoteJobError
from app.services.pipeline.gatekeeper import CONFIDENCE_THRESHOLD, GatekeeperResult, decide
from app.services.pipeline.remote import JOB_KIND_INGEST, JOB_KIND_WORKITEM, RemoteJobClient
from app.services.pipeline.thread_state import ThreadStateMerger
from app.services.pipeline.work_item_generator import WorkItemGenerator

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WorkItemRef:
    id: str
    public_id: str

    def to_dict(self) -> dict[str, str]:
        return {"id": self.id, "publicId": self.public_id}


@dataclass
class IngestPipelineResult:
    thread_state: ThreadState
    gatekeeper: GatekeeperResult
    work_item: WorkItemRef | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "threadState": self.thread_state.to_document(),
            "gatekeeper": self.gatekeeper.to_dict(),
            "workItem": self.work_item.to_dict() if self.work_item else None,
        }


class PipelineExecutor(Protocol):
    async def run(
        self,
        db: AsyncSession,
        thread_id: uuid_pkg.UUID,
        current_state: ThreadState,
        message_text: str,
        metadata: dict[str, Any],
    ) -> IngestPipelineResult: ...

    async def generate_work_item(
        self,
        db: AsyncSession,
        thread_id: uuid_pkg.UUID,
        state: ThreadState,
        work_item_type: WorkItemType,
    ) -> WorkItemRef | None: ...


class LocalPipelineExecutor:
    """Merger -> Gatekeeper -> thread status -> Generator, each step its own commit."""

    def __init__(
        self,
        merger: ThreadStateMerger,
        generator: WorkItemGenerator,
        threshold: float = CONFIDENCE_THRESHOLD,
    ):
        self.merger = merger
        self.generator = generator
        self.threshold = threshold

    async def run(
        self,
        db: AsyncSession,
        thread_id: uuid_pkg.UUID,
        current_state: ThreadState,
        message_text: str,
        metadata: dict[str, Any],
    ) -> IngestPipelineResult:
        state = await self.merger.update(db, thread_id, current_state, message_text, metadata)
        decision = decide(state, self.threshold)
        await self._apply_decision(db, thread_id, state, decision)

        work_item = None
        if decision.should_create_work_item and decision.work_item_type:
            work_item = await self.generate_work_item(
                db, thread_id, state, decision.work_item_type
            )

        logger.info(
            f"[pipeline] Thread {thread_id}: {state.recommendation.action.value} -> "
            f"{decision.thread_status.value}, work item: "
            f"{work_item.public_id if work_item else 'none'}"
        )
        return IngestPipelineResult(thread_state=state, gatekeeper=decision, work_item=work_item)

    async def generate_work_item(
        self,
        db: AsyncSession,
        thread_id: uuid_pkg.UUID,
        state: ThreadState,
        work_item_type: WorkItemType,
    ) -> WorkItemRef | None:
        item = await self.generator.generate(db, thread_id, state, work_item_type)
        if item is None:
            return None
        return WorkItemRef(id=str(item.id), public_id=item.public_id)

    async def _apply_decision(
        self,
        db: AsyncSession,
        thread_id: uuid_pkg.UUID,
        state: ThreadState,
        decision: GatekeeperResult,
    ) -> None:
        thread = await feedback_thread_ops.get(db, thread_id)
        if thread is None:
            return

        await feedback_thread_ops.update_status(db, thread, decision.thread_status)
        await audit_log_ops.create(
            db,
            AuditEntityType.THREAD,
            thread_id,
            "gatekeeper_decided",
            {
                **decision.to_dict(),
                "recommendation": state.recommendation.to_document(),
            },
        )
        if decision.thread_status == ThreadStatus.WAITING_ON_USER:
            await audit_log_ops.create(
                db,
                AuditEntityType.THREAD,
                thread_id,
                "ai_asked_questions",
                {"questions": state.open_questions},
            )
        await db.commit()


class RemotePipelineExecutor:
    """Delegates the pipeline to the remote job service and polls for the result."""

    def __init__(self, jobs: RemoteJobClient):
        self.jobs = jobs

    async def run(
        self,
        db: AsyncSession,
        thread_id: uuid_pkg.UUID,
        current_state: ThreadState,
        message_text: str,
        metadata: dict[str, Any],
    ) -> IngestPipelineResult:
        result = await self.jobs.run(
            JOB_KIND_INGEST,
            {
                "threadId": str(thread_id),
                "currentState": current_state.to_document(),
                "messageText": message_text,
                "metadata": metadata,
            },
        )
        return self._translate(result, current_state)

    async def generate_work_item(
        self,
        db: AsyncSession,
        thread_id: uuid_pkg.UUID,
        state: ThreadState,
        work_item_type: WorkItemType,
    ) -> WorkItemRef | None:
        try:
            result = await self.jobs.run(
                JOB_KIND_WORKITEM,
                {
                    "threadId": str(thread_id),
                    "threadState": state.to_document(),
                    "workItemType": work_item_type.value,
                },
            )
        except RemoteJobError as e:
            logger.error(f"[remote-job] Work item generation failed for thread {thread_id}: {e}")
            return None
        return _work_item_ref(result.get("workItem", result))

    def _translate(self, result: dict[str, Any], current_state: ThreadState) -> IngestPipelineResult:
        raw_state = result.get("threadState")
        try:
            state = coerce_thread_state(raw_state) if raw_state else current_state
        except CoercionError as e:
            raise RemoteJobError(f"Job service returned an invalid threadState: {e}") from e

        raw_decision = result.get("gatekeeper")
        decision = (
            GatekeeperResult.from_dict(raw_decision)
            if isinstance(raw_decision, dict)
            else decide(state)
        )
        return IngestPipelineResult(
            thread_state=state,
            gatekeeper=decision,
            work_item=_work_item_ref(result.get("workItem")),
        )


def _work_item_ref(value: Any) -> WorkItemRef | None:
    if not isinstance(value, dict) or not value.get("id"):
        return None
    return WorkItemRef(id=str(value["id"]), public_id=str(value.get("publicId") or ""))
