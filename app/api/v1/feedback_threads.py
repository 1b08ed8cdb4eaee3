"""Feedback ingest API: store messages and run the AI pipeline on them."""

import logging
from typing import Any

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.database import get_db
from app.core.exceptions import (
    ConflictError,
    NotFoundError,
    UpstreamError,
    UpstreamTimeoutError,
    ValidationError,
)
from app.domain import audit_log_ops, feedback_message_ops, feedback_thread_ops
from app.models.audit_log import AuditEntityType
from app.models.feedback_thread import FeedbackMessage, FeedbackThread, SenderType
from app.schemas.feedback import (
    AsyncIngestResponse,
    GenerateWorkItemRequest,
    IngestMessageRequest,
    IngestResponse,
)
from app.schemas.thread_state import ThreadState
from app.services.llm.health import check_llm_health
from app.services.pipeline.exceptions import RemoteJobError, RemoteJobTimeoutError
from app.services.pipeline.executor import LocalPipelineExecutor
from app.services.pipeline.gatekeeper import decide
from app.services.pipeline.orchestrator import IngestOrchestrator, get_orchestrator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/feedback", tags=["feedback"])


def _serialize_thread(thread: FeedbackThread) -> dict[str, Any]:
    return {
        "id": str(thread.id),
        "public_id": thread.public_id,
        "subject": thread.subject,
        "source": thread.source,
        "status": thread.status,
        "customer_email": thread.customer_email,
        "external_thread_id": thread.external_thread_id,
        "thread_state": ThreadState.from_document(thread.thread_state).to_document(),
        "ai_processing": thread.ai_processing_since is not None,
        "ai_processing_since": (
            thread.ai_processing_since.isoformat() if thread.ai_processing_since else None
        ),
        "last_activity_at": thread.last_activity_at.isoformat() if thread.last_activity_at else None,
        "created_at": thread.created_at.isoformat(),
        "updated_at": thread.updated_at.isoformat(),
    }


def _serialize_message(message: FeedbackMessage) -> dict[str, Any]:
    return {
        "id": str(message.id),
        "public_id": message.public_id,
        "source": message.source,
        "sender_type": message.sender_type,
        "sender_name": message.sender_name,
        "visibility": message.visibility,
        "text": message.raw_text,
        "metadata": message.metadata_json or {},
        "created_at": message.created_at.isoformat(),
    }


async def _store_message(
    db: AsyncSession,
    data: IngestMessageRequest,
) -> tuple[FeedbackThread, FeedbackMessage, bool]:
    """Find or create the thread, then store the message. Both are audited."""
    thread: FeedbackThread | None = None
    if data.thread_id:
        thread = await feedback_thread_ops.get_by_identifier(db, data.thread_id)
        if thread is None:
            raise NotFoundError("Thread")
    elif data.external_thread_id:
        thread = await feedback_thread_ops.get_by_external_id(db, data.external_thread_id)

    is_new_thread = thread is None
    if thread is None:
        thread = await feedback_thread_ops.create(
            db,
            {
                "subject": data.subject,
                "source": data.source.value,
                "customer_email": data.sender_email,
                "external_thread_id": data.external_thread_id,
            },
        )
        await audit_log_ops.create(
            db, AuditEntityType.THREAD, thread.id, "created", {"source": data.source.value}
        )

    message = await feedback_message_ops.create(
        db,
        thread.id,
        {
            "source": data.source.value,
            "sender_type": SenderType.USER.value,
            "sender_name": data.sender_name,
            "sender_email": data.sender_email,
            "raw_text": data.text,
            "metadata_json": data.metadata,
        },
    )
    await audit_log_ops.create(
        db,
        AuditEntityType.MESSAGE,
        message.id,
        "created",
        {"threadId": str(thread.id), "source": data.source.value},
    )
    await db.commit()
    return thread, message, is_new_thread


@router.post("/ingest", response_model=IngestResponse)
async def ingest_message(
    data: IngestMessageRequest,
    db: AsyncSession = Depends(get_db),
    orchestrator: IngestOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    """Store a message and run the pipeline synchronously."""
    thread, message, is_new_thread = await _store_message(db, data)
    current = ThreadState.from_document(thread.thread_state)

    try:
        result = await orchestrator.run_ingest_pipeline(
            db, thread.id, current, data.text, data.metadata
        )
    except RemoteJobTimeoutError as e:
        raise UpstreamTimeoutError(e.message) from e
    except RemoteJobError as e:
        raise UpstreamError(e.message) from e

    pipeline = result.to_dict()
    return {
        "thread_id": str(thread.id),
        "thread_public_id": thread.public_id,
        "message_public_id": message.public_id,
        "is_new_thread": is_new_thread,
        "thread_state": pipeline["threadState"],
        "gatekeeper": pipeline["gatekeeper"],
        "work_item": pipeline["workItem"],
    }


@router.post(
    "/chat-ingest",
    response_model=AsyncIngestResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def chat_ingest_message(
    data: IngestMessageRequest,
    db: AsyncSession = Depends(get_db),
    orchestrator: IngestOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    """Store a chat message and run the pipeline after the debounce window."""
    thread, message, is_new_thread = await _store_message(db, data)
    await orchestrator.run_ingest_pipeline_async(db, thread.id, data.text, data.metadata)
    return {
        "thread_id": str(thread.id),
        "thread_public_id": thread.public_id,
        "message_public_id": message.public_id,
        "is_new_thread": is_new_thread,
        "status": "processing",
    }


@router.get("/llm-health")
async def llm_health() -> dict[str, Any]:
    """Which LLM path (job service, primary, local) is currently usable."""
    health = await check_llm_health()
    return health.to_dict()


@router.get("/threads/{thread_id}")
async def get_thread(
    thread_id: str,
    include_internal: bool = True,
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Get a thread (UUID or public id) with its ThreadState and messages."""
    thread = await feedback_thread_ops.get_by_identifier(db, thread_id)
    if thread is None:
        raise NotFoundError("Thread")
    messages = await feedback_message_ops.list_by_thread(
        db, thread.id, include_internal=include_internal
    )
    return {
        **_serialize_thread(thread),
        "messages": [_serialize_message(m) for m in messages],
    }


@router.post("/threads/{thread_id}/refresh-state")
async def refresh_thread_state(
    thread_id: str,
    db: AsyncSession = Depends(get_db),
    orchestrator: IngestOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    """Rebuild the ThreadState from the full conversation history."""
    if not isinstance(orchestrator.executor, LocalPipelineExecutor):
        raise ConflictError("Full-history refresh is only available with a direct LLM endpoint")

    thread = await feedback_thread_ops.get_by_identifier(db, thread_id)
    if thread is None:
        raise NotFoundError("Thread")

    current = ThreadState.from_document(thread.thread_state)
    state = await orchestrator.executor.merger.update_from_history(db, thread.id, current)
    return {"thread_id": str(thread.id), "thread_state": state.to_document()}


@router.post("/threads/{thread_id}/generate-work-item")
async def generate_work_item(
    thread_id: str,
    data: GenerateWorkItemRequest,
    db: AsyncSession = Depends(get_db),
    orchestrator: IngestOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    """Generate a work item from the thread's stored ThreadState without a new message."""
    thread = await feedback_thread_ops.get_by_identifier(db, thread_id)
    if thread is None:
        raise NotFoundError("Thread")

    state = ThreadState.from_document(thread.thread_state)
    decision = decide(state, settings.gatekeeper_confidence_threshold)
    work_item_type = data.type or decision.work_item_type
    if work_item_type is None:
        raise ValidationError("ThreadState does not call for a work item; pass a type")

    work_item = await orchestrator.executor.generate_work_item(
        db, thread.id, state, work_item_type
    )
    if work_item is None:
        raise UpstreamError("Work item generation failed")

    logger.info(f"[pipeline] Generated {work_item.public_id} on request for thread {thread.id}")
    return {
        "thread_id": str(thread.id),
        "work_item_type": work_item_type.value,
        "work_item": work_item.to_dict(),
    }
