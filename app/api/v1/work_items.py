import uuid as uuid_pkg
from typing import Any

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.exceptions import ConflictError, NotFoundError, ValidationError
from app.domain import audit_log_ops, work_item_ops
from app.models.audit_log import AuditEntityType
from app.models.work_item import WorkItem, WorkItemStatus, WorkItemUpdate
from app.schemas.feedback import ReasonRequest, TransitionRequest
from app.schemas.work_item_draft import PromptBundle
from app.services.work_item_lifecycle import (
    InvalidTransitionError,
    TransitionReasonRequiredError,
    allowed_targets,
    transition_work_item,
    update_prompt_bundle,
    update_work_item_fields,
)

router = APIRouter(prefix="/work-items", tags=["work items"])

# Named shortcuts for POST /work-items/{id}/{action}
ACTION_TARGETS: dict[str, WorkItemStatus] = {
    "approve": WorkItemStatus.APPROVED,
    "reject": WorkItemStatus.REJECTED,
    "hold": WorkItemStatus.ON_HOLD,
    "start": WorkItemStatus.IN_PROGRESS,
    "review": WorkItemStatus.NEEDS_REVIEW,
    "done": WorkItemStatus.DONE,
    "fail": WorkItemStatus.FAILED,
    "cancel": WorkItemStatus.CANCELED,
    "resubmit": WorkItemStatus.PENDING_APPROVAL,
}


def _serialize_work_item(item: WorkItem) -> dict[str, Any]:
    """Serialize a work item to a dict response."""
    return {
        "id": str(item.id),
        "public_id": item.public_id,
        "thread_id": str(item.thread_id),
        "type": item.type,
        "title": item.title,
        "structured_description": item.structured_description,
        "acceptance_criteria": item.acceptance_criteria or [],
        "priority": item.priority,
        "severity": item.severity,
        "risk_level": item.risk_level,
        "confidence_score": item.confidence_score,
        "status": item.status,
        "allowed_transitions": [s.value for s in allowed_targets(WorkItemStatus(item.status))],
        "reason": item.reason,
        "labels": item.labels or [],
        "estimated_effort": item.estimated_effort or {},
        "prompt_bundle": item.prompt_bundle or {},
        "created_at": item.created_at.isoformat(),
        "updated_at": item.updated_at.isoformat(),
    }


async def _get_work_item_or_404(db: AsyncSession, work_item_id: str) -> WorkItem:
    item = await work_item_ops.get_by_identifier(db, work_item_id)
    if item is None:
        raise NotFoundError("Work item")
    return item


async def _transition(
    db: AsyncSession,
    item: WorkItem,
    target: WorkItemStatus,
    reason: str | None,
) -> dict[str, Any]:
    try:
        item = await transition_work_item(db, item, target, reason)
    except InvalidTransitionError as e:
        raise ConflictError(str(e)) from e
    except TransitionReasonRequiredError as e:
        raise ValidationError(str(e)) from e
    return _serialize_work_item(item)


@router.get("", response_model=list[dict])
async def list_work_items(
    status: str | None = Query(None, description="Filter by status"),
    type: str | None = Query(None, description="Filter by type"),
    thread_id: str | None = Query(None, description="Filter by thread (UUID)"),
    skip: int = 0,
    limit: int = Query(100, le=500),
    db: AsyncSession = Depends(get_db),
):
    """List work items, newest first."""
    thread_uuid = None
    if thread_id:
        try:
            thread_uuid = uuid_pkg.UUID(thread_id)
        except ValueError as e:
            raise ValidationError("thread_id must be a UUID") from e

    items = await work_item_ops.get_multi(
        db, status=status, type=type, thread_id=thread_uuid, skip=skip, limit=limit
    )
    return [_serialize_work_item(item) for item in items]


@router.get("/{work_item_id}")
async def get_work_item(
    work_item_id: str,
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Get a work item by UUID or public id, with its audit history."""
    item = await _get_work_item_or_404(db, work_item_id)
    history = await audit_log_ops.get_by_entity(db, AuditEntityType.WORK_ITEM, item.id)
    return {
        **_serialize_work_item(item),
        "history": [
            {"action": e.action, "details": e.details, "created_at": e.created_at.isoformat()}
            for e in history
        ],
    }


@router.patch("/{work_item_id}")
async def update_work_item(
    work_item_id: str,
    data: WorkItemUpdate,
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Edit work item fields. Status changes use the transition endpoints."""
    item = await _get_work_item_or_404(db, work_item_id)
    item = await update_work_item_fields(db, item, data)
    return _serialize_work_item(item)


@router.patch("/{work_item_id}/prompt-bundle")
async def replace_prompt_bundle(
    work_item_id: str,
    bundle: PromptBundle,
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Replace the coding-agent prompt bundle."""
    item = await _get_work_item_or_404(db, work_item_id)
    item = await update_prompt_bundle(db, item, bundle)
    return _serialize_work_item(item)


@router.post("/{work_item_id}/transition")
async def transition(
    work_item_id: str,
    data: TransitionRequest,
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Move a work item to another status."""
    try:
        target = WorkItemStatus(data.status)
    except ValueError as e:
        raise ValidationError(f"Unknown status: {data.status}") from e

    item = await _get_work_item_or_404(db, work_item_id)
    return await _transition(db, item, target, data.reason)


@router.post("/{work_item_id}/{action}")
async def transition_by_action(
    work_item_id: str,
    action: str,
    data: ReasonRequest | None = None,
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Named transitions: approve, reject, hold, start, review, done, fail, cancel, resubmit."""
    target = ACTION_TARGETS.get(action)
    if target is None:
        raise NotFoundError(f"Action '{action}'")

    item = await _get_work_item_or_404(db, work_item_id)
    return await _transition(db, item, target, data.reason if data else None)
