"""
WorkItem lifecycle state machine.

Every status change goes through ``transition_work_item``: the transition
is checked against ``VALID_TRANSITIONS`` and exactly one audit entry is
written. Done and Canceled are terminal.

Also home to explicit field and prompt-bundle edits, which are audited the
same way.
"""

import logging
from datetime import UTC, datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from app.domain.audit_log_operations import audit_log_ops
from app.domain.work_item_operations import work_item_ops
from app.models.audit_log import AuditEntityType
from app.models.work_item import WorkItem, WorkItemStatus, WorkItemUpdate
from app.schemas.work_item_draft import PromptBundle

logger = logging.getLogger(__name__)

S = WorkItemStatus

VALID_TRANSITIONS: dict[WorkItemStatus, frozenset[WorkItemStatus]] = {
    S.DRAFT: frozenset({S.PENDING_APPROVAL, S.CANCELED}),
    S.PENDING_APPROVAL: frozenset({S.APPROVED, S.REJECTED, S.ON_HOLD, S.CANCELED}),
    S.APPROVED: frozenset({S.IN_PROGRESS, S.ON_HOLD, S.CANCELED}),
    S.REJECTED: frozenset({S.PENDING_APPROVAL, S.CANCELED}),
    S.ON_HOLD: frozenset({S.PENDING_APPROVAL, S.APPROVED, S.CANCELED}),
    S.IN_PROGRESS: frozenset({S.NEEDS_REVIEW, S.DONE, S.FAILED, S.ON_HOLD, S.CANCELED}),
    S.NEEDS_REVIEW: frozenset({S.IN_PROGRESS, S.DONE, S.FAILED, S.CANCELED}),
    S.DONE: frozenset(),
    S.FAILED: frozenset({S.PENDING_APPROVAL, S.IN_PROGRESS, S.CANCELED}),
    S.CANCELED: frozenset(),
}

REASON_REQUIRED = frozenset({S.REJECTED, S.ON_HOLD, S.FAILED})

# Audit action written for a transition into each status
TRANSITION_ACTIONS: dict[WorkItemStatus, str] = {
    S.PENDING_APPROVAL: "resubmitted",
    S.APPROVED: "approved",
    S.REJECTED: "rejected",
    S.ON_HOLD: "on_hold",
    S.IN_PROGRESS: "started",
    S.NEEDS_REVIEW: "needs_review",
    S.DONE: "done",
    S.FAILED: "failed",
    S.CANCELED: "canceled",
}

EDITABLE_FIELDS = (
    "title",
    "structured_description",
    "type",
    "priority",
    "severity",
    "risk_level",
    "acceptance_criteria",
    "labels",
)


class InvalidTransitionError(Exception):
    """Transition not allowed from the current status."""

    def __init__(self, from_status: WorkItemStatus, to_status: WorkItemStatus):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(f"Invalid status transition: {from_status.value} → {to_status.value}")


class TransitionReasonRequiredError(Exception):
    """Rejecting, holding or failing a work item needs a reason."""

    def __init__(self, to_status: WorkItemStatus):
        self.to_status = to_status
        super().__init__(f"A reason is required to move a work item to {to_status.value}")


def can_transition(from_status: WorkItemStatus, to_status: WorkItemStatus) -> bool:
    return to_status in VALID_TRANSITIONS.get(from_status, frozenset())


def assert_valid_transition(from_status: WorkItemStatus, to_status: WorkItemStatus) -> None:
    """Raise InvalidTransitionError naming both states when not allowed."""
    if not can_transition(from_status, to_status):
        raise InvalidTransitionError(from_status, to_status)


def allowed_targets(status: WorkItemStatus) -> list[WorkItemStatus]:
    """Statuses reachable in one step (for UI action menus)."""
    return sorted(VALID_TRANSITIONS[status], key=lambda s: list(WorkItemStatus).index(s))


async def transition_work_item(
    db: AsyncSession,
    work_item: WorkItem,
    target: WorkItemStatus,
    reason: str | None = None,
) -> WorkItem:
    """
    Move a work item to ``target`` and write one audit entry.

    Raises:
        InvalidTransitionError: Target not reachable from the current status
        TransitionReasonRequiredError: Rejected/OnHold/Failed without a reason
    """
    current = WorkItemStatus(work_item.status)
    assert_valid_transition(current, target)

    reason = reason.strip() if reason else None
    if target in REASON_REQUIRED and not reason:
        raise TransitionReasonRequiredError(target)

    fields: dict[str, Any] = {"status": target.value}
    if target in REASON_REQUIRED:
        fields["reason"] = reason
    elif target == S.PENDING_APPROVAL:
        fields["reason"] = None

    work_item = await work_item_ops.update(db, work_item, fields)

    details: dict[str, Any] = {"from": current.value, "to": target.value}
    if reason:
        details["reason"] = reason
    await audit_log_ops.create(
        db, AuditEntityType.WORK_ITEM, work_item.id, TRANSITION_ACTIONS[target], details
    )
    logger.info(f"Work item {work_item.public_id}: {current.value} → {target.value}")
    return work_item


async def update_work_item_fields(
    db: AsyncSession,
    work_item: WorkItem,
    data: WorkItemUpdate,
) -> WorkItem:
    """Apply explicit edits (never status) and audit which fields changed."""
    changes: dict[str, Any] = {}
    for field, value in data.model_dump(exclude_unset=True).items():
        if field not in EDITABLE_FIELDS or value is None:
            continue
        if hasattr(value, "value"):
            value = value.value
        if getattr(work_item, field) != value:
            changes[field] = value

    if not changes:
        return work_item

    work_item = await work_item_ops.update(db, work_item, changes)
    await audit_log_ops.create(
        db,
        AuditEntityType.WORK_ITEM,
        work_item.id,
        "fields_updated",
        {"fields": sorted(changes)},
    )
    return work_item


async def update_prompt_bundle(
    db: AsyncSession,
    work_item: WorkItem,
    bundle: PromptBundle,
) -> WorkItem:
    """Replace the prompt bundle and audit the edit."""
    work_item = await work_item_ops.update(
        db,
        work_item,
        {"prompt_bundle": bundle.to_document(), "updated_at": datetime.now(UTC)},
    )
    await audit_log_ops.create(
        db, AuditEntityType.WORK_ITEM, work_item.id, "prompt_bundle_updated", {}
    )
    return work_item
