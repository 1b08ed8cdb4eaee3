"""Work items generated from feedback threads."""

import uuid as uuid_pkg
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import field_validator
from sqlalchemy import Column, ForeignKey
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlmodel import Field, SQLModel

from app.models.base import PublicIdMixin, TimestampMixin, UUIDMixin


class WorkItemType(str, Enum):
    BUG = "Bug"
    FEATURE = "Feature"
    CHORE = "Chore"
    DOCS = "Docs"


class WorkItemPriority(str, Enum):
    """P0 is the most urgent."""

    P0 = "P0"
    P1 = "P1"
    P2 = "P2"
    P3 = "P3"


class RiskLevel(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"


class TShirtSize(str, Enum):
    XS = "XS"
    S = "S"
    M = "M"
    L = "L"
    XL = "XL"


class WorkItemStatus(str, Enum):
    """Lifecycle states. Transitions are enforced by work_item_lifecycle."""

    DRAFT = "Draft"
    PENDING_APPROVAL = "PendingApproval"
    APPROVED = "Approved"
    REJECTED = "Rejected"
    ON_HOLD = "OnHold"
    IN_PROGRESS = "InProgress"
    NEEDS_REVIEW = "NeedsReview"
    DONE = "Done"
    FAILED = "Failed"
    CANCELED = "Canceled"


class WorkItem(UUIDMixin, PublicIdMixin, TimestampMixin, SQLModel, table=True):
    """Engineering ticket derived from a feedback thread.

    Enumerated columns only ever hold valid enum values: LLM output is
    coerced before it reaches this model.
    """

    __tablename__ = "work_items"

    thread_id: uuid_pkg.UUID = Field(
        sa_column=Column(
            PG_UUID(as_uuid=True),
            ForeignKey("feedback_threads.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )

    type: str = Field(max_length=20, nullable=False)
    title: str = Field(max_length=200, nullable=False)
    structured_description: str = Field(default="")
    acceptance_criteria: list[str] = Field(
        default=[], sa_column=Column(JSONB, server_default="[]")
    )

    priority: str = Field(default=WorkItemPriority.P2.value, max_length=2, index=True)
    severity: int = Field(default=3, ge=1, le=5)
    risk_level: str = Field(default=RiskLevel.MEDIUM.value, max_length=10)
    confidence_score: float = Field(default=0.0)

    status: str = Field(default=WorkItemStatus.PENDING_APPROVAL.value, max_length=20, index=True)
    # Latest transition reason (reject / hold / fail)
    reason: str | None = Field(default=None)

    labels: list[str] = Field(default=[], sa_column=Column(JSONB, server_default="[]"))
    estimated_effort: dict[str, Any] = Field(
        default={}, sa_column=Column(JSONB, server_default="{}")
    )
    prompt_bundle: dict[str, Any] = Field(
        default={}, sa_column=Column(JSONB, server_default="{}")
    )


class WorkItemUpdate(SQLModel):
    """Explicit field edits. Status changes go through transitions instead."""

    title: str | None = Field(default=None, min_length=1, max_length=200)
    structured_description: str | None = None
    type: WorkItemType | None = None
    priority: WorkItemPriority | None = None
    severity: int | None = Field(default=None, ge=1, le=5)
    risk_level: RiskLevel | None = None
    acceptance_criteria: list[str] | None = None
    labels: list[str] | None = None

    @field_validator("title")
    @classmethod
    def title_not_blank(cls, value: str | None) -> str | None:
        if value is not None and not value.strip():
            raise ValueError("title must not be blank")
        return value.strip() if value else value


class WorkItemRead(SQLModel):
    """Schema for reading a work item."""

    id: uuid_pkg.UUID
    public_id: str
    thread_id: uuid_pkg.UUID
    type: str
    title: str
    structured_description: str
    acceptance_criteria: list[str]
    priority: str
    severity: int
    risk_level: str
    confidence_score: float
    status: str
    reason: str | None
    labels: list[str]
    estimated_effort: dict[str, Any]
    prompt_bundle: dict[str, Any]
    created_at: datetime
    updated_at: datetime
