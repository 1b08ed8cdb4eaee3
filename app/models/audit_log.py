"""Append-only audit trail for threads, messages and work items."""

import uuid as uuid_pkg
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from sqlalchemy import Column, DateTime, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlmodel import Field, SQLModel

from app.models.base import UUIDMixin


class AuditEntityType(str, Enum):
    THREAD = "Thread"
    MESSAGE = "Message"
    WORK_ITEM = "WorkItem"


class AuditLog(UUIDMixin, SQLModel, table=True):
    """One audit entry. Rows are never updated or deleted."""

    __tablename__ = "audit_logs"

    entity_type: str = Field(max_length=20, nullable=False, index=True)
    entity_id: uuid_pkg.UUID = Field(nullable=False, index=True)
    action: str = Field(max_length=64, nullable=False, index=True)
    details: dict[str, Any] = Field(default={}, sa_column=Column(JSONB, server_default="{}"))

    created_at: datetime = Field(  # type: ignore[call-overload]
        default_factory=lambda: datetime.now(UTC),
        nullable=False,
        index=True,
        sa_type=DateTime(timezone=True),
        sa_column_kwargs={"server_default": text("now()")},
    )


class AuditLogRead(SQLModel):
    """Schema for reading an audit entry."""

    id: uuid_pkg.UUID
    entity_type: str
    entity_id: uuid_pkg.UUID
    action: str
    details: dict[str, Any]
    created_at: datetime
