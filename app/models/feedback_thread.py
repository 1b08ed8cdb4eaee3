"""Feedback threads and their messages.

A thread groups every message of one conversation (widget chat, email
thread, Slack thread...). Its ``thread_state`` column holds the cumulative
AI understanding of the conversation as an opaque JSON document.
"""

import uuid as uuid_pkg
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from sqlalchemy import Column, DateTime, ForeignKey, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlmodel import Field, SQLModel

from app.models.base import PublicIdMixin, TimestampMixin, UUIDMixin


class ThreadStatus(str, Enum):
    """Conversation status, set by the gatekeeper and by agents."""

    OPEN = "Open"
    WAITING_ON_USER = "WaitingOnUser"
    RESOLVED = "Resolved"
    CLOSED = "Closed"


class MessageSource(str, Enum):
    """Channel a message arrived through."""

    WIDGET = "widget"
    EMAIL = "email"
    WHATSAPP = "whatsapp"
    SLACK = "slack"
    API = "api"


class SenderType(str, Enum):
    USER = "user"
    INTERNAL = "internal"


class MessageVisibility(str, Enum):
    """Internal messages are never shown to the end user."""

    PUBLIC = "public"
    INTERNAL = "internal"


class FeedbackThread(UUIDMixin, PublicIdMixin, TimestampMixin, SQLModel, table=True):
    """One conversation with an end user."""

    __tablename__ = "feedback_threads"

    subject: str | None = Field(default=None, max_length=500)
    source: str = Field(default=MessageSource.API.value, max_length=20)
    status: str = Field(default=ThreadStatus.OPEN.value, max_length=20, index=True)

    # Identity used to route follow-up messages to the same thread
    customer_email: str | None = Field(default=None, max_length=320, index=True)
    external_thread_id: str | None = Field(default=None, max_length=255, index=True)

    # Cumulative AI understanding (ThreadState document, camelCase keys)
    thread_state: dict[str, Any] | None = Field(
        default=None, sa_column=Column(JSONB, nullable=True)
    )

    # Set while an ingest pipeline run is pending or in flight
    ai_processing_since: datetime | None = Field(  # type: ignore[call-overload]
        default=None, sa_type=DateTime(timezone=True)
    )
    last_activity_at: datetime | None = Field(  # type: ignore[call-overload]
        default=None, sa_type=DateTime(timezone=True)
    )


class FeedbackMessage(UUIDMixin, PublicIdMixin, SQLModel, table=True):
    """A single message in a thread. Messages are immutable once stored."""

    __tablename__ = "feedback_messages"

    thread_id: uuid_pkg.UUID = Field(
        sa_column=Column(
            PG_UUID(as_uuid=True),
            ForeignKey("feedback_threads.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )

    source: str = Field(default=MessageSource.API.value, max_length=20)
    sender_type: str = Field(default=SenderType.USER.value, max_length=20)
    sender_name: str | None = Field(default=None, max_length=255)
    sender_email: str | None = Field(default=None, max_length=320)
    visibility: str = Field(default=MessageVisibility.PUBLIC.value, max_length=20)

    raw_text: str = Field(nullable=False)
    metadata_json: dict[str, Any] = Field(
        default={}, sa_column=Column("metadata", JSONB, server_default="{}")
    )

    created_at: datetime = Field(  # type: ignore[call-overload]
        default_factory=lambda: datetime.now(UTC),
        nullable=False,
        sa_type=DateTime(timezone=True),
        sa_column_kwargs={"server_default": text("now()")},
    )
