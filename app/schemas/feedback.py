"""Pydantic schemas for feedback ingest endpoints."""

from typing import Any

from pydantic import BaseModel, Field

from app.models.feedback_thread import MessageSource
from app.models.work_item import WorkItemType


class IngestMessageRequest(BaseModel):
    """Request body for POST /feedback/ingest and /feedback/chat-ingest.

    Routing: ``thread_id`` (UUID or public id) continues a known thread,
    ``external_thread_id`` continues the thread a channel (email, Slack)
    already knows; otherwise a new thread is created.
    """

    text: str = Field(min_length=1, max_length=20000)
    source: MessageSource = MessageSource.API
    thread_id: str | None = None
    external_thread_id: str | None = Field(default=None, max_length=255)
    subject: str | None = Field(default=None, max_length=500)
    sender_name: str | None = Field(default=None, max_length=255)
    sender_email: str | None = Field(default=None, max_length=320)
    metadata: dict[str, Any] = Field(default_factory=dict)


class IngestResponse(BaseModel):
    """Response for POST /feedback/ingest."""

    thread_id: str
    thread_public_id: str
    message_public_id: str
    is_new_thread: bool
    thread_state: dict[str, Any]
    gatekeeper: dict[str, Any]
    work_item: dict[str, str] | None = None


class AsyncIngestResponse(BaseModel):
    """Response for POST /feedback/chat-ingest (pipeline runs later)."""

    thread_id: str
    thread_public_id: str
    message_public_id: str
    is_new_thread: bool
    status: str = "processing"


class TransitionRequest(BaseModel):
    """Request body for POST /work-items/{id}/transition."""

    status: str
    reason: str | None = Field(default=None, max_length=2000)


class ReasonRequest(BaseModel):
    """Optional/required reason for named transitions (reject, hold, fail)."""

    reason: str | None = Field(default=None, max_length=2000)


class GenerateWorkItemRequest(BaseModel):
    """Request body for POST /feedback/threads/{id}/generate-work-item.

    Without ``type`` the gatekeeper's decision on the stored ThreadState
    picks it.
    """

    type: WorkItemType | None = None
