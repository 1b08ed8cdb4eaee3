"""ThreadState: the cumulative AI understanding of one feedback thread.

Stored on the thread as a JSON document with camelCase keys; Python code
uses snake_case attributes. Every field always has a value, so consumers
never need to check for missing keys.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model serialized with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_document(self) -> dict[str, Any]:
        """JSON-ready dict with camelCase keys."""
        return self.model_dump(mode="json", by_alias=True)


class ThreadIntent(str, Enum):
    BUG = "Bug"
    FEATURE = "Feature"
    PERFORMANCE = "Performance"
    BILLING = "Billing"
    OTHER = "Other"


class RecommendationAction(str, Enum):
    NO_TICKET = "NoTicket"
    ASK_QUESTIONS = "AskQuestions"
    CREATE_BUG = "CreateBugWorkItem"
    CREATE_FEATURE = "CreateFeatureWorkItem"
    SPLIT_INTO_TWO = "SplitIntoTwo"


class Recommendation(CamelModel):
    action: RecommendationAction = RecommendationAction.NO_TICKET
    reason: str = "Insufficient information"
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)


class WorkItemCandidate(CamelModel):
    """A possible ticket the thread could produce (several when topics diverge)."""

    type: str
    short_title: str
    reason: str = ""
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)


class DuplicateHint(CamelModel):
    possible_duplicate: bool = False
    matched_work_item_id: str | None = None
    matched_ticket_url: str | None = None


class ThreadState(CamelModel):
    summary: str = ""
    user_goal: str | None = None
    intent: ThreadIntent = ThreadIntent.OTHER
    known_environment: dict[str, Any] = Field(default_factory=dict)
    repro_steps: list[str] = Field(default_factory=list)
    expected_behavior: str | None = None
    actual_behavior: str | None = None
    open_questions: list[str] = Field(default_factory=list)
    resolved_questions: list[str] = Field(default_factory=list)
    signals: dict[str, Any] = Field(default_factory=dict)
    work_item_candidates: list[WorkItemCandidate] = Field(default_factory=list)
    recommendation: Recommendation = Field(default_factory=Recommendation)
    duplicate_hint: DuplicateHint = Field(default_factory=DuplicateHint)

    @classmethod
    def empty(cls) -> "ThreadState":
        """State of a thread no message has been merged into yet."""
        return cls()

    @classmethod
    def from_document(cls, document: dict[str, Any] | None) -> "ThreadState":
        """Load a stored document, falling back to the empty state."""
        if not document:
            return cls.empty()
        return cls.model_validate(document)
