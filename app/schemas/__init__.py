from app.schemas.thread_state import (
    DuplicateHint,
    Recommendation,
    RecommendationAction,
    ThreadIntent,
    ThreadState,
    WorkItemCandidate,
)
from app.schemas.work_item_draft import EstimatedEffort, PromptBundle, WorkItemDraft

__all__ = [
    "DuplicateHint",
    "EstimatedEffort",
    "PromptBundle",
    "Recommendation",
    "RecommendationAction",
    "ThreadIntent",
    "ThreadState",
    "WorkItemCandidate",
    "WorkItemDraft",
]
