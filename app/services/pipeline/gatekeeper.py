"""
Gatekeeper: deterministic decision on whether a ThreadState becomes a ticket.

Pure function of the state; no I/O, cannot fail. The LLM recommends, the
gatekeeper decides.
"""

from dataclasses import dataclass
from typing import Any

from app.models.feedback_thread import ThreadStatus
from app.models.work_item import WorkItemType
from app.schemas.thread_state import RecommendationAction, ThreadState
from app.services.pipeline.coercion import coerce_enum

CONFIDENCE_THRESHOLD = 0.70

_CREATE_ACTIONS = {
    RecommendationAction.CREATE_BUG: WorkItemType.BUG,
    RecommendationAction.CREATE_FEATURE: WorkItemType.FEATURE,
}


@dataclass(frozen=True)
class GatekeeperResult:
    should_create_work_item: bool
    thread_status: ThreadStatus
    reason: str
    work_item_type: WorkItemType | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "shouldCreateWorkItem": self.should_create_work_item,
            "workItemType": self.work_item_type.value if self.work_item_type else None,
            "threadStatus": self.thread_status.value,
            "reason": self.reason,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "GatekeeperResult":
        """Read a decision made elsewhere (remote job results)."""
        work_item_type = data.get("workItemType")
        return cls(
            should_create_work_item=bool(data.get("shouldCreateWorkItem")),
            thread_status=coerce_enum(data.get("threadStatus"), ThreadStatus, ThreadStatus.OPEN),
            reason=str(data.get("reason") or ""),
            work_item_type=(
                coerce_enum(work_item_type, WorkItemType, WorkItemType.BUG)
                if work_item_type
                else None
            ),
        )


def decide(state: ThreadState, threshold: float = CONFIDENCE_THRESHOLD) -> GatekeeperResult:
    """
    Decide whether to create a work item and which status the thread gets.

    Confidence is compared with ``>=``: exactly the threshold escalates.
    """
    recommendation = state.recommendation
    action = recommendation.action
    confidence = recommendation.confidence

    if action == RecommendationAction.ASK_QUESTIONS:
        return GatekeeperResult(
            should_create_work_item=False,
            thread_status=ThreadStatus.WAITING_ON_USER,
            reason=recommendation.reason or "More information needed from the user",
        )

    if action in _CREATE_ACTIONS:
        if confidence >= threshold:
            return GatekeeperResult(
                should_create_work_item=True,
                thread_status=ThreadStatus.OPEN,
                reason=recommendation.reason or f"{_CREATE_ACTIONS[action].value} work item recommended",
                work_item_type=_CREATE_ACTIONS[action],
            )
        return GatekeeperResult(
            should_create_work_item=False,
            thread_status=ThreadStatus.OPEN,
            reason=f"Recommendation confidence ({confidence:.2f}) below threshold ({threshold:.2f})",
        )

    if action == RecommendationAction.SPLIT_INTO_TWO:
        # The model lists the candidate to create first
        candidates = state.work_item_candidates
        top = candidates[0] if candidates else None
        if top is not None and top.confidence >= threshold:
            return GatekeeperResult(
                should_create_work_item=True,
                thread_status=ThreadStatus.OPEN,
                reason=f"Split recommended: creating first item ({top.short_title})",
                work_item_type=coerce_enum(top.type, WorkItemType, WorkItemType.BUG),
            )
        return GatekeeperResult(
            should_create_work_item=False,
            thread_status=ThreadStatus.OPEN,
            reason="Split recommended but confidence too low for automatic creation",
        )

    return GatekeeperResult(
        should_create_work_item=False,
        thread_status=ThreadStatus.OPEN,
        reason=recommendation.reason or "No ticket needed",
    )
