"""
Coercion of parsed LLM output into domain types.

Validation runs in two stages: the completion client parses JSON, then the
functions here turn the loosely-typed dict into a fully populated domain
object. Each rule is a small function so it can be tested on its own.
Only unrecoverable input (no object, no summary, no title) raises
``CoercionError``; everything else falls back to a documented default.
"""

import json
import math
from enum import Enum
from typing import Any, TypeVar

from app.models.work_item import RiskLevel, TShirtSize, WorkItemPriority, WorkItemType
from app.schemas.thread_state import (
    DuplicateHint,
    Recommendation,
    RecommendationAction,
    ThreadIntent,
    ThreadState,
    WorkItemCandidate,
)
from app.schemas.work_item_draft import EstimatedEffort, PromptBundle, WorkItemDraft
from app.services.pipeline.exceptions import CoercionError

E = TypeVar("E", bound=Enum)

MAX_TITLE_LENGTH = 200
DEFAULT_SEVERITY = 3
TEXT_ITEM_KEYS = ("name", "description", "text", "title")


# ---------------------------------------------------------------------------
# Scalar rules
# ---------------------------------------------------------------------------


def coerce_enum(value: Any, enum_cls: type[E], default: E) -> E:
    """Case-insensitive match on enum value or name, else ``default``."""
    if isinstance(value, enum_cls):
        return value
    if not isinstance(value, str):
        return default
    needle = value.strip().lower()
    for member in enum_cls:
        if needle in (str(member.value).lower(), member.name.lower()):
            return member
    return default


def coerce_work_item_type(value: Any) -> WorkItemType:
    return coerce_enum(value, WorkItemType, WorkItemType.FEATURE)


def coerce_priority(value: Any) -> WorkItemPriority:
    """Map free-form urgency wording onto P0-P3 (default P2)."""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        if math.isnan(value):
            return WorkItemPriority.P2
        if math.isinf(value):
            return WorkItemPriority.P3 if value > 0 else WorkItemPriority.P0
        level = min(max(int(value), 0), 3)
        return WorkItemPriority(f"P{level}")
    if not isinstance(value, str):
        return WorkItemPriority.P2

    text = value.strip().lower()
    if "critical" in text or "urgent" in text or text in ("high", "p0"):
        return WorkItemPriority.P0
    if "high" in text or "p1" in text:
        return WorkItemPriority.P1
    if "low" in text or "p3" in text:
        return WorkItemPriority.P3
    return WorkItemPriority.P2


def coerce_severity(value: Any) -> int:
    """Integer 1-5. Numbers are clamped; non-numeric input becomes 3."""
    if isinstance(value, bool) or value is None:
        return DEFAULT_SEVERITY
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            return DEFAULT_SEVERITY
    if not isinstance(value, (int, float)) or math.isnan(value):
        return DEFAULT_SEVERITY
    if math.isinf(value):
        return 5 if value > 0 else 1
    return min(max(int(round(value)), 1), 5)


def coerce_risk_level(value: Any) -> RiskLevel:
    if isinstance(value, str) and value.strip().lower() == "none":
        return RiskLevel.LOW
    return coerce_enum(value, RiskLevel, RiskLevel.MEDIUM)


def coerce_tshirt(value: Any) -> TShirtSize:
    return coerce_enum(value, TShirtSize, TShirtSize.M)


def clamp_confidence(value: Any, default: float = 0.0) -> float:
    """Float in [0, 1]; unparseable input becomes ``default``."""
    if isinstance(value, bool):
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if math.isnan(number):
        return default
    return min(max(number, 0.0), 1.0)


def _non_negative(value: Any, default: float) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    return number if number >= 0 and not math.isnan(number) else default


def _optional_text(value: Any) -> str | None:
    if value is None:
        return None
    text = value if isinstance(value, str) else flatten_text_item(value)
    return text.strip() or None


# ---------------------------------------------------------------------------
# Lists
# ---------------------------------------------------------------------------


def flatten_text_item(item: Any) -> str:
    """Turn one list entry into a string.

    Objects use their name/description/text/title field, anything else is
    JSON-encoded.
    """
    if isinstance(item, str):
        return item
    if isinstance(item, dict):
        for key in TEXT_ITEM_KEYS:
            if isinstance(item.get(key), str) and item[key].strip():
                return item[key]
        return json.dumps(item, ensure_ascii=False)
    if isinstance(item, (int, float)) and not isinstance(item, bool):
        return str(item)
    return json.dumps(item, ensure_ascii=False)


def coerce_string_list(value: Any) -> list[str]:
    """List of non-empty strings; a lone string becomes a one-item list."""
    if value is None:
        return []
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list):
        return []
    items = (flatten_text_item(item).strip() for item in value if item is not None)
    return [item for item in items if item]


def _dedupe(items: list[str]) -> list[str]:
    seen: set[str] = set()
    result = []
    for item in items:
        key = item.strip().lower()
        if key not in seen:
            seen.add(key)
            result.append(item)
    return result


# ---------------------------------------------------------------------------
# ThreadState
# ---------------------------------------------------------------------------


def coerce_recommendation(value: Any) -> Recommendation:
    if not isinstance(value, dict):
        return Recommendation()
    reason = value.get("reason")
    return Recommendation(
        action=coerce_enum(
            value.get("action"), RecommendationAction, RecommendationAction.NO_TICKET
        ),
        reason=reason.strip() if isinstance(reason, str) and reason.strip() else "",
        confidence=clamp_confidence(value.get("confidence")),
    )


def coerce_candidates(value: Any) -> list[WorkItemCandidate]:
    if not isinstance(value, list):
        return []
    candidates = []
    for item in value:
        if not isinstance(item, dict):
            continue
        title = item.get("shortTitle") or item.get("title") or ""
        candidates.append(
            WorkItemCandidate(
                type=str(item.get("type") or "Bug"),
                short_title=str(title).strip(),
                reason=str(item.get("reason") or ""),
                confidence=clamp_confidence(item.get("confidence")),
            )
        )
    return candidates


def coerce_duplicate_hint(value: Any) -> DuplicateHint:
    if not isinstance(value, dict):
        return DuplicateHint()
    matched_id = value.get("matchedWorkItemId")
    matched_url = value.get("matchedTicketUrl")
    return DuplicateHint(
        possible_duplicate=value.get("possibleDuplicate") is True,
        matched_work_item_id=str(matched_id) if matched_id else None,
        matched_ticket_url=str(matched_url) if matched_url else None,
    )


def coerce_thread_state(raw: Any) -> ThreadState:
    """
    Validate a merged ThreadState returned by the model.

    Rejects anything that is not an object with a string ``summary``.
    Unknown intents become Other, unknown actions NoTicket, confidences are
    clamped, and missing list/object fields are defaulted.
    """
    if not isinstance(raw, dict):
        raise CoercionError(f"ThreadState must be a JSON object, got {type(raw).__name__}")
    summary = raw.get("summary")
    if not isinstance(summary, str):
        raise CoercionError("ThreadState is missing a string 'summary'")

    environment = raw.get("knownEnvironment")
    signals = raw.get("signals")
    return ThreadState(
        summary=summary.strip(),
        user_goal=_optional_text(raw.get("userGoal")),
        intent=coerce_enum(raw.get("intent"), ThreadIntent, ThreadIntent.OTHER),
        known_environment=environment if isinstance(environment, dict) else {},
        repro_steps=coerce_string_list(raw.get("reproSteps")),
        expected_behavior=_optional_text(raw.get("expectedBehavior")),
        actual_behavior=_optional_text(raw.get("actualBehavior")),
        open_questions=coerce_string_list(raw.get("openQuestions")),
        resolved_questions=coerce_string_list(raw.get("resolvedQuestions")),
        signals=signals if isinstance(signals, dict) else {},
        work_item_candidates=coerce_candidates(raw.get("workItemCandidates")),
        recommendation=coerce_recommendation(raw.get("recommendation")),
        duplicate_hint=coerce_duplicate_hint(raw.get("duplicateHint")),
    )


def reconcile_thread_state(previous: ThreadState, merged: ThreadState) -> ThreadState:
    """
    Enforce cumulative-merge rules the model may have broken.

    - An empty summary keeps the previous one
    - Environment facts and signals the model dropped are restored
    - A question appears in at most one of open/resolved (resolved wins)
    - List fields carry no duplicates
    """
    resolved = _dedupe(previous.resolved_questions + merged.resolved_questions)
    resolved_keys = {q.strip().lower() for q in resolved}
    open_questions = [
        q for q in _dedupe(merged.open_questions) if q.strip().lower() not in resolved_keys
    ]

    return merged.model_copy(
        update={
            "summary": merged.summary or previous.summary,
            "user_goal": merged.user_goal or previous.user_goal,
            "known_environment": {**previous.known_environment, **merged.known_environment},
            "signals": {**previous.signals, **merged.signals},
            "repro_steps": _dedupe(merged.repro_steps or previous.repro_steps),
            "expected_behavior": merged.expected_behavior or previous.expected_behavior,
            "actual_behavior": merged.actual_behavior or previous.actual_behavior,
            "open_questions": open_questions,
            "resolved_questions": resolved,
        }
    )


# ---------------------------------------------------------------------------
# WorkItem draft
# ---------------------------------------------------------------------------


def coerce_title(raw: dict[str, Any]) -> str:
    """Title, falling back to name or summary; trimmed to 200 characters."""
    for key in ("title", "name", "summary"):
        value = raw.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()[:MAX_TITLE_LENGTH]
    raise CoercionError("Work item has no title")


def coerce_estimated_effort(value: Any) -> EstimatedEffort:
    if not isinstance(value, dict):
        return EstimatedEffort()
    default = EstimatedEffort()
    hours_min = _non_negative(value.get("hoursMin"), default.hours_min)
    hours_max = _non_negative(value.get("hoursMax"), default.hours_max)
    if hours_max < hours_min:
        hours_min, hours_max = hours_max, hours_min
    return EstimatedEffort(
        t_shirt=coerce_tshirt(value.get("tShirt")),
        hours_min=hours_min,
        hours_max=hours_max,
        confidence=clamp_confidence(value.get("confidence"), default=default.confidence),
    )


def coerce_prompt_bundle(value: Any) -> PromptBundle:
    if not isinstance(value, dict):
        return PromptBundle()

    def text(key: str) -> str:
        item = value.get(key)
        return item if isinstance(item, str) else ""

    return PromptBundle(
        cursor_prompt=text("cursorPrompt"),
        agent_system_prompt=text("agentSystemPrompt"),
        agent_task_prompt=text("agentTaskPrompt"),
        suspected_files=coerce_string_list(value.get("suspectedFiles")),
        tests_to_run=coerce_string_list(value.get("testsToRun")),
        commands=coerce_string_list(value.get("commands")),
    )


def coerce_work_item_draft(raw: Any) -> WorkItemDraft:
    """Validate generator output. Only a missing title is fatal."""
    if not isinstance(raw, dict):
        raise CoercionError(f"Work item must be a JSON object, got {type(raw).__name__}")

    description = raw.get("structuredDescription")
    if not isinstance(description, str) or not description.strip():
        description = raw.get("description")
    if not isinstance(description, str):
        description = ""

    return WorkItemDraft(
        title=coerce_title(raw),
        type=coerce_work_item_type(raw.get("type")),
        structured_description=description,
        acceptance_criteria=coerce_string_list(raw.get("acceptanceCriteria")),
        priority=coerce_priority(raw.get("priority")),
        severity=coerce_severity(raw.get("severity")),
        risk_level=coerce_risk_level(raw.get("riskLevel")),
        estimated_effort=coerce_estimated_effort(raw.get("estimatedEffort")),
        prompt_bundle=coerce_prompt_bundle(raw.get("promptBundle")),
        labels=coerce_string_list(raw.get("labels")),
    )
