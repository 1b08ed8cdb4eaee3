"""Prompts for the ThreadState merger and the WorkItem generator."""

import json
from typing import Any

THREAD_STATE_OUTPUT_SCHEMA: dict[str, Any] = {
    "summary": "string - cumulative summary of the whole conversation",
    "userGoal": "string | null",
    "intent": "Bug | Feature | Performance | Billing | Other",
    "knownEnvironment": "object - browser, os, device, appVersion, plan, ... (only known facts)",
    "reproSteps": "string[]",
    "expectedBehavior": "string | null",
    "actualBehavior": "string | null",
    "openQuestions": "string[] - what we still need to know",
    "resolvedQuestions": "string[] - questions the user has answered",
    "signals": "object - e.g. {frustration: 'high', blocking: true, affectedUsers: 'many'}",
    "workItemCandidates": [
        {"type": "Bug | Feature", "shortTitle": "string", "reason": "string", "confidence": 0.0}
    ],
    "recommendation": {
        "action": "NoTicket | AskQuestions | CreateBugWorkItem | CreateFeatureWorkItem | SplitIntoTwo",
        "reason": "string",
        "confidence": 0.0,
    },
    "duplicateHint": {
        "possibleDuplicate": False,
        "matchedWorkItemId": None,
        "matchedTicketUrl": None,
    },
}

THREAD_STATE_SYSTEM_PROMPT = """You maintain a cumulative understanding of a customer feedback conversation.

You receive the CURRENT thread state and ONE new message. Return the UPDATED thread state.

## Cumulative rules
- Never lose information. Everything in the current state stays unless the new message explicitly corrects it.
- The summary covers the whole conversation, not just the latest message. Never shorten it to a single message.
- Add new environment facts to knownEnvironment; keep existing ones.
- When the user answers an open question, move it from openQuestions to resolvedQuestions. Never list a question in both.
- Do not repeat repro steps that are already listed.

## Classification
- Bug: something that used to work or should work is broken (errors, crashes, wrong results).
- Feature: a request for new behaviour or an enhancement.
- Performance: slowness, timeouts, resource usage.
- Billing: payments, invoices, plans, refunds.
- Other: questions, praise, anything else.

## Recommendation
- NoTicket: nothing actionable (thanks, chit-chat, solved by an answer).
- AskQuestions: actionable but key facts are missing (repro steps, environment, expected behaviour). Put the questions in openQuestions.
- CreateBugWorkItem / CreateFeatureWorkItem: enough information for an engineer to act.
- SplitIntoTwo: the new message raises an UNRELATED topic from the rest of the thread. List one workItemCandidate per topic.

## Confidence guidelines
- 0.9-1.0: clear problem, reproducible, environment known.
- 0.7-0.89: clear problem, minor gaps.
- 0.4-0.69: plausible but vague, important facts missing.
- 0.0-0.39: unclear or not actionable.

## Output format
Respond with ONLY a JSON object matching outputSchema. No markdown, no code fences, no explanation.
Use double quotes for all keys and strings. Every field must be present."""


WORK_ITEM_EXAMPLE: dict[str, Any] = {
    "title": "Fix login timeout on Safari when session cookie expires",
    "type": "Bug",
    "structuredDescription": (
        "## Problem\nUsers on Safari 17 are logged out with a blank screen after ~30 minutes.\n\n"
        "## Steps to reproduce\n1. Log in on Safari 17 (macOS)\n2. Wait 30 minutes\n"
        "3. Click any navigation link\n\n## Expected\nSession refreshes silently.\n\n"
        "## Actual\nBlank screen, console shows 401 from /api/session."
    ),
    "acceptanceCriteria": [
        "Session refreshes before expiry on Safari 17",
        "Expired sessions redirect to /login instead of a blank screen",
    ],
    "priority": "P1",
    "severity": 4,
    "riskLevel": "Medium",
    "estimatedEffort": {"tShirt": "M", "hoursMin": 3, "hoursMax": 6, "confidence": 0.6},
    "promptBundle": {
        "cursorPrompt": "Fix the Safari session refresh: ...",
        "agentSystemPrompt": "You are a senior engineer fixing an auth bug.",
        "agentTaskPrompt": "Investigate session refresh on Safari and fix the redirect.",
        "suspectedFiles": ["src/auth/session.ts", "src/middleware/auth.ts"],
        "testsToRun": ["npm test -- auth"],
        "commands": ["npm run dev"],
    },
    "labels": ["auth", "safari"],
}

WORK_ITEM_SYSTEM_PROMPT = (
    """You turn a summarized customer conversation into an engineering work item.

Write for an engineer who has not read the conversation. Be specific: include the
environment, repro steps, expected and actual behaviour when known.

Rules:
- title: imperative, under 100 characters.
- type: Bug | Feature | Chore | Docs
- priority: P0 (outage, data loss) | P1 (major, no workaround) | P2 (normal) | P3 (minor)
- severity: integer 1 (cosmetic) to 5 (critical)
- riskLevel: Low | Medium | High
- estimatedEffort.tShirt: XS | S | M | L | XL
- acceptanceCriteria: array of plain strings
- promptBundle: prompts a coding agent can use directly

Respond with ONLY a JSON object shaped exactly like this example. No markdown, no explanation.

Example:
"""
    + json.dumps(WORK_ITEM_EXAMPLE, indent=2)
)


def build_thread_state_prompt(
    current_state: dict[str, Any],
    message_text: str,
    metadata: dict[str, Any] | None = None,
) -> str:
    """User prompt for merging one new message into the current state."""
    return json.dumps(
        {
            "instruction": (
                "Merge the new message into the current thread state and return the "
                "complete updated state."
            ),
            "currentThreadState": current_state,
            "newMessage": {"text": message_text, "metadata": metadata or {}},
            "outputSchema": THREAD_STATE_OUTPUT_SCHEMA,
        },
        ensure_ascii=False,
        indent=2,
    )


def build_thread_history_prompt(
    current_state: dict[str, Any],
    messages: list[dict[str, Any]],
) -> str:
    """User prompt for rebuilding the state from the full conversation history."""
    return json.dumps(
        {
            "instruction": (
                "Rebuild the thread state from the complete conversation below. Use the "
                "current thread state as a starting point."
            ),
            "currentThreadState": current_state,
            "conversation": messages,
            "outputSchema": THREAD_STATE_OUTPUT_SCHEMA,
        },
        ensure_ascii=False,
        indent=2,
    )


def build_work_item_prompt(thread_state: dict[str, Any], work_item_type: str) -> str:
    """User prompt for generating a work item of a given type."""
    return json.dumps(
        {
            "instruction": f"Create a {work_item_type} work item from this thread state.",
            "workItemType": work_item_type,
            "threadState": thread_state,
        },
        ensure_ascii=False,
        indent=2,
    )
