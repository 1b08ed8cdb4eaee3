"""LLM access: completion client, JSON salvage and health checks."""

from app.services.llm.client import (
    CompletionClient,
    CompletionFailure,
    CompletionSuccess,
)
from app.services.llm.exceptions import LlmError, LlmRequestError, LlmUnavailableError
from app.services.llm.health import LlmHealthStatus, check_llm_health
from app.services.llm.json_salvage import salvage

__all__ = [
    "CompletionClient",
    "CompletionFailure",
    "CompletionSuccess",
    "LlmError",
    "LlmHealthStatus",
    "LlmRequestError",
    "LlmUnavailableError",
    "check_llm_health",
    "salvage",
]
