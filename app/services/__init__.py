# Services package

from app.services.llm import CompletionClient, check_llm_health
from app.services.pipeline import IngestOrchestrator, build_orchestrator

__all__ = [
    "CompletionClient",
    "check_llm_health",
    "IngestOrchestrator",
    "build_orchestrator",
]
