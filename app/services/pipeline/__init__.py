"""Feedback ingest pipeline: merge, gate, generate, orchestrate."""

from app.services.pipeline.executor import (
    IngestPipelineResult,
    LocalPipelineExecutor,
    PipelineExecutor,
    RemotePipelineExecutor,
    WorkItemRef,
)
from app.services.pipeline.gatekeeper import CONFIDENCE_THRESHOLD, GatekeeperResult, decide
from app.services.pipeline.orchestrator import (
    IngestOrchestrator,
    build_orchestrator,
    get_orchestrator,
)

__all__ = [
    "CONFIDENCE_THRESHOLD",
    "GatekeeperResult",
    "IngestOrchestrator",
    "IngestPipelineResult",
    "LocalPipelineExecutor",
    "PipelineExecutor",
    "RemotePipelineExecutor",
    "WorkItemRef",
    "build_orchestrator",
    "decide",
    "get_orchestrator",
]
