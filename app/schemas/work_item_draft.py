"""Generator output schema: a coerced, fully populated work item draft."""

from pydantic import Field

from app.models.work_item import RiskLevel, TShirtSize, WorkItemPriority, WorkItemType
from app.schemas.thread_state import CamelModel


class EstimatedEffort(CamelModel):
    t_shirt: TShirtSize = TShirtSize.M
    hours_min: float = 2
    hours_max: float = 8
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)


class PromptBundle(CamelModel):
    """Ready-to-paste prompts for coding agents working the ticket."""

    cursor_prompt: str = ""
    agent_system_prompt: str = ""
    agent_task_prompt: str = ""
    suspected_files: list[str] = Field(default_factory=list)
    tests_to_run: list[str] = Field(default_factory=list)
    commands: list[str] = Field(default_factory=list)


class WorkItemDraft(CamelModel):
    title: str = Field(min_length=1, max_length=200)
    type: WorkItemType = WorkItemType.FEATURE
    structured_description: str = ""
    acceptance_criteria: list[str] = Field(default_factory=list)
    priority: WorkItemPriority = WorkItemPriority.P2
    severity: int = Field(default=3, ge=1, le=5)
    risk_level: RiskLevel = RiskLevel.MEDIUM
    estimated_effort: EstimatedEffort = Field(default_factory=EstimatedEffort)
    prompt_bundle: PromptBundle = Field(default_factory=PromptBundle)
    labels: list[str] = Field(default_factory=list)
