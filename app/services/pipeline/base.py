"""Base class for pipeline steps backed by a structured LLM completion.

Subclasses define prompts and validation; the base handles the call
through ``CompletionClient.complete_structured``.
"""

from abc import ABC, abstractmethod
from typing import Any, Generic, TypeVar

from app.services.llm.client import CompletionClient, CompletionFailure, CompletionSuccess

TInput = TypeVar("TInput")
TOutput = TypeVar("TOutput")


class StructuredLlmStep(ABC, Generic[TInput, TOutput]):
    """One LLM-backed step producing a validated domain object."""

    # Override in subclasses
    temperature: float = 0.2
    max_tokens: int = 2048
    max_retries: int = 1

    def __init__(self, client: CompletionClient):
        self.client = client

    @abstractmethod
    def get_system_prompt(self) -> str:
        """Return the system prompt for this step."""
        ...

    @abstractmethod
    def format_input(self, input_data: TInput) -> str:
        """Convert typed input to the user prompt."""
        ...

    @abstractmethod
    def validate(self, raw: Any) -> TOutput:
        """Turn parsed JSON into the output type. Raises ValueError when unusable."""
        ...

    async def complete(
        self, input_data: TInput
    ) -> CompletionSuccess[TOutput] | CompletionFailure:
        return await self.client.complete_structured(
            self.get_system_prompt(),
            self.format_input(input_data),
            self.validate,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            max_retries=self.max_retries,
        )
