"""
OpenAI-compatible chat completion client with structured-output retries.

Works against any endpoint exposing ``POST {base_url}/chat/completions``:
hosted APIs, vLLM, LM Studio or a local Ollama. Two layers:

- ``chat_completion``: one request. Transport failures raise
  ``LlmUnavailableError`` immediately. 429/502/503/504 responses are retried
  with exponential backoff. A per-client circuit breaker fails fast after
  repeated failures.
- ``complete_structured``: asks for JSON, validates it, salvages malformed
  output, and re-asks with a corrective message a bounded number of times.
  Always returns a ``CompletionSuccess`` or ``CompletionFailure``.
"""

import asyncio
import json
import logging
import random
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

import httpx

from app.config import Settings
from app.services.llm.exceptions import LlmRequestError, LlmUnavailableError
from app.services.llm.http_client import get_llm_http_client
from app.services.llm.json_salvage import salvage

logger = logging.getLogger(__name__)

T = TypeVar("T")

# ---------------------------------------------------------------------------
# Retry / breaker configuration
# ---------------------------------------------------------------------------
RETRYABLE_STATUSES = frozenset({429, 502, 503, 504})
MAX_STATUS_ATTEMPTS = 3
RETRY_BASE_DELAY = 1.0
RETRY_MAX_JITTER = 0.5

CIRCUIT_FAILURE_THRESHOLD = 5
CIRCUIT_RESET_SECONDS = 30.0

CORRECTIVE_INSTRUCTION = (
    "Your previous response was not valid JSON. Please respond with ONLY a valid "
    "JSON object, no markdown, no explanation, just the JSON."
)

RAW_LOG_SNIPPET = 500


@dataclass
class CompletionSuccess(Generic[T]):
    """Validated structured output."""

    data: T
    raw_content: str
    attempts: int
    repaired: bool = False

    @property
    def ok(self) -> bool:
        return True


@dataclass
class CompletionFailure:
    """Structured completion that could not be obtained.

    kind is "network" (endpoint unreachable), "http" (non-retryable status)
    or "invalid_output" (model kept answering with unusable JSON).
    """

    error: str
    kind: str
    endpoint: str
    raw_content: str | None = None
    attempts: int = 0

    @property
    def ok(self) -> bool:
        return False


class CircuitBreaker:
    """Consecutive-failure breaker with a single half-open probe."""

    def __init__(
        self,
        threshold: int = CIRCUIT_FAILURE_THRESHOLD,
        reset_seconds: float = CIRCUIT_RESET_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.threshold = threshold
        self.reset_seconds = reset_seconds
        self._clock = clock
        self.failures = 0
        self.opened_at: float | None = None
        self._probe_in_flight = False

    @property
    def is_open(self) -> bool:
        return self.opened_at is not None

    def allow(self) -> bool:
        if self.opened_at is None:
            return True
        if self._clock() - self.opened_at < self.reset_seconds:
            return False
        # Half-open: let exactly one request through
        if self._probe_in_flight:
            return False
        self._probe_in_flight = True
        return True

    def record_success(self) -> None:
        self.failures = 0
        self.opened_at = None
        self._probe_in_flight = False

    def record_failure(self) -> None:
        self.failures += 1
        self._probe_in_flight = False
        if self.failures >= self.threshold:
            self.opened_at = self._clock()


@dataclass
class CorrectiveConversation:
    """Message history for one structured completion.

    Starts as [system, user]; every failed attempt appends the raw assistant
    reply plus a corrective user turn. Bounded at 2 + 2 * max_retries messages.
    """

    system_prompt: str
    user_prompt: str
    max_retries: int
    attempts: int = 0
    messages: list[dict[str, str]] = field(init=False)

    def __post_init__(self) -> None:
        self.messages = [
            {"role": "system", "content": self.system_prompt},
            {"role": "user", "content": self.user_prompt},
        ]

    @property
    def max_messages(self) -> int:
        return 2 + 2 * self.max_retries

    @property
    def can_retry(self) -> bool:
        return self.attempts <= self.max_retries and len(self.messages) < self.max_messages

    def start_attempt(self) -> int:
        self.attempts += 1
        return self.attempts

    def add_correction(self, raw_content: str) -> None:
        if not self.can_retry:
            raise RuntimeError("Corrective retry budget exhausted")
        self.messages.append({"role": "assistant", "content": raw_content})
        self.messages.append({"role": "user", "content": CORRECTIVE_INSTRUCTION})


def _parse_validated(raw: str, validate: Callable[[Any], T]) -> tuple[T | None, bool, str | None]:
    """Strict parse, then salvage. Returns (data, repaired, error)."""
    try:
        return validate(json.loads(raw)), False, None
    except (ValueError, TypeError, ArithmeticError):
        pass

    try:
        return validate(json.loads(salvage(raw))), True, None
    except (ValueError, TypeError, ArithmeticError) as e:
        return None, False, str(e)


class CompletionClient:
    """Client for one OpenAI-compatible chat completion endpoint."""

    def __init__(
        self,
        base_url: str,
        model: str,
        api_key: str = "",
        timeout: float = 120.0,
        http_client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        breaker: CircuitBreaker | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.api_key = api_key
        self.timeout = timeout
        self._http = http_client
        self._sleep = sleep
        self._clock = clock
        self.breaker = breaker or CircuitBreaker(clock=clock)

    @classmethod
    def from_settings(cls, config: Settings) -> "CompletionClient":
        return cls(
            base_url=config.effective_llm_base_url,
            model=config.effective_llm_model,
            api_key=config.effective_llm_api_key,
            timeout=config.llm_request_timeout_seconds,
        )

    @property
    def endpoint(self) -> str:
        """Endpoint identity used in logs and failures."""
        return f"{self.base_url} ({self.model})"

    @property
    def http(self) -> httpx.AsyncClient:
        return self._http or get_llm_http_client()

    async def chat_completion(
        self,
        messages: list[dict[str, str]],
        *,
        temperature: float = 0.2,
        max_tokens: int = 2048,
    ) -> str:
        """
        Send one chat completion request and return the assistant content.

        Raises:
            LlmUnavailableError: Endpoint unreachable, timed out, or circuit open
            LlmRequestError: Non-success status (after retries for 429/502/503/504)
        """
        if not self.breaker.allow():
            raise LlmUnavailableError(
                f"LLM circuit open after {self.breaker.failures} consecutive failures "
                f"({self.endpoint})",
                endpoint=self.endpoint,
            )

        url = f"{self.base_url}/chat/completions"
        payload = {
            "model": self.model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
            "stream": False,
        }
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        started = self._clock()
        response: httpx.Response | None = None
        for attempt in range(MAX_STATUS_ATTEMPTS):
            try:
                response = await self.http.post(
                    url, json=payload, headers=headers, timeout=self.timeout
                )
            except httpx.TransportError as e:
                self.breaker.record_failure()
                raise LlmUnavailableError(
                    f"LLM endpoint unreachable: {type(e).__name__} ({self.endpoint})",
                    endpoint=self.endpoint,
                ) from e

            if response.status_code in RETRYABLE_STATUSES and attempt < MAX_STATUS_ATTEMPTS - 1:
                delay = RETRY_BASE_DELAY * (2**attempt) + random.uniform(0, RETRY_MAX_JITTER)
                logger.warning(
                    f"[llm] {response.status_code} from {self.endpoint} "
                    f"(attempt {attempt + 1}/{MAX_STATUS_ATTEMPTS}), retrying in {delay:.1f}s"
                )
                await self._sleep(delay)
                continue
            break

        assert response is not None
        if not response.is_success:
            if response.status_code in RETRYABLE_STATUSES or response.status_code >= 500:
                self.breaker.record_failure()
            raise LlmRequestError(
                f"LLM request failed with status {response.status_code} ({self.endpoint})",
                endpoint=self.endpoint,
                status_code=response.status_code,
                body=response.text[:RAW_LOG_SNIPPET],
            )

        try:
            data = response.json()
            content = data["choices"][0]["message"]["content"] or ""
        except (ValueError, KeyError, IndexError, TypeError) as e:
            self.breaker.record_failure()
            raise LlmRequestError(
                f"Malformed completion response ({self.endpoint})",
                endpoint=self.endpoint,
                status_code=response.status_code,
                body=response.text[:RAW_LOG_SNIPPET],
            ) from e

        self.breaker.record_success()
        usage = data.get("usage") or {}
        elapsed_ms = int((self._clock() - started) * 1000)
        logger.info(
            f"[llm] {self.model} completion in {elapsed_ms}ms "
            f"(prompt={usage.get('prompt_tokens', '?')}, "
            f"completion={usage.get('completion_tokens', '?')} tokens)"
        )
        return content

    async def complete_structured(
        self,
        system_prompt: str,
        user_prompt: str,
        validate: Callable[[Any], T],
        *,
        temperature: float = 0.2,
        max_tokens: int = 2048,
        max_retries: int = 1,
    ) -> CompletionSuccess[T] | CompletionFailure:
        """
        Request JSON output and return it validated.

        Each attempt tries a strict parse + validate, then a salvage + parse +
        validate. When both fail and retries remain, the raw reply and a
        corrective instruction are appended and the request is resent.
        Network failures return immediately without retrying.

        Args:
            system_prompt: System instructions (should demand JSON only)
            user_prompt: User turn content
            validate: Turns parsed JSON into the domain type; raises ValueError
                (or TypeError) when the value is unusable
            temperature: Sampling temperature
            max_tokens: Completion token limit
            max_retries: Corrective retries after the first attempt

        Returns:
            CompletionSuccess with validated data, or CompletionFailure
        """
        conversation = CorrectiveConversation(system_prompt, user_prompt, max_retries)
        raw: str | None = None
        last_error = "no attempt made"

        while True:
            attempt = conversation.start_attempt()
            try:
                raw = await self.chat_completion(
                    conversation.messages, temperature=temperature, max_tokens=max_tokens
                )
            except LlmUnavailableError as e:
                logger.error(f"[llm] {e.message}")
                return CompletionFailure(
                    error=e.message,
                    kind="network",
                    endpoint=self.endpoint,
                    raw_content=raw,
                    attempts=attempt,
                )
            except LlmRequestError as e:
                logger.error(f"[llm] {e.message}: {e.body or ''}")
                return CompletionFailure(
                    error=e.message,
                    kind="http",
                    endpoint=self.endpoint,
                    raw_content=raw,
                    attempts=attempt,
                )

            data, repaired, error = _parse_validated(raw, validate)
            if error is None:
                if repaired:
                    logger.info(f"[llm] Salvaged malformed JSON on attempt {attempt}")
                return CompletionSuccess(
                    data=data,  # type: ignore[arg-type]
                    raw_content=raw,
                    attempts=attempt,
                    repaired=repaired,
                )

            last_error = error
            logger.warning(
                f"[llm] Invalid structured output on attempt {attempt}/{max_retries + 1}: "
                f"{error}. Raw: {raw[:RAW_LOG_SNIPPET]!r}"
            )
            if not conversation.can_retry:
                break
            conversation.add_correction(raw)

        return CompletionFailure(
            error=f"Invalid structured output after {conversation.attempts} attempt(s): {last_error}",
            kind="invalid_output",
            endpoint=self.endpoint,
            raw_content=raw,
            attempts=conversation.attempts,
        )
