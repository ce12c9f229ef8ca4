"""
Base Model Client

Shared call path for every language-model backend. A subclass only
implements _make_api_call(); everything around it lives here:

    call() ──► circuit breaker ──► rate gate ──► tenacity retries ──► _make_api_call()
                 (refuse)          (wait)        (transient errors)

Design Decisions:
- Async end to end: the research tree issues many calls concurrently
- Token usage is accumulated on the client config, so a run can report
  how many prompt/completion tokens it spent
- An open breaker raises ModelUnavailableError; the extraction layer
  treats that like any other failure and uses its fallback
"""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple, Type

from tenacity import (
    AsyncRetrying,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_sleep_log
)

from config.logging_config import get_logger
from deepdive.search.rate_limiter import RateGate

logger = get_logger(__name__)


class ModelProvider(str, Enum):
    """Backends a model id can resolve to"""
    OPENAI = "openai"        # any OpenAI-compatible server (DeepSeek, Llama, GPT-4o)
    ANTHROPIC = "anthropic"


class TaskType(str, Enum):
    """What a call is for; recorded in the response metadata"""
    QUERY_GENERATION = "query_generation"
    RESULT_PROCESSING = "result_processing"
    SUMMARIZATION = "summarization"
    REPORT_WRITING = "report_writing"
    FEEDBACK = "feedback"


class ModelUnavailableError(Exception):
    """The client's circuit breaker is open."""


# ============================================================================
# CONFIGURATION & RESPONSES
# ============================================================================

@dataclass
class ModelConfig:
    """
    Static settings of a client plus its running token counters.

    Attributes:
        provider: Backend serving the model
        model_name: Model id sent to the provider
        api_key: Provider credential
        base_url: OpenAI-compatible server (None = provider default)
        max_tokens: Completion token ceiling per call
        temperature: Sampling temperature
        timeout: Seconds per request
        max_retries: Attempts per call, first one included
        rate_limit: Calls admitted per 60 s
        retry_on: Exceptions worth another attempt
    """
    provider: ModelProvider
    model_name: str
    api_key: Optional[str]
    base_url: Optional[str] = None
    max_tokens: int = 4000
    temperature: float = 0.3
    timeout: int = 120
    max_retries: int = 3
    rate_limit: int = 60
    retry_on: Tuple[Type[BaseException], ...] = (Exception,)

    total_calls: int = field(default=0, init=False)
    total_errors: int = field(default=0, init=False)
    prompt_tokens: int = field(default=0, init=False)
    completion_tokens: int = field(default=0, init=False)


@dataclass
class Completion:
    """What a backend returns from one API call."""
    text: str
    prompt_tokens: int = 0
    completion_tokens: int = 0


@dataclass
class ModelResponse:
    """Answer of call(): the text, who produced it, what it cost."""
    content: str
    provider: ModelProvider
    model_name: str
    prompt_tokens: int
    completion_tokens: int
    latency_ms: float
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def tokens_used(self) -> int:
        return self.prompt_tokens + self.completion_tokens

    def to_dict(self) -> Dict[str, Any]:
        """Log-friendly view (content omitted)."""
        return {
            "provider": self.provider.value,
            "model": self.model_name,
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "latency_ms": round(self.latency_ms, 1),
            **self.metadata
        }


# ============================================================================
# CIRCUIT BREAKER
# ============================================================================

class CircuitBreaker:
    """
    Opens when more than `error_rate` of over `min_calls` calls failed;
    lets calls through again `reset_seconds` after the last failure.
    """

    def __init__(
        self,
        min_calls: int = 10,
        error_rate: float = 0.5,
        reset_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic
    ):
        self.min_calls = min_calls
        self.error_rate = error_rate
        self.reset_seconds = reset_seconds
        self._clock = clock
        self.is_open = False
        self._last_failure: Optional[float] = None

    def allow(self) -> bool:
        if self.is_open and self._last_failure is not None:
            if self._clock() - self._last_failure > self.reset_seconds:
                self.is_open = False
        return not self.is_open

    def record_failure(self, calls: int, errors: int) -> bool:
        """Note a failure; True if this one opened the breaker."""
        self._last_failure = self._clock()
        if not self.is_open and calls > self.min_calls and errors / calls > self.error_rate:
            self.is_open = True
            return True
        return False


# ============================================================================
# BASE CLIENT
# ============================================================================

class BaseModelClient(ABC):
    """
    Template for model backends.

    Subclasses implement:
        async def _make_api_call(self, prompt, system_prompt=None, **kwargs) -> Completion
    """

    def __init__(self, config: ModelConfig, rate_gate: Optional[RateGate] = None):
        """
        Args:
            config: Model settings and token counters
            rate_gate: Admission gate (config.rate_limit calls per 60 s if None)
        """
        self.config = config
        self.logger = get_logger(f"{__name__}.{config.provider.value}")
        self.rate_gate = rate_gate or RateGate(capacity=config.rate_limit, window_seconds=60.0)
        self.breaker = CircuitBreaker()

        self.logger.info(
            "Model client ready",
            extra={"provider": config.provider.value, "model": config.model_name, "rate_limit": config.rate_limit}
        )

    @property
    def model_name(self) -> str:
        return self.config.model_name

    @abstractmethod
    async def _make_api_call(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        **kwargs
    ) -> Completion:
        """One request to the provider. Raise on any API error."""

    async def call(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        task_type: Optional[TaskType] = None,
        **kwargs
    ) -> ModelResponse:
        """
        Prompt the model.

        Keyword arguments (response_format="json", max_tokens,
        temperature) are passed through to the backend.

        Raises:
            ModelUnavailableError: The circuit breaker is open
            Exception: The backend's last error once retries are spent

        Example:
            >>> response = await client.call("List three search queries", task_type=TaskType.QUERY_GENERATION)
            >>> response.content, response.tokens_used
        """
        if not self.breaker.allow():
            raise ModelUnavailableError(
                f"{self.config.provider.value}:{self.config.model_name} is failing, circuit open"
            )

        await self.rate_gate.acquire()

        self.config.total_calls += 1
        started = time.time()

        try:
            completion = await self._call_with_retry(prompt, system_prompt, **kwargs)
        except Exception as e:
            self._record_failure(e, task_type)
            raise

        self.config.prompt_tokens += completion.prompt_tokens
        self.config.completion_tokens += completion.completion_tokens

        response = ModelResponse(
            content=completion.text,
            provider=self.config.provider,
            model_name=self.config.model_name,
            prompt_tokens=completion.prompt_tokens,
            completion_tokens=completion.completion_tokens,
            latency_ms=(time.time() - started) * 1000,
            metadata={"task_type": task_type.value if task_type else None}
        )

        self.logger.info("Model call completed", extra=response.to_dict())
        return response

    async def _call_with_retry(self, prompt: str, system_prompt: Optional[str], **kwargs) -> Completion:
        # Backoff 2s, 4s, 8s, capped at 10s
        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(self.config.retry_on),
            stop=stop_after_attempt(self.config.max_retries),
            wait=wait_exponential(multiplier=1, min=2, max=10),
            before_sleep=before_sleep_log(logging.getLogger(__name__), logging.WARNING),
            reraise=True
        ):
            with attempt:
                return await self._make_api_call(prompt, system_prompt, **kwargs)

    def _record_failure(self, error: Exception, task_type: Optional[TaskType]) -> None:
        self.config.total_errors += 1

        if self.breaker.record_failure(self.config.total_calls, self.config.total_errors):
            self.logger.error(
                "Circuit breaker opened",
                extra={
                    "model": self.config.model_name,
                    "total_calls": self.config.total_calls,
                    "total_errors": self.config.total_errors
                }
            )

        self.logger.error(
            "Model call failed",
            extra={
                "model": self.config.model_name,
                "task_type": task_type.value if task_type else None,
                "error": str(error),
                "error_type": type(error).__name__
            }
        )

    def get_metrics(self) -> Dict[str, Any]:
        return {
            "provider": self.config.provider.value,
            "model": self.config.model_name,
            "total_calls": self.config.total_calls,
            "total_errors": self.config.total_errors,
            "prompt_tokens": self.config.prompt_tokens,
            "completion_tokens": self.config.completion_tokens,
            "circuit_open": self.breaker.is_open
        }


__all__ = [
    "BaseModelClient",
    "CircuitBreaker",
    "ModelConfig",
    "ModelResponse",
    "ModelProvider",
    "ModelUnavailableError",
    "Completion",
    "TaskType"
]
