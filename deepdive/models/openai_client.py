"""
OpenAI-Compatible Model Client

Integration with any endpoint speaking the OpenAI chat completions API.
With OPENAI_BASE_URL pointed at a compatible server the same client
drives DeepSeek R1, Llama 3.3 70B, Qwen and friends; without it, the
OpenAI API itself (gpt-4o).

Use Cases:
- Sub-query generation (JSON output)
- Learning extraction from scraped summaries (JSON output)
- Summaries and long-form report writing

Features:
- JSON mode when the caller asks for it
- Token usage taken from the provider's usage block
- Transient errors (rate limit, connection, timeout, 5xx) retried by the base class
"""

from typing import Optional

from openai import (
    AsyncOpenAI,
    APIError,
    APIConnectionError,
    APITimeoutError,
    InternalServerError,
    RateLimitError
)

from deepdive.models.base_client import (
    BaseModelClient,
    Completion,
    ModelConfig,
    ModelProvider
)
from config.settings import settings
from config.logging_config import get_logger

logger = get_logger(__name__)

TRANSIENT_ERRORS = (RateLimitError, APIConnectionError, APITimeoutError, InternalServerError)


class OpenAIClient(BaseModelClient):
    """
    Async client for OpenAI-compatible chat completions.

    Usage:
        >>> client = OpenAIClient(model_name="deepseek-r1-671b")
        >>> response = await client.call(
        ...     "Return three search queries as JSON",
        ...     response_format="json"
        ... )
        >>> print(response.content)
    """

    def __init__(self, config: Optional[ModelConfig] = None, model_name: Optional[str] = None):
        """
        Initialize OpenAI-compatible client.

        Args:
            config: Optional custom configuration
            model_name: Model to use with the default configuration
        """
        if config is None:
            config = ModelConfig(
                provider=ModelProvider.OPENAI,
                model_name=model_name or settings.DEFAULT_MODEL,
                api_key=settings.OPENAI_API_KEY,
                base_url=settings.OPENAI_BASE_URL,
                max_tokens=settings.OPENAI_MAX_TOKENS,
                temperature=settings.OPENAI_TEMPERATURE,
                timeout=settings.OPENAI_TIMEOUT,
                rate_limit=settings.OPENAI_RATE_LIMIT,
                retry_on=TRANSIENT_ERRORS
            )

        super().__init__(config)

        self.client = AsyncOpenAI(
            api_key=config.api_key,
            base_url=config.base_url,
            timeout=config.timeout,
            max_retries=0
        )

        self.logger.info(
            "OpenAI client initialized",
            extra={
                "model": config.model_name,
                "base_url": config.base_url or "default"
            }
        )

    async def _make_api_call(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        **kwargs
    ) -> Completion:
        """
        Make API call with optional JSON mode.

        Args:
            prompt: User message
            system_prompt: System instructions
            **kwargs:
                - response_format: "json" for JSON mode
                - max_tokens: Override default
                - temperature: Override default

        Raises:
            RateLimitError, APIConnectionError, APIError
        """
        messages = [
            {"role": "system", "content": system_prompt or "You are a helpful AI assistant."},
            {"role": "user", "content": prompt}
        ]

        api_params = {
            "model": self.config.model_name,
            "messages": messages,
            "max_tokens": kwargs.get("max_tokens", self.config.max_tokens),
            "temperature": kwargs.get("temperature", self.config.temperature),
        }

        if kwargs.get("response_format") == "json":
            api_params["response_format"] = {"type": "json_object"}

        self.logger.debug(
            "Calling OpenAI-compatible API",
            extra={
                "prompt_length": len(prompt),
                "max_tokens": api_params["max_tokens"],
                "json_mode": "response_format" in api_params
            }
        )

        try:
            response = await self.client.chat.completions.create(**api_params)
        except RateLimitError as e:
            self.logger.warning(
                "OpenAI rate limit exceeded",
                extra={"error": str(e), "rate_limit": self.config.rate_limit}
            )
            raise
        except APIError as e:
            self.logger.warning("OpenAI API error", extra={"error": str(e)})
            raise

        content = response.choices[0].message.content or ""
        usage = getattr(response, "usage", None)

        return Completion(
            text=content,
            prompt_tokens=getattr(usage, "prompt_tokens", 0) or 0,
            completion_tokens=getattr(usage, "completion_tokens", 0) or 0
        )


def create_openai_client(model_name: Optional[str] = None) -> OpenAIClient:
    """
    Create OpenAI-compatible client with default settings.

    Example:
        >>> client = create_openai_client("llama-3.3-70b")
    """
    return OpenAIClient(model_name=model_name)


__all__ = ["OpenAIClient", "create_openai_client", "TRANSIENT_ERRORS"]
