"""
Claude (Anthropic) Model Client

Integration with Claude through the Anthropic messages API.

Use Cases:
- Any research task when a claude-* model is selected
- Long-form report writing

Features:
- Async messages API
- Token usage from the response usage block
- Transient errors retried by the base class
"""

from typing import Optional

from anthropic import (
    AsyncAnthropic,
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

DEFAULT_CLAUDE_MODEL = "claude-3-5-sonnet-latest"

TRANSIENT_ERRORS = (RateLimitError, APIConnectionError, APITimeoutError, InternalServerError)


class ClaudeClient(BaseModelClient):
    """
    Async Claude client.

    Usage:
        >>> client = ClaudeClient(model_name="claude-3-5-sonnet-latest")
        >>> response = await client.call("Summarize these findings...")
        >>> print(response.content)
    """

    def __init__(self, config: Optional[ModelConfig] = None, model_name: Optional[str] = None):
        """
        Initialize Claude client.

        Args:
            config: Optional custom configuration
            model_name: Model to use with the default configuration
        """
        if config is None:
            config = ModelConfig(
                provider=ModelProvider.ANTHROPIC,
                model_name=model_name or DEFAULT_CLAUDE_MODEL,
                api_key=settings.ANTHROPIC_API_KEY,
                max_tokens=settings.CLAUDE_MAX_TOKENS,
                temperature=settings.CLAUDE_TEMPERATURE,
                timeout=settings.CLAUDE_TIMEOUT,
                rate_limit=settings.CLAUDE_RATE_LIMIT,
                retry_on=TRANSIENT_ERRORS
            )

        super().__init__(config)

        self.client = AsyncAnthropic(
            api_key=config.api_key,
            timeout=config.timeout,
            max_retries=0
        )

        self.logger.info("Claude client initialized", extra={"model": config.model_name})

    async def _make_api_call(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        **kwargs
    ) -> Completion:
        """
        Make API call to Claude.

        Args:
            prompt: User message
            system_prompt: System instructions
            **kwargs:
                - max_tokens: Override default
                - temperature: Override default

        Raises:
            RateLimitError, APIConnectionError, APIError
        """
        max_tokens = kwargs.get("max_tokens", self.config.max_tokens)
        temperature = kwargs.get("temperature", self.config.temperature)

        self.logger.debug(
            "Calling Claude API",
            extra={
                "prompt_length": len(prompt),
                "max_tokens": max_tokens,
                "temperature": temperature
            }
        )

        try:
            response = await self.client.messages.create(
                model=self.config.model_name,
                max_tokens=max_tokens,
                temperature=temperature,
                system=system_prompt or "You are a helpful AI assistant.",
                messages=[{"role": "user", "content": prompt}]
            )
        except RateLimitError as e:
            self.logger.warning(
                "Claude rate limit exceeded",
                extra={"error": str(e), "rate_limit": self.config.rate_limit}
            )
            raise
        except APIError as e:
            self.logger.warning("Claude API error", extra={"error": str(e)})
            raise

        # Claude returns a list of content blocks; only text blocks carry the answer
        content = "".join(
            block.text for block in response.content if getattr(block, "type", "text") == "text"
        )
        usage = getattr(response, "usage", None)

        return Completion(
            text=content,
            prompt_tokens=getattr(usage, "input_tokens", 0) or 0,
            completion_tokens=getattr(usage, "output_tokens", 0) or 0
        )


def create_claude_client(model_name: Optional[str] = None) -> ClaudeClient:
    """Create Claude client with default settings."""
    return ClaudeClient(model_name=model_name)


__all__ = ["ClaudeClient", "create_claude_client", "DEFAULT_CLAUDE_MODEL"]
