"""
Model Router

Resolves a model identifier to a ready model client.

Routing:
- "claude*" model ids → ClaudeClient (Anthropic messages API)
- everything else    → OpenAIClient (OpenAI-compatible endpoint)

A model whose provider credential is missing resolves to None. Callers
treat None as the explicit "model unavailable" state and fall back to
deterministic output instead of failing.

Architecture:
    model id → provider → credential? → cached client
                               ↓ no
                             None (unavailable)
"""

from typing import Callable, Dict, Any, Optional, Tuple

from deepdive.models.base_client import BaseModelClient, ModelProvider
from deepdive.models.claude_client import ClaudeClient
from deepdive.models.openai_client import OpenAIClient
from config.settings import settings
from config.logging_config import get_logger

logger = get_logger(__name__)

ClientFactory = Callable[[str], BaseModelClient]


def provider_for_model(model_id: str) -> ModelProvider:
    """
    Provider serving a model id.

    Example:
        >>> provider_for_model("claude-3-5-sonnet-latest")
        <ModelProvider.ANTHROPIC: 'anthropic'>
        >>> provider_for_model("deepseek-r1-671b")
        <ModelProvider.OPENAI: 'openai'>
    """
    if model_id.lower().startswith("claude"):
        return ModelProvider.ANTHROPIC
    return ModelProvider.OPENAI


class ModelRouter:
    """
    Model id → client resolution with per-model caching.

    Usage Example:
        >>> router = ModelRouter()
        >>> client = router.resolve("deepseek-r1-671b")
        >>> if client is None:
        ...     print("No OPENAI_API_KEY configured")
        >>> else:
        ...     response = await client.call("Generate search queries...")
    """

    def __init__(
        self,
        factories: Optional[Dict[ModelProvider, ClientFactory]] = None,
        credentials: Optional[Dict[ModelProvider, Optional[str]]] = None
    ):
        """
        Initialize router.

        Args:
            factories: Client constructor per provider (defaults to the SDK clients)
            credentials: API key per provider (defaults to settings)
        """
        self.logger = get_logger(__name__)

        self.factories: Dict[ModelProvider, ClientFactory] = factories or {
            ModelProvider.OPENAI: lambda model_id: OpenAIClient(model_name=model_id),
            ModelProvider.ANTHROPIC: lambda model_id: ClaudeClient(model_name=model_id),
        }
        self.credentials: Dict[ModelProvider, Optional[str]] = credentials if credentials is not None else {
            ModelProvider.OPENAI: settings.OPENAI_API_KEY,
            ModelProvider.ANTHROPIC: settings.ANTHROPIC_API_KEY,
        }

        self.clients: Dict[str, BaseModelClient] = {}
        self.unavailable: Dict[str, str] = {}

        self.logger.info(
            "Model router initialized",
            extra={
                "providers": [p.value for p, key in self.credentials.items() if key]
            }
        )

    def is_available(self, model_id: str) -> bool:
        return bool(self.credentials.get(provider_for_model(model_id)))

    def resolve(self, model_id: Optional[str] = None) -> Optional[BaseModelClient]:
        """
        Client for `model_id` (settings.DEFAULT_MODEL when None).

        Returns:
            Cached client, or None when the provider has no credential
        """
        model_id = model_id or settings.DEFAULT_MODEL

        if model_id in self.clients:
            return self.clients[model_id]

        provider = provider_for_model(model_id)
        if not self.credentials.get(provider):
            if model_id not in self.unavailable:
                self.unavailable[model_id] = f"missing credential for {provider.value}"
                self.logger.warning(
                    "Model unavailable, fallback output will be used",
                    extra={"model": model_id, "provider": provider.value}
                )
            return None

        client = self.factories[provider](model_id)
        self.clients[model_id] = client
        return client

    def token_usage(self) -> Tuple[int, int]:
        """(prompt_tokens, completion_tokens) across every resolved client."""
        prompt = sum(c.config.prompt_tokens for c in self.clients.values())
        completion = sum(c.config.completion_tokens for c in self.clients.values())
        return prompt, completion

    def get_metrics(self) -> Dict[str, Any]:
        """
        Aggregate metrics across resolved clients.

        Returns:
            Dictionary with token totals, per-model metrics and unavailable models
        """
        prompt_tokens, completion_tokens = self.token_usage()
        return {
            "prompt_tokens": prompt_tokens,
            "completion_tokens": completion_tokens,
            "total_tokens": prompt_tokens + completion_tokens,
            "total_calls": sum(c.config.total_calls for c in self.clients.values()),
            "models": {model_id: c.get_metrics() for model_id, c in self.clients.items()},
            "unavailable": dict(self.unavailable)
        }


def create_router() -> ModelRouter:
    """
    Create model router with settings credentials.

    Example:
        >>> router = create_router()
        >>> client = router.resolve("gpt-4o")
    """
    return ModelRouter()


__all__ = [
    "ModelRouter",
    "provider_for_model",
    "create_router",
]
