from __future__ import annotations

from config.settings import settings
from deepdive.models.base_client import ModelProvider
from deepdive.models.router import ModelRouter, provider_for_model

from conftest import FakeModelClient


def make_router(openai_key="sk-test", anthropic_key=None):
    built = []

    def factory(model_id):
        client = FakeModelClient()
        client.model_id = model_id
        built.append(client)
        return client

    router = ModelRouter(
        factories={ModelProvider.OPENAI: factory, ModelProvider.ANTHROPIC: factory},
        credentials={ModelProvider.OPENAI: openai_key, ModelProvider.ANTHROPIC: anthropic_key},
    )
    return router, built


def test_provider_for_model():
    assert provider_for_model("claude-3-5-sonnet-latest") is ModelProvider.ANTHROPIC
    assert provider_for_model("Claude-3-opus") is ModelProvider.ANTHROPIC
    assert provider_for_model("deepseek-r1-671b") is ModelProvider.OPENAI
    assert provider_for_model("gpt-4o") is ModelProvider.OPENAI


def test_resolve_caches_per_model():
    router, built = make_router()

    first = router.resolve("gpt-4o")
    again = router.resolve("gpt-4o")
    other = router.resolve("llama-3.3-70b")

    assert first is again
    assert other is not first
    assert [c.model_id for c in built] == ["gpt-4o", "llama-3.3-70b"]


def test_resolve_defaults_to_configured_model():
    router, built = make_router(anthropic_key="sk-ant")

    client = router.resolve()

    assert client.model_id == settings.DEFAULT_MODEL


def test_missing_credential_is_unavailable():
    router, built = make_router(anthropic_key=None)

    assert router.resolve("claude-3-5-sonnet-latest") is None
    assert not router.is_available("claude-3-5-sonnet-latest")
    assert router.is_available("gpt-4o")
    assert "claude-3-5-sonnet-latest" in router.unavailable
    assert built == []


def test_token_usage_sums_resolved_clients():
    router, _ = make_router(anthropic_key="sk-ant")
    router.resolve("gpt-4o").config.prompt_tokens = 100
    router.resolve("claude-3-5-sonnet-latest").config.completion_tokens = 40

    assert router.token_usage() == (100, 40)
