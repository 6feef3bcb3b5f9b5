"""
Tests for the model capability registry.
"""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from langchain_core.language_models import FakeListChatModel
from langchain_core.messages import AIMessage

from mcp_gateway.errors import ModelCapabilityFailure
from mcp_gateway.models import PROVIDERS, ModelRegistry


@pytest.mark.asyncio
async def test_invoke_model_returns_text():
    models = ModelRegistry({"fake": FakeListChatModel(responses=["first", "second"])})

    reply = await models.invoke_model("fake", "hello")

    assert reply.content == "first"
    assert reply.provider == "fake"


@pytest.mark.asyncio
async def test_unconfigured_provider_fails():
    models = ModelRegistry()

    with pytest.raises(ModelCapabilityFailure) as exc_info:
        await models.invoke_model("openai", "hello")

    assert exc_info.value.provider == "openai"
    assert "not configured" in str(exc_info.value)


@pytest.mark.asyncio
async def test_provider_error_is_wrapped():
    model = MagicMock()
    model.ainvoke = AsyncMock(side_effect=RuntimeError("429 Too Many Requests"))
    models = ModelRegistry({"openai": model})

    with pytest.raises(ModelCapabilityFailure, match="429 Too Many Requests"):
        await models.invoke_model("openai", "hello")


@pytest.mark.asyncio
async def test_content_blocks_are_joined():
    model = MagicMock()
    model.ainvoke = AsyncMock(return_value=AIMessage(content=[
        {"type": "text", "text": "Sunny "},
        {"type": "tool_use", "id": "x", "name": "n", "input": {}},
        {"type": "text", "text": "today."},
    ]))
    models = ModelRegistry({"anthropic": model})

    reply = await models.invoke_model("anthropic", "hello")

    assert reply.content == "Sunny today."


def test_from_env_without_keys_falls_back_to_demo():
    models = ModelRegistry.from_env({})
    assert models.providers() == []
    assert models.available() == [{"id": "demo", "name": "Demo Mode", "status": "demo"}]


def test_from_env_skips_providers_whose_package_is_missing(monkeypatch):
    def missing(name):
        raise ImportError(f"No module named '{name}'")

    monkeypatch.setattr("mcp_gateway.models.importlib", SimpleNamespace(import_module=missing))

    models = ModelRegistry.from_env({"OPENAI_API_KEY": "sk-test"})

    assert "openai" not in models


def test_from_env_builds_configured_provider(monkeypatch):
    created = {}

    class ChatStub:
        def __init__(self, **kwargs):
            created.update(kwargs)

    monkeypatch.setattr(
        "mcp_gateway.models.importlib",
        SimpleNamespace(import_module=lambda name: SimpleNamespace(**{PROVIDERS["google"].class_name: ChatStub})),
    )

    models = ModelRegistry.from_env({"GOOGLE_API_KEY": "g-key"})

    assert models.providers() == ["google"]
    assert created == {"model": "gemini-1.5-flash", "google_api_key": "g-key"}


def test_available_lists_display_names():
    models = ModelRegistry({
        "anthropic": FakeListChatModel(responses=["x"]),
        "custom": FakeListChatModel(responses=["y"]),
    })
    assert models.available() == [
        {"id": "anthropic", "name": "Anthropic Claude", "status": "available"},
        {"id": "custom", "name": "custom", "status": "available"},
    ]
