"""
Model capability — provider id → LangChain chat model.

The orchestration loop only needs ``invoke_model(provider, prompt)``.
Providers are configured from API keys in the environment; their
LangChain integration packages are imported only when a key is set
(install them with the ``providers`` extra).
"""

from __future__ import annotations

import importlib
import logging
import os
from dataclasses import dataclass, field
from typing import Any

from langchain_core.language_models import BaseLanguageModel

from mcp_gateway.errors import ModelCapabilityFailure

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderSpec:
    display_name: str
    env_key: str
    module: str
    class_name: str
    model: str
    api_key_param: str = "api_key"
    options: dict[str, Any] = field(default_factory=dict)


PROVIDERS: dict[str, ProviderSpec] = {
    "openai": ProviderSpec(
        display_name="OpenAI GPT-4",
        env_key="OPENAI_API_KEY",
        module="langchain_openai",
        class_name="ChatOpenAI",
        model="gpt-4o-mini",
        options={"temperature": 0.7},
    ),
    "anthropic": ProviderSpec(
        display_name="Anthropic Claude",
        env_key="ANTHROPIC_API_KEY",
        module="langchain_anthropic",
        class_name="ChatAnthropic",
        model="claude-3-5-sonnet-latest",
    ),
    "google": ProviderSpec(
        display_name="Google Gemini",
        env_key="GOOGLE_API_KEY",
        module="langchain_google_genai",
        class_name="ChatGoogleGenerativeAI",
        model="gemini-1.5-flash",
        api_key_param="google_api_key",
    ),
}


@dataclass
class ModelReply:
    content: str
    provider: str
    model: str | None = None


DEMO_PROVIDER = "demo"


class ModelRegistry:
    """Holds one LangChain model per configured provider."""

    def __init__(self, models: dict[str, BaseLanguageModel] | None = None):
        self._models: dict[str, BaseLanguageModel] = dict(models or {})

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> "ModelRegistry":
        env = os.environ if environ is None else environ
        registry = cls()
        for provider, spec in PROVIDERS.items():
            api_key = env.get(spec.env_key)
            if not api_key:
                logger.info(f"{spec.env_key} not set, skipping provider '{provider}'")
                continue
            try:
                module = importlib.import_module(spec.module)
            except ImportError:
                logger.warning(
                    f"{spec.env_key} is set but {spec.module} is not installed; "
                    f"install the 'providers' extra to use '{provider}'"
                )
                continue
            model_cls = getattr(module, spec.class_name)
            registry.register(
                provider,
                model_cls(model=spec.model, **{spec.api_key_param: api_key}, **spec.options),
            )
        logger.info(f"Configured model providers: {registry.providers()}")
        return registry

    def register(self, provider: str, model: BaseLanguageModel) -> None:
        self._models[provider] = model
        logger.info(f"Registered model provider: {provider} ({type(model).__name__})")

    def providers(self) -> list[str]:
        return list(self._models)

    def __contains__(self, provider: str) -> bool:
        return provider in self._models

    def available(self) -> list[dict[str, str]]:
        """Provider entries for the UI; a single demo entry when none are configured."""
        if not self._models:
            return [{"id": DEMO_PROVIDER, "name": "Demo Mode", "status": "demo"}]
        return [
            {
                "id": provider,
                "name": PROVIDERS[provider].display_name if provider in PROVIDERS else provider,
                "status": "available",
            }
            for provider in self._models
        ]

    def get(self, provider: str) -> BaseLanguageModel:
        model = self._models.get(provider)
        if model is None:
            raise ModelCapabilityFailure(provider, "LLM provider not configured or API key missing")
        return model

    async def invoke_model(self, provider: str, prompt: str) -> ModelReply:
        """Single awaited model call. Any provider error becomes ModelCapabilityFailure."""
        model = self.get(provider)
        try:
            output = await model.ainvoke(prompt)
        except Exception as e:
            raise ModelCapabilityFailure(provider, f"model call failed: {e}") from e

        return ModelReply(
            content=_message_text(output),
            provider=provider,
            model=getattr(model, "model_name", None) or getattr(model, "model", None),
        )


def _message_text(output: Any) -> str:
    content = getattr(output, "content", output)
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        # content blocks, e.g. [{"type": "text", "text": "..."}]
        parts = []
        for block in content:
            if isinstance(block, str):
                parts.append(block)
            elif isinstance(block, dict) and block.get("type") == "text":
                parts.append(block.get("text", ""))
        return "".join(parts)
    return str(content)
