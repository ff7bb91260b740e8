"""
Provider Routing for Multi-Provider Tool Calling

Supports provider selection by enum name or by model ID prefix:
- openai/gpt-4o
- anthropic/claude-sonnet-4
- google/gemini-2.5-flash

Provides provider-specific tool schema translation and per-model quirk rules
(e.g. reasoning models that accept neither temperature nor tools).
"""
from __future__ import annotations

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .provider_ir import ToolDefinition


PROVIDERS = ("openai", "anthropic", "google")


@dataclass(frozen=True)
class ModelQuirk:
    """Request-shaping flags for a family of models matched by regex."""

    pattern: str = ""
    supports_temperature: bool = True
    supports_tools: bool = True
    max_tokens_field: str = "max_tokens"

    def matches(self, model: str) -> bool:
        return bool(self.pattern) and re.search(self.pattern, model or "") is not None


DEFAULT_QUIRK = ModelQuirk()


@dataclass
class ProviderDescriptor:
    """Describes how to communicate with a specific provider runtime."""

    provider_id: str
    runtime_id: str
    tool_schema_format: str
    base_url: Optional[str]
    api_key_env: str
    default_headers: Dict[str, str] = field(default_factory=dict)
    quirks: List[ModelQuirk] = field(default_factory=list)

    def quirks_for(self, model: str) -> ModelQuirk:
        for quirk in self.quirks:
            if quirk.matches(model):
                return quirk
        return DEFAULT_QUIRK


class ProviderConfig:
    """Configuration for a specific provider"""

    def __init__(
        self,
        provider_id: str,
        tool_schema_format: str = "openai",  # openai, anthropic, google
        base_url: Optional[str] = None,
        api_key_env: str = "OPENAI_API_KEY",
        default_headers: Optional[Dict[str, str]] = None,
        runtime_id: str = "openai_chat",
        quirks: Optional[List[ModelQuirk]] = None,
    ):
        self.provider_id = provider_id
        self.tool_schema_format = tool_schema_format
        self.base_url = base_url
        self.api_key_env = api_key_env
        self.default_headers = default_headers or {}
        self.runtime_id = runtime_id
        self.quirks = list(quirks or [])

    def to_descriptor(self, base_url_override: Optional[str] = None) -> ProviderDescriptor:
        """Convert config to runtime descriptor."""

        return ProviderDescriptor(
            provider_id=self.provider_id,
            runtime_id=self.runtime_id,
            tool_schema_format=self.tool_schema_format,
            base_url=base_url_override or self.base_url,
            api_key_env=self.api_key_env,
            default_headers=dict(self.default_headers or {}),
            quirks=list(self.quirks),
        )


class ToolSchemaTranslator(ABC):
    """Abstract base class for provider-specific tool schema translation"""

    @abstractmethod
    def translate_tool_schema(self, tool_def: ToolDefinition) -> Dict[str, Any]:
        """Translate internal tool definition to provider-specific format"""
        pass

    def translate_tools(self, tools: List[ToolDefinition]) -> List[Dict[str, Any]]:
        return [self.translate_tool_schema(tool) for tool in tools]


class OpenAIToolTranslator(ToolSchemaTranslator):
    """OpenAI-compatible tool schema translator"""

    def translate_tool_schema(self, tool_def: ToolDefinition) -> Dict[str, Any]:
        """Convert to OpenAI function calling format"""
        return {
            "type": "function",
            "function": {
                "name": tool_def.name,
                "description": tool_def.description,
                "parameters": dict(tool_def.parameters),
            },
        }


class AnthropicToolTranslator(ToolSchemaTranslator):
    """Anthropic-compatible tool schema translator"""

    def translate_tool_schema(self, tool_def: ToolDefinition) -> Dict[str, Any]:
        """Convert to Anthropic tool format"""
        return {
            "name": tool_def.name,
            "description": tool_def.description,
            "input_schema": dict(tool_def.parameters),
        }


# Gemini accepts an OpenAPI subset of JSON schema; anything else is rejected.
_GOOGLE_SCHEMA_KEYS = {"type", "description", "properties", "required", "items", "enum", "format", "nullable"}


def _google_schema(schema: Any) -> Any:
    if not isinstance(schema, dict):
        return schema
    out: Dict[str, Any] = {}
    for key, value in schema.items():
        if key not in _GOOGLE_SCHEMA_KEYS:
            continue
        if key == "properties" and isinstance(value, dict):
            out[key] = {name: _google_schema(sub) for name, sub in value.items()}
        elif key == "items":
            out[key] = _google_schema(value)
        else:
            out[key] = value
    return out


class GoogleToolTranslator(ToolSchemaTranslator):
    """Gemini function-declaration translator"""

    def translate_tool_schema(self, tool_def: ToolDefinition) -> Dict[str, Any]:
        return {
            "name": tool_def.name,
            "description": tool_def.description,
            "parameters": _google_schema(tool_def.parameters),
        }

    def translate_tools(self, tools: List[ToolDefinition]) -> List[Dict[str, Any]]:
        if not tools:
            return []
        return [{"functionDeclarations": [self.translate_tool_schema(t) for t in tools]}]


# Models offered per provider in the project picker.
MODEL_CATALOG: Dict[str, List[Dict[str, Any]]] = {
    "openai": [
        {"id": "gpt-4o", "name": "GPT-4o", "context": 128000},
        {"id": "gpt-4o-mini", "name": "GPT-4o Mini", "context": 128000},
        {"id": "gpt-4-turbo", "name": "GPT-4 Turbo", "context": 128000},
        {"id": "gpt-4", "name": "GPT-4", "context": 8192},
        {"id": "o1", "name": "o1 (Reasoning)", "context": 128000},
        {"id": "o1-mini", "name": "o1 Mini", "context": 128000},
        {"id": "o1-preview", "name": "o1 Preview", "context": 128000},
        {"id": "gpt-3.5-turbo", "name": "GPT-3.5 Turbo", "context": 16384},
    ],
    "anthropic": [
        {"id": "claude-sonnet-4-5", "name": "Claude Sonnet 4.5", "context": 200000},
        {"id": "claude-sonnet-4", "name": "Claude Sonnet 4", "context": 200000},
        {"id": "claude-opus-4", "name": "Claude Opus 4", "context": 200000},
        {"id": "claude-3-5-sonnet-20241022", "name": "Claude 3.5 Sonnet", "context": 200000},
        {"id": "claude-3-5-haiku-20241022", "name": "Claude 3.5 Haiku", "context": 200000},
    ],
    "google": [
        {"id": "gemini-2.5-pro", "name": "Gemini 2.5 Pro", "context": 1000000},
        {"id": "gemini-2.5-flash", "name": "Gemini 2.5 Flash", "context": 1000000},
        {"id": "gemini-2.0-flash", "name": "Gemini 2.0 Flash", "context": 1000000},
        {"id": "gemini-1.5-pro", "name": "Gemini 1.5 Pro", "context": 1000000},
        {"id": "gemini-1.5-flash", "name": "Gemini 1.5 Flash", "context": 1000000},
    ],
}


def available_models(provider: str) -> List[Dict[str, Any]]:
    if provider not in MODEL_CATALOG:
        raise ValueError(f"Unknown provider: {provider}")
    return [dict(entry) for entry in MODEL_CATALOG[provider]]


class ProviderRouter:
    """Routes provider/model pairs to runtime descriptors and tool schema translators"""

    def __init__(self):
        self.providers = {
            "openai": ProviderConfig(
                provider_id="openai",
                tool_schema_format="openai",
                api_key_env="OPENAI_API_KEY",
                runtime_id="openai_chat",
                quirks=[
                    ModelQuirk(
                        pattern=r"^o1",
                        supports_temperature=False,
                        supports_tools=False,
                        max_tokens_field="max_completion_tokens",
                    ),
                ],
            ),
            "anthropic": ProviderConfig(
                provider_id="anthropic",
                tool_schema_format="anthropic",
                api_key_env="ANTHROPIC_API_KEY",
                runtime_id="anthropic_messages",
            ),
            "google": ProviderConfig(
                provider_id="google",
                tool_schema_format="google",
                base_url="https://generativelanguage.googleapis.com/v1beta",
                api_key_env="GEMINI_API_KEY",
                runtime_id="google_generative",
            ),
            "mock": ProviderConfig(
                provider_id="mock",
                tool_schema_format="openai",
                api_key_env="MOCK_API_KEY",
                runtime_id="mock_chat",
            ),
        }

        self.translators = {
            "openai": OpenAIToolTranslator(),
            "anthropic": AnthropicToolTranslator(),
            "google": GoogleToolTranslator(),
        }

    def parse_model_id(self, model_id: str) -> Tuple[str, str]:
        """
        Split an optional provider prefix off a model ID.

        Examples:
        - "gpt-4o" -> ("openai", "gpt-4o")
        - "anthropic/claude-opus-4" -> ("anthropic", "claude-opus-4")
        - "google/gemini-2.5-pro" -> ("google", "gemini-2.5-pro")
        """
        provider, sep, model = model_id.partition("/")
        if sep and provider in self.providers:
            return provider, model
        return "openai", model_id

    def get_provider_config(self, provider: str) -> ProviderConfig:
        config = self.providers.get(provider)
        if config is None:
            raise ValueError(f"Unknown provider: {provider}")
        return config

    def get_runtime_descriptor(
        self,
        provider: str,
        model: Optional[str] = None,
        *,
        base_url: Optional[str] = None,
    ) -> Tuple[ProviderDescriptor, str]:
        """Return a provider runtime descriptor and resolved model ID.

        ``provider`` may also be a prefixed model ID when ``model`` is omitted.
        """
        if model is None:
            provider, model = self.parse_model_id(provider)
        config = self.get_provider_config(provider)
        return config.to_descriptor(base_url_override=base_url), model

    def get_tool_translator(self, descriptor: ProviderDescriptor) -> ToolSchemaTranslator:
        return self.translators.get(descriptor.tool_schema_format, self.translators["openai"])


# Global instance
provider_router = ProviderRouter()


__all__ = [
    "DEFAULT_QUIRK",
    "MODEL_CATALOG",
    "ModelQuirk",
    "PROVIDERS",
    "ProviderConfig",
    "ProviderDescriptor",
    "ProviderRouter",
    "ToolSchemaTranslator",
    "OpenAIToolTranslator",
    "AnthropicToolTranslator",
    "GoogleToolTranslator",
    "available_models",
    "provider_router",
]
