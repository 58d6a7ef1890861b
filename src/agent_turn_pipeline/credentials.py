from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from loguru import logger

from agent_turn_pipeline.errors import ConfigurationError

SUPPORTED_PROVIDERS = ("openai", "azure", "anthropic")
DEFAULT_AZURE_API_VERSION = "2024-02-15-preview"


@dataclass(frozen=True)
class ProviderConfig:
    provider: str
    model: str
    api_key: str
    azure_endpoint: str | None = None
    api_version: str | None = None
    max_tokens: int = 4096
    temperature: float | None = None
    timeout_seconds: float = 60.0
    stream_timeout_seconds: float = 600.0

    def __repr__(self) -> str:
        return f"ProviderConfig(provider={self.provider!r}, model={self.model!r})"


def validate_provider_config(config: ProviderConfig) -> ProviderConfig:
    """Reject configurations that could never produce a successful call."""
    provider = (config.provider or "").strip().lower()
    if not provider:
        raise ConfigurationError(
            "LLM provider is required. Please configure your AI provider in Settings > LLM Configuration."
        )
    if provider not in SUPPORTED_PROVIDERS:
        raise ConfigurationError(
            f"Unsupported LLM provider: {config.provider}. Supported providers: {', '.join(SUPPORTED_PROVIDERS)}."
        )
    if not config.model:
        raise ConfigurationError(
            "Model name is required. Please configure your AI model in Settings > LLM Configuration."
        )
    if not config.api_key:
        raise ConfigurationError(
            "API key is required. Please configure your API key in Settings > LLM Configuration."
        )
    if provider == "azure":
        endpoint = config.azure_endpoint or ""
        if not endpoint:
            raise ConfigurationError("Azure endpoint is required for Azure OpenAI.")
        if not endpoint.startswith("https://") or ".openai.azure.com" not in endpoint:
            raise ConfigurationError(
                f'Invalid Azure endpoint format: "{endpoint}". Expected format: https://your-resource.openai.azure.com'
            )
        if not config.api_version:
            raise ConfigurationError("Azure API version is required for Azure OpenAI (e.g. 2024-02-15-preview).")
    return config


@runtime_checkable
class CredentialResolver(Protocol):
    def resolve(self, organization_id: str | None) -> ProviderConfig | None:
        """Return the active provider configuration, or None when nothing is configured."""
        ...


class StaticCredentialResolver:
    def __init__(self, configs: dict[str, ProviderConfig], default: ProviderConfig | None = None):
        self._configs = dict(configs)
        self._default = default

    def resolve(self, organization_id: str | None) -> ProviderConfig | None:
        if organization_id is not None and organization_id in self._configs:
            return self._configs[organization_id]
        return self._default


class ConfigCredentialResolver:
    """Resolves provider configs from the ``Providers`` section of config.json.

    Each entry names the environment variable holding its secret, so keys never
    live in the config file itself::

        "Providers": {
            "default": {"Provider": "anthropic", "Model": "claude-sonnet-4-5", "ApiKeyEnv": "ANTHROPIC_API_KEY"},
            "org-42": {"Provider": "azure", "Model": "gpt-4o", "ApiKeyEnv": "AZURE_OPENAI_API_KEY",
                       "AzureEndpoint": "https://acme.openai.azure.com", "ApiVersion": "2024-02-15-preview"}
        }
    """

    _DEFAULT_KEY = "default"

    def __init__(
        self,
        providers: dict[str, dict],
        *,
        timeout_seconds: float = 60.0,
        environ: dict[str, str] | None = None,
    ):
        self._providers = providers or {}
        self._timeout_seconds = timeout_seconds
        self._environ = environ if environ is not None else os.environ

    def resolve(self, organization_id: str | None) -> ProviderConfig | None:
        entry = None
        if organization_id is not None:
            entry = self._providers.get(organization_id)
        if entry is None:
            entry = self._providers.get(self._DEFAULT_KEY)
        if entry is None:
            return None

        api_key = self._environ.get(str(entry.get("ApiKeyEnv", "")), "")
        if not api_key:
            logger.warning(
                f"Provider entry for organization {organization_id!r} has no secret "
                f"(env var {entry.get('ApiKeyEnv')!r} is empty)"
            )
            return None

        provider = str(entry.get("Provider", "")).strip().lower()
        temperature = entry.get("Temperature")
        return ProviderConfig(
            provider=provider,
            model=str(entry.get("Model", "")),
            api_key=api_key,
            azure_endpoint=entry.get("AzureEndpoint"),
            api_version=entry.get("ApiVersion") or (DEFAULT_AZURE_API_VERSION if provider == "azure" else None),
            max_tokens=int(entry.get("MaxTokens", 4096)),
            temperature=float(temperature) if temperature is not None else None,
            timeout_seconds=float(entry.get("TimeoutSeconds", self._timeout_seconds)),
            stream_timeout_seconds=float(entry.get("StreamTimeoutSeconds", 600.0)),
        )
