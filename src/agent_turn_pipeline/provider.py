from collections.abc import Awaitable, Callable
from typing import Protocol, runtime_checkable

from agent_turn_pipeline.credentials import ProviderConfig, validate_provider_config
from agent_turn_pipeline.errors import ConfigurationError

OnChunk = Callable[[str], Awaitable[None]]


@runtime_checkable
class LLMProvider(Protocol):
    async def send(self, system_prompt: str, user_prompt: str) -> str:
        """Single blocking completion. Returns the full response text."""
        ...

    async def send_streaming(self, system_prompt: str, user_prompt: str, on_chunk: OnChunk) -> str:
        """Stream a completion, awaiting ``on_chunk`` for each text delta in arrival order.

        Returns the full concatenated text once the stream ends.
        """
        ...


def create_provider(config: ProviderConfig) -> LLMProvider:
    """Factory: create an LLMProvider for a resolved organization configuration."""
    validate_provider_config(config)
    name = config.provider.strip().lower()
    if name == "openai":
        from agent_turn_pipeline.providers.openai_provider import OpenAIProvider
        return OpenAIProvider(config)
    if name == "azure":
        from agent_turn_pipeline.providers.openai_provider import AzureOpenAIProvider
        return AzureOpenAIProvider(config)
    if name == "anthropic":
        from agent_turn_pipeline.providers.anthropic_provider import AnthropicProvider
        return AnthropicProvider(config)
    raise ConfigurationError(f"Unknown provider: {config.provider!r}")
