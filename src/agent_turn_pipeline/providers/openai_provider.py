from collections.abc import AsyncIterator

import httpx
import openai
from loguru import logger

from agent_turn_pipeline.credentials import DEFAULT_AZURE_API_VERSION, ProviderConfig
from agent_turn_pipeline.errors import ErrorKind
from agent_turn_pipeline.providers.common import BaseProvider


def _to_openai_messages(system_prompt: str, user_prompt: str) -> list[dict]:
    out: list[dict] = []
    if system_prompt:
        out.append({"role": "system", "content": system_prompt})
    out.append({"role": "user", "content": user_prompt})
    return out


class OpenAIProvider(BaseProvider):
    name = "openai"

    def __init__(self, config: ProviderConfig, client: openai.AsyncOpenAI | None = None):
        super().__init__(config)
        self._client = client or self._create_client()

    def _create_client(self) -> openai.AsyncOpenAI:
        # SDK-level retries are disabled; retry policy belongs to the caller.
        return openai.AsyncOpenAI(
            api_key=self._config.api_key,
            timeout=httpx.Timeout(self._config.timeout_seconds, connect=10.0),
            max_retries=0,
        )

    def _request_kwargs(self, system_prompt: str, user_prompt: str) -> dict:
        kwargs: dict = dict(
            model=self._config.model,
            messages=_to_openai_messages(system_prompt, user_prompt),
            max_tokens=self._config.max_tokens,
        )
        if self._config.temperature is not None:
            kwargs["temperature"] = self._config.temperature
        return kwargs

    async def _complete(self, system_prompt: str, user_prompt: str) -> str:
        response = await self._client.chat.completions.create(**self._request_kwargs(system_prompt, user_prompt))
        if not response.choices:
            raise self._error(ErrorKind.MALFORMED_RESPONSE, "Completion contained no choices")
        content = response.choices[0].message.content
        if content is None:
            logger.warning(f"{self.name} completion returned no text content")
            return ""
        return content

    async def _stream(self, system_prompt: str, user_prompt: str) -> AsyncIterator[str]:
        stream = await self._client.chat.completions.create(
            **self._request_kwargs(system_prompt, user_prompt),
            stream=True,
        )
        async for chunk in stream:
            choice = chunk.choices[0] if chunk.choices else None
            if choice is None or choice.delta is None:
                continue
            if choice.delta.content:
                yield choice.delta.content

    def _classify(self, ex: Exception) -> ErrorKind | None:
        if isinstance(ex, (openai.AuthenticationError, openai.PermissionDeniedError)):
            return ErrorKind.AUTH
        if isinstance(ex, openai.RateLimitError):
            return ErrorKind.RATE_LIMIT
        if isinstance(ex, (openai.APITimeoutError, openai.APIConnectionError)):
            return ErrorKind.TIMEOUT
        if isinstance(ex, (openai.APIResponseValidationError, AttributeError, TypeError, ValueError)):
            return ErrorKind.MALFORMED_RESPONSE
        return None


class AzureOpenAIProvider(OpenAIProvider):
    """Azure OpenAI deployment; ``config.model`` is the deployment name."""

    name = "azure"

    def _create_client(self) -> openai.AsyncAzureOpenAI:
        return openai.AsyncAzureOpenAI(
            api_key=self._config.api_key,
            azure_endpoint=self._config.azure_endpoint,
            api_version=self._config.api_version or DEFAULT_AZURE_API_VERSION,
            azure_deployment=self._config.model,
            timeout=httpx.Timeout(self._config.timeout_seconds, connect=10.0),
            max_retries=0,
        )
