from collections.abc import AsyncIterator

import anthropic
import httpx
from loguru import logger

from agent_turn_pipeline.credentials import ProviderConfig
from agent_turn_pipeline.errors import ErrorKind
from agent_turn_pipeline.providers.common import BaseProvider


class AnthropicProvider(BaseProvider):
    name = "anthropic"

    def __init__(self, config: ProviderConfig, client: anthropic.AsyncAnthropic | None = None):
        super().__init__(config)
        self._client = client or anthropic.AsyncAnthropic(
            api_key=config.api_key,
            timeout=httpx.Timeout(config.timeout_seconds, connect=10.0),
            max_retries=0,
        )

    def _request_kwargs(self, system_prompt: str, user_prompt: str) -> dict:
        kwargs: dict = dict(
            model=self._config.model,
            max_tokens=self._config.max_tokens,
            messages=[{"role": "user", "content": user_prompt}],
        )
        if system_prompt:
            kwargs["system"] = system_prompt
        if self._config.temperature is not None:
            kwargs["temperature"] = self._config.temperature
        return kwargs

    async def _complete(self, system_prompt: str, user_prompt: str) -> str:
        response = await self._client.messages.create(**self._request_kwargs(system_prompt, user_prompt))
        texts = [block.text for block in response.content if block.type == "text"]
        if not texts:
            raise self._error(ErrorKind.MALFORMED_RESPONSE, "Response contained no text blocks")
        usage = response.usage
        logger.debug(
            f"API usage: stop_reason={response.stop_reason}, "
            f"input_tokens={usage.input_tokens}, output_tokens={usage.output_tokens}"
        )
        return "".join(texts)

    async def _stream(self, system_prompt: str, user_prompt: str) -> AsyncIterator[str]:
        async with self._client.messages.stream(**self._request_kwargs(system_prompt, user_prompt)) as stream:
            async for event in stream:
                if event.type == "content_block_delta" and event.delta.type == "text_delta":
                    yield event.delta.text

    def _classify(self, ex: Exception) -> ErrorKind | None:
        if isinstance(ex, (anthropic.AuthenticationError, anthropic.PermissionDeniedError)):
            return ErrorKind.AUTH
        if isinstance(ex, anthropic.RateLimitError):
            return ErrorKind.RATE_LIMIT
        if isinstance(ex, (anthropic.APITimeoutError, anthropic.APIConnectionError)):
            return ErrorKind.TIMEOUT
        if isinstance(ex, (anthropic.APIResponseValidationError, AttributeError, TypeError, ValueError)):
            return ErrorKind.MALFORMED_RESPONSE
        return None
