from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator

from loguru import logger
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential

from agent_turn_pipeline.credentials import ProviderConfig
from agent_turn_pipeline.errors import ErrorKind, PipelineError, ProviderError
from agent_turn_pipeline.provider import LLMProvider, OnChunk


class BaseProvider:
    """Shared timeout and error normalization for the SDK-backed providers.

    Subclasses implement ``_complete`` and ``_stream`` against their SDK and
    ``_classify`` to map SDK exceptions onto an ErrorKind.
    """

    name = ""

    def __init__(self, config: ProviderConfig):
        self._config = config

    @property
    def model(self) -> str:
        return self._config.model

    async def send(self, system_prompt: str, user_prompt: str) -> str:
        logger.debug(
            f"API request: provider={self.name}, model={self.model}, "
            f"system_len={len(system_prompt)}, prompt_len={len(user_prompt)}"
        )
        try:
            text = await asyncio.wait_for(
                self._complete(system_prompt, user_prompt),
                timeout=self._config.timeout_seconds,
            )
        except PipelineError:
            raise
        except asyncio.TimeoutError as ex:
            raise self._error(
                ErrorKind.TIMEOUT,
                f"LLM request timeout after {self._config.timeout_seconds:.0f}s",
            ) from ex
        except Exception as ex:
            raise self._normalize(ex) from ex
        logger.debug(f"API response: provider={self.name}, text_len={len(text)}")
        return text

    async def send_streaming(self, system_prompt: str, user_prompt: str, on_chunk: OnChunk) -> str:
        logger.debug(
            f"API stream request: provider={self.name}, model={self.model}, "
            f"system_len={len(system_prompt)}, prompt_len={len(user_prompt)}"
        )
        parts: list[str] = []
        stream = self._stream(system_prompt, user_prompt)
        deadline = asyncio.timeout(self._config.stream_timeout_seconds)
        try:
            async with deadline:
                while True:
                    # Idle bound per gap between deltas; the deadline bounds the whole answer.
                    try:
                        async with asyncio.timeout(self._config.timeout_seconds):
                            delta = await anext(stream)
                    except StopAsyncIteration:
                        break
                    if not delta:
                        continue
                    parts.append(delta)
                    await on_chunk(delta)
        except PipelineError:
            raise
        except asyncio.TimeoutError as ex:
            if deadline.expired():
                message = f"LLM stream ran longer than {self._config.stream_timeout_seconds:.0f}s"
            else:
                message = f"LLM stream stalled for more than {self._config.timeout_seconds:.0f}s"
            raise self._error(ErrorKind.TIMEOUT, message) from ex
        except Exception as ex:
            raise self._normalize(ex) from ex
        finally:
            await stream.aclose()

        text = "".join(parts)
        logger.debug(f"API stream response: provider={self.name}, chunks={len(parts)}, text_len={len(text)}")
        return text

    async def _complete(self, system_prompt: str, user_prompt: str) -> str:
        raise NotImplementedError

    def _stream(self, system_prompt: str, user_prompt: str) -> AsyncIterator[str]:
        raise NotImplementedError

    def _classify(self, ex: Exception) -> ErrorKind | None:
        return None

    def _normalize(self, ex: Exception) -> ProviderError:
        kind = self._classify(ex)
        if kind is None:
            kind = _classify_by_status(ex)
        messages = {
            ErrorKind.AUTH: "Authentication failed. Please check your API key configuration.",
            ErrorKind.RATE_LIMIT: "Rate limit exceeded. Please try again later or upgrade your plan.",
            ErrorKind.TIMEOUT: "Request timed out or the provider could not be reached.",
        }
        detail = messages.get(kind, f"Unexpected provider response: {type(ex).__name__}: {ex}")
        return self._error(kind, detail)

    def _error(self, kind: ErrorKind, message: str) -> ProviderError:
        return ProviderError(kind, message, provider=self.name, model=self.model)


def _classify_by_status(ex: Exception) -> ErrorKind:
    status = getattr(ex, "status_code", None)
    if status in (401, 403):
        return ErrorKind.AUTH
    if status == 429:
        return ErrorKind.RATE_LIMIT
    if status in (408, 504):
        return ErrorKind.TIMEOUT
    return ErrorKind.MALFORMED_RESPONSE


RETRYABLE_KINDS = frozenset({ErrorKind.RATE_LIMIT, ErrorKind.TIMEOUT})


def _on_retry(retry_state) -> None:
    attempt = retry_state.attempt_number
    wait = retry_state.next_action.sleep if retry_state.next_action else 0
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    reason = exc.kind.value if isinstance(exc, ProviderError) else type(exc).__name__
    logger.warning(f"{reason}. Retrying in {wait:.0f}s (attempt {attempt})...")


def default_retry_kwargs(max_attempts: int) -> dict:
    return {
        "wait": wait_exponential(multiplier=1, min=1, max=8),
        "stop": stop_after_attempt(max(1, max_attempts)),
        "before_sleep": _on_retry,
        "reraise": True,
    }


class RetryingProvider:
    """Opt-in retry policy around any LLMProvider.

    Only rate-limit and timeout failures are retried. A stream is retried only
    if no chunk reached the caller yet, so retries never duplicate output.
    """

    def __init__(self, inner: LLMProvider, *, max_attempts: int = 3, retry_kwargs: dict | None = None):
        self._inner = inner
        self._retry_kwargs = retry_kwargs or default_retry_kwargs(max_attempts)

    async def send(self, system_prompt: str, user_prompt: str) -> str:
        async for attempt in AsyncRetrying(
            retry=retry_if_exception(_is_retryable),
            **self._retry_kwargs,
        ):
            with attempt:
                return await self._inner.send(system_prompt, user_prompt)
        raise AssertionError("unreachable")

    async def send_streaming(self, system_prompt: str, user_prompt: str, on_chunk: OnChunk) -> str:
        delivered = False

        async def forward(chunk: str) -> None:
            nonlocal delivered
            delivered = True
            await on_chunk(chunk)

        async for attempt in AsyncRetrying(
            retry=retry_if_exception(lambda ex: not delivered and _is_retryable(ex)),
            **self._retry_kwargs,
        ):
            with attempt:
                return await self._inner.send_streaming(system_prompt, user_prompt, forward)
        raise AssertionError("unreachable")


def _is_retryable(ex: BaseException) -> bool:
    return isinstance(ex, ProviderError) and ex.kind in RETRYABLE_KINDS
