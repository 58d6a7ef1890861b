import asyncio
import unittest
from types import SimpleNamespace

import httpx
import openai

from agent_turn_pipeline.credentials import ProviderConfig
from agent_turn_pipeline.errors import ErrorKind, ProviderError
from agent_turn_pipeline.providers.openai_provider import AzureOpenAIProvider, OpenAIProvider, _to_openai_messages

_REQUEST = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")


def _chunk(content: str | None) -> SimpleNamespace:
    return SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=content))])


class _FakeStream:
    def __init__(self, chunks: list[object]):
        self._chunks = chunks

    def __aiter__(self):
        self._iter = iter(self._chunks)
        return self

    async def __anext__(self):
        try:
            return next(self._iter)
        except StopIteration:
            raise StopAsyncIteration


class _FakeCompletions:
    def __init__(self, response=None, chunks=None, error: Exception | None = None):
        self._response = response
        self._chunks = chunks or []
        self._error = error
        self.calls: list[dict] = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        if self._error is not None:
            raise self._error
        if kwargs.get("stream"):
            return _FakeStream(self._chunks)
        return self._response


class _FakeClient:
    def __init__(self, **kwargs):
        self.chat = SimpleNamespace(completions=_FakeCompletions(**kwargs))


def _config(**overrides) -> ProviderConfig:
    values = dict(provider="openai", model="gpt-test", api_key="sk-test", max_tokens=128)
    values.update(overrides)
    return ProviderConfig(**values)


def _completion(content: str | None) -> SimpleNamespace:
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


class ToOpenAIMessagesTests(unittest.TestCase):
    def test_system_prompt_becomes_system_message(self) -> None:
        result = _to_openai_messages("You are Echo.", "hello")
        self.assertEqual(
            [{"role": "system", "content": "You are Echo."}, {"role": "user", "content": "hello"}],
            result,
        )

    def test_empty_system_prompt_is_skipped(self) -> None:
        result = _to_openai_messages("", "hello")
        self.assertEqual([{"role": "user", "content": "hello"}], result)


class OpenAIAdapterTests(unittest.TestCase):
    def _make_provider(self, config: ProviderConfig | None = None, **client_kwargs) -> OpenAIProvider:
        return OpenAIProvider(config or _config(), client=_FakeClient(**client_kwargs))

    def test_send_returns_first_choice(self) -> None:
        provider = self._make_provider(response=_completion("Draft ready."))

        text = asyncio.run(provider.send("sys", "hi"))

        self.assertEqual("Draft ready.", text)
        call = provider._client.chat.completions.calls[0]
        self.assertEqual("gpt-test", call["model"])
        self.assertEqual(128, call["max_tokens"])
        self.assertNotIn("temperature", call)

    def test_send_without_choices_is_malformed(self) -> None:
        provider = self._make_provider(response=SimpleNamespace(choices=[]))

        with self.assertRaises(ProviderError) as ctx:
            asyncio.run(provider.send("sys", "hi"))

        self.assertEqual(ErrorKind.MALFORMED_RESPONSE, ctx.exception.kind)

    def test_send_with_null_content_returns_empty_text(self) -> None:
        provider = self._make_provider(response=_completion(None))
        self.assertEqual("", asyncio.run(provider.send("sys", "hi")))

    def test_streaming_skips_empty_deltas(self) -> None:
        chunks = [
            _chunk("First"),
            SimpleNamespace(choices=[]),
            _chunk(None),
            _chunk(", second"),
            _chunk(""),
            _chunk("."),
        ]
        provider = self._make_provider(chunks=chunks)
        received: list[str] = []

        async def on_chunk(text: str) -> None:
            received.append(text)

        text = asyncio.run(provider.send_streaming("sys", "hi", on_chunk))

        self.assertEqual(["First", ", second", "."], received)
        self.assertEqual("First, second.", text)
        self.assertTrue(provider._client.chat.completions.calls[0]["stream"])

    def test_timeout_error_is_normalized(self) -> None:
        provider = self._make_provider(error=openai.APITimeoutError(request=_REQUEST))

        with self.assertRaises(ProviderError) as ctx:
            asyncio.run(provider.send("sys", "hi"))

        self.assertEqual(ErrorKind.TIMEOUT, ctx.exception.kind)

    def test_auth_error_is_normalized(self) -> None:
        error = openai.AuthenticationError("bad key", response=httpx.Response(401, request=_REQUEST), body=None)
        provider = self._make_provider(error=error)

        with self.assertRaises(ProviderError) as ctx:
            asyncio.run(provider.send("sys", "hi"))

        self.assertEqual(ErrorKind.AUTH, ctx.exception.kind)
        self.assertIn("[openai/gpt-test]", str(ctx.exception))

    def test_rate_limit_during_stream_is_normalized(self) -> None:
        error = openai.RateLimitError("slow down", response=httpx.Response(429, request=_REQUEST), body=None)
        provider = self._make_provider(error=error)

        async def on_chunk(text: str) -> None:
            pass

        with self.assertRaises(ProviderError) as ctx:
            asyncio.run(provider.send_streaming("sys", "hi", on_chunk))

        self.assertEqual(ErrorKind.RATE_LIMIT, ctx.exception.kind)


class AzureAdapterTests(unittest.TestCase):
    def test_builds_azure_client_without_sdk_retries(self) -> None:
        provider = AzureOpenAIProvider(
            _config(
                provider="azure",
                model="gpt-4o-deployment",
                azure_endpoint="https://acme.openai.azure.com",
                api_version="2024-02-15-preview",
            )
        )

        self.assertIsInstance(provider._client, openai.AsyncAzureOpenAI)
        self.assertEqual(0, provider._client.max_retries)
        self.assertEqual("azure", provider.name)


if __name__ == "__main__":
    unittest.main()
