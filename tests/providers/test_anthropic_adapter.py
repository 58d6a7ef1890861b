import asyncio
import unittest
from types import SimpleNamespace

import anthropic
import httpx

from agent_turn_pipeline.credentials import ProviderConfig
from agent_turn_pipeline.errors import ErrorKind, ProviderError, TransportError
from agent_turn_pipeline.providers.anthropic_provider import AnthropicProvider


def _text_delta(text: str) -> SimpleNamespace:
    return SimpleNamespace(type="content_block_delta", delta=SimpleNamespace(type="text_delta", text=text))


def _status_error(cls, status: int):
    request = httpx.Request("POST", "https://api.anthropic.com/v1/messages")
    return cls("boom", response=httpx.Response(status, request=request), body=None)


class _FakeStreamContext:
    def __init__(self, events: list[object], delay: float = 0.0):
        self._events = events
        self._delay = delay
        self.exited = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.exited = True
        return False

    def __aiter__(self):
        self._iter = iter(self._events)
        return self

    async def __anext__(self):
        if self._delay:
            await asyncio.sleep(self._delay)
        try:
            return next(self._iter)
        except StopIteration:
            raise StopAsyncIteration


class _FakeMessages:
    def __init__(self, stream_ctx=None, create_response=None, error: Exception | None = None, delay: float = 0.0):
        self._stream_ctx = stream_ctx
        self._create_response = create_response
        self._error = error
        self._delay = delay
        self.calls: list[dict] = []

    def stream(self, **kwargs):
        self.calls.append(kwargs)
        if self._error is not None:
            raise self._error
        return self._stream_ctx

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        if self._delay:
            await asyncio.sleep(self._delay)
        if self._error is not None:
            raise self._error
        return self._create_response


class _FakeClient:
    def __init__(self, **kwargs):
        self.messages = _FakeMessages(**kwargs)


def _config(**overrides) -> ProviderConfig:
    values = dict(provider="anthropic", model="claude-test", api_key="sk-test", max_tokens=256, timeout_seconds=5.0)
    values.update(overrides)
    return ProviderConfig(**values)


def _response(*blocks) -> SimpleNamespace:
    return SimpleNamespace(
        content=list(blocks),
        stop_reason="end_turn",
        usage=SimpleNamespace(input_tokens=12, output_tokens=7),
    )


class AnthropicAdapterTests(unittest.TestCase):
    def _make_provider(self, config: ProviderConfig | None = None, **client_kwargs) -> AnthropicProvider:
        return AnthropicProvider(config or _config(), client=_FakeClient(**client_kwargs))

    def test_send_joins_text_blocks(self) -> None:
        provider = self._make_provider(
            create_response=_response(
                SimpleNamespace(type="text", text="Hello "),
                SimpleNamespace(type="thinking", thinking="..."),
                SimpleNamespace(type="text", text="there"),
            )
        )

        text = asyncio.run(provider.send("be brief", "hi"))

        self.assertEqual("Hello there", text)
        call = provider._client.messages.calls[0]
        self.assertEqual("be brief", call["system"])
        self.assertEqual([{"role": "user", "content": "hi"}], call["messages"])
        self.assertEqual(256, call["max_tokens"])
        self.assertNotIn("temperature", call)

    def test_empty_system_prompt_is_omitted(self) -> None:
        provider = self._make_provider(
            _config(temperature=0.2),
            create_response=_response(SimpleNamespace(type="text", text="ok")),
        )

        asyncio.run(provider.send("", "hi"))

        call = provider._client.messages.calls[0]
        self.assertNotIn("system", call)
        self.assertEqual(0.2, call["temperature"])

    def test_response_without_text_is_malformed(self) -> None:
        provider = self._make_provider(create_response=_response())

        with self.assertRaises(ProviderError) as ctx:
            asyncio.run(provider.send("sys", "hi"))

        self.assertEqual(ErrorKind.MALFORMED_RESPONSE, ctx.exception.kind)
        self.assertEqual("anthropic", ctx.exception.provider)

    def test_streaming_forwards_text_deltas_in_order(self) -> None:
        events = [
            SimpleNamespace(type="message_start"),
            _text_delta("Let's "),
            SimpleNamespace(type="content_block_delta", delta=SimpleNamespace(type="input_json_delta", partial_json="{")),
            _text_delta("build "),
            _text_delta(""),
            _text_delta("it."),
            SimpleNamespace(type="message_stop"),
        ]
        stream_ctx = _FakeStreamContext(events)
        provider = self._make_provider(stream_ctx=stream_ctx)
        received: list[str] = []

        async def on_chunk(text: str) -> None:
            received.append(text)

        text = asyncio.run(provider.send_streaming("sys", "hi", on_chunk))

        self.assertEqual(["Let's ", "build ", "it."], received)
        self.assertEqual("Let's build it.", text)
        self.assertTrue(stream_ctx.exited)

    def test_rate_limit_is_normalized(self) -> None:
        provider = self._make_provider(error=_status_error(anthropic.RateLimitError, 429))

        with self.assertRaises(ProviderError) as ctx:
            asyncio.run(provider.send("sys", "hi"))

        self.assertEqual(ErrorKind.RATE_LIMIT, ctx.exception.kind)

    def test_auth_failure_is_normalized(self) -> None:
        provider = self._make_provider(error=_status_error(anthropic.AuthenticationError, 401))

        with self.assertRaises(ProviderError) as ctx:
            asyncio.run(provider.send("sys", "hi"))

        self.assertEqual(ErrorKind.AUTH, ctx.exception.kind)

    def test_unknown_status_error_is_classified_by_status_code(self) -> None:
        provider = self._make_provider(error=_status_error(anthropic.APIStatusError, 403))

        with self.assertRaises(ProviderError) as ctx:
            asyncio.run(provider.send("sys", "hi"))

        self.assertEqual(ErrorKind.AUTH, ctx.exception.kind)

    def test_slow_completion_times_out(self) -> None:
        provider = self._make_provider(
            _config(timeout_seconds=0.05),
            create_response=_response(SimpleNamespace(type="text", text="late")),
            delay=1.0,
        )

        with self.assertRaises(ProviderError) as ctx:
            asyncio.run(provider.send("sys", "hi"))

        self.assertEqual(ErrorKind.TIMEOUT, ctx.exception.kind)

    def test_stalled_stream_times_out(self) -> None:
        provider = self._make_provider(
            _config(timeout_seconds=0.05),
            stream_ctx=_FakeStreamContext([_text_delta("never")], delay=1.0),
        )

        async def on_chunk(text: str) -> None:
            pass

        with self.assertRaises(ProviderError) as ctx:
            asyncio.run(provider.send_streaming("sys", "hi", on_chunk))

        self.assertEqual(ErrorKind.TIMEOUT, ctx.exception.kind)

    def test_trickling_stream_hits_overall_deadline(self) -> None:
        provider = self._make_provider(
            _config(timeout_seconds=1.0, stream_timeout_seconds=0.1),
            stream_ctx=_FakeStreamContext([_text_delta("tick")] * 50, delay=0.01),
        )
        received: list[str] = []

        async def on_chunk(text: str) -> None:
            received.append(text)

        with self.assertRaises(ProviderError) as ctx:
            asyncio.run(provider.send_streaming("sys", "hi", on_chunk))

        self.assertEqual(ErrorKind.TIMEOUT, ctx.exception.kind)
        self.assertIn("ran longer than", str(ctx.exception))
        self.assertLess(len(received), 50)

    def test_chunk_callback_errors_pass_through(self) -> None:
        provider = self._make_provider(stream_ctx=_FakeStreamContext([_text_delta("a"), _text_delta("b")]))

        async def on_chunk(text: str) -> None:
            raise TransportError("client went away")

        with self.assertRaises(TransportError):
            asyncio.run(provider.send_streaming("sys", "hi", on_chunk))


if __name__ == "__main__":
    unittest.main()
