import asyncio
import unittest

from tenacity import stop_after_attempt, wait_none

from agent_turn_pipeline.errors import ErrorKind, ProviderError
from agent_turn_pipeline.providers.common import RetryingProvider


class _FlakyProvider:
    def __init__(self, failures: list[ProviderError], text: str = "ok", chunks: list[str] | None = None):
        self._failures = list(failures)
        self._text = text
        self._chunks = chunks or []
        self.calls = 0

    async def send(self, system_prompt: str, user_prompt: str) -> str:
        self.calls += 1
        if self._failures:
            raise self._failures.pop(0)
        return self._text

    async def send_streaming(self, system_prompt: str, user_prompt: str, on_chunk) -> str:
        self.calls += 1
        for chunk in self._chunks:
            await on_chunk(chunk)
        if self._failures:
            raise self._failures.pop(0)
        return "".join(self._chunks)


def _fast(max_attempts: int) -> dict:
    return {"wait": wait_none(), "stop": stop_after_attempt(max_attempts), "reraise": True}


class RetryingProviderTests(unittest.TestCase):
    def test_retries_rate_limit_then_succeeds(self) -> None:
        inner = _FlakyProvider([ProviderError(ErrorKind.RATE_LIMIT, "429")])
        provider = RetryingProvider(inner, retry_kwargs=_fast(3))

        self.assertEqual("ok", asyncio.run(provider.send("sys", "hi")))
        self.assertEqual(2, inner.calls)

    def test_auth_errors_are_not_retried(self) -> None:
        inner = _FlakyProvider([ProviderError(ErrorKind.AUTH, "401")])
        provider = RetryingProvider(inner, retry_kwargs=_fast(3))

        with self.assertRaises(ProviderError) as ctx:
            asyncio.run(provider.send("sys", "hi"))

        self.assertEqual(ErrorKind.AUTH, ctx.exception.kind)
        self.assertEqual(1, inner.calls)

    def test_gives_up_after_max_attempts(self) -> None:
        inner = _FlakyProvider([ProviderError(ErrorKind.TIMEOUT, "slow")] * 5)
        provider = RetryingProvider(inner, retry_kwargs=_fast(2))

        with self.assertRaises(ProviderError):
            asyncio.run(provider.send("sys", "hi"))

        self.assertEqual(2, inner.calls)

    def test_stream_is_not_retried_after_output_was_delivered(self) -> None:
        inner = _FlakyProvider([ProviderError(ErrorKind.TIMEOUT, "stalled")], chunks=["partial"])
        provider = RetryingProvider(inner, retry_kwargs=_fast(3))
        received: list[str] = []

        async def on_chunk(text: str) -> None:
            received.append(text)

        with self.assertRaises(ProviderError):
            asyncio.run(provider.send_streaming("sys", "hi", on_chunk))

        self.assertEqual(1, inner.calls)
        self.assertEqual(["partial"], received)

    def test_stream_is_retried_before_any_output(self) -> None:
        inner = _FlakyProvider([ProviderError(ErrorKind.RATE_LIMIT, "429")])
        provider = RetryingProvider(inner, retry_kwargs=_fast(3))

        async def on_chunk(text: str) -> None:
            pass

        asyncio.run(provider.send_streaming("sys", "hi", on_chunk))

        self.assertEqual(2, inner.calls)


if __name__ == "__main__":
    unittest.main()
