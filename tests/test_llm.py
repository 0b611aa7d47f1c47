"""
Tests for the hosted language model client.
"""

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
import openai
import pytest

from genpaper_citations.core.errors import (
    GenerationCancelledError,
    GenerationError,
    GenerationTimeoutError,
)
from genpaper_citations.core.llm import LLMClient

REQUEST = httpx.Request("POST", "https://api.test/v1/chat/completions")


def completion(text: str) -> SimpleNamespace:
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=text))])


class FakeStream:
    """Async iterable of streamed chunks, like the provider's stream object."""

    def __init__(self, deltas, delay: float = 0.0):
        self.deltas = deltas
        self.delay = delay
        self.closed = False

    def __aiter__(self):
        return self._chunks()

    async def _chunks(self):
        for delta in self.deltas:
            if self.delay:
                await asyncio.sleep(self.delay)
            if delta is None:
                yield SimpleNamespace(choices=[])
            else:
                yield SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=delta))])

    async def close(self):
        self.closed = True


def make_client(create) -> MagicMock:
    client = MagicMock()
    client.chat.completions.create = create
    client.close = AsyncMock()
    return client


class TestComplete:
    """Tests for complete and complete_json."""

    @pytest.mark.asyncio
    async def test_complete(self):
        """Test a plain completion."""
        create = AsyncMock(return_value=completion("Hello"))
        llm = LLMClient(model="test-model", client=make_client(create))

        assert await llm.complete("system", "user", temperature=0.2) == "Hello"
        kwargs = create.await_args.kwargs
        assert kwargs["model"] == "test-model"
        assert kwargs["temperature"] == 0.2
        assert kwargs["messages"][0] == {"role": "system", "content": "system"}

    @pytest.mark.asyncio
    async def test_complete_json(self):
        """Test structured completions request and parse JSON."""
        create = AsyncMock(return_value=completion('{"claims": []}'))
        llm = LLMClient(client=make_client(create))

        assert await llm.complete_json("system", "user") == {"claims": []}
        assert create.await_args.kwargs["response_format"] == {"type": "json_object"}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("text", ["not json", "[1, 2]"])
    async def test_complete_json_invalid(self, text):
        """Test that non-object responses raise GenerationError."""
        llm = LLMClient(client=make_client(AsyncMock(return_value=completion(text))))

        with pytest.raises(GenerationError):
            await llm.complete_json("system", "user")

    @pytest.mark.asyncio
    async def test_timeout(self):
        """Test that a slow call raises GenerationTimeoutError."""
        async def slow(**kwargs):
            await asyncio.sleep(5)

        llm = LLMClient(timeout=0.05, client=make_client(slow))

        with pytest.raises(GenerationTimeoutError):
            await llm.complete("system", "user")

    @pytest.mark.asyncio
    async def test_abort(self):
        """Test that the abort signal raises GenerationCancelledError."""
        async def slow(**kwargs):
            await asyncio.sleep(5)

        abort = asyncio.Event()
        abort.set()
        llm = LLMClient(timeout=10, client=make_client(slow))

        with pytest.raises(GenerationCancelledError):
            await llm.complete("system", "user", abort=abort)

    @pytest.mark.asyncio
    async def test_retries_rate_limits(self):
        """Test that a rate limit is retried."""
        rate_limited = openai.RateLimitError(
            "rate limited",
            response=httpx.Response(429, request=REQUEST),
            body=None,
        )
        create = AsyncMock(side_effect=[rate_limited, completion("ok")])
        llm = LLMClient(max_retries=2, client=make_client(create))

        assert await llm.complete("system", "user") == "ok"
        assert create.await_count == 2

    @pytest.mark.asyncio
    async def test_provider_error(self):
        """Test that provider failures become GenerationError."""
        create = AsyncMock(side_effect=openai.APIConnectionError(request=REQUEST))
        llm = LLMClient(max_retries=1, client=make_client(create))

        with pytest.raises(GenerationError) as exc_info:
            await llm.complete("system", "user")
        assert not isinstance(exc_info.value, GenerationTimeoutError)


class TestStream:
    """Tests for stream."""

    @pytest.mark.asyncio
    async def test_stream_deltas(self):
        """Test that text deltas are yielded and empty chunks skipped."""
        stream = FakeStream(["Hel", None, "", "lo"])
        llm = LLMClient(client=make_client(AsyncMock(return_value=stream)))

        deltas = [d async for d in llm.stream("system", "user")]

        assert deltas == ["Hel", "lo"]
        assert stream.closed is True

    @pytest.mark.asyncio
    async def test_stream_abort(self):
        """Test aborting mid-stream."""
        stream = FakeStream(["one ", "two ", "three "])
        llm = LLMClient(client=make_client(AsyncMock(return_value=stream)))
        abort = asyncio.Event()

        received = []
        with pytest.raises(GenerationCancelledError):
            async for delta in llm.stream("system", "user", abort=abort):
                received.append(delta)
                abort.set()

        assert received == ["one "]
        assert stream.closed is True

    @pytest.mark.asyncio
    async def test_stream_timeout(self):
        """Test that the timeout covers the whole stream."""
        stream = FakeStream(["slow ", "text "], delay=0.5)
        llm = LLMClient(timeout=0.05, client=make_client(AsyncMock(return_value=stream)))

        with pytest.raises(GenerationTimeoutError):
            async for _ in llm.stream("system", "user"):
                pass

    @pytest.mark.asyncio
    async def test_close(self):
        """Test closing the provider client."""
        client = make_client(AsyncMock())
        llm = LLMClient(client=client)

        await llm.close()

        client.close.assert_awaited_once()
