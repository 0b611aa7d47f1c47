"""
Hosted language model client.

Thin wrapper over the OpenAI async client. Every call runs under an
explicit timeout and an optional abort signal so callers can tell a
timeout, a client disconnect and a provider failure apart:

- timeout        -> GenerationTimeoutError
- abort signal   -> GenerationCancelledError
- provider error -> GenerationError

Rate limits and connection errors are retried with exponential backoff.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, AsyncIterator, Awaitable, Callable, Optional, TypeVar

import openai
from openai import AsyncOpenAI
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .errors import GenerationCancelledError, GenerationError, GenerationTimeoutError

logger = logging.getLogger("genpaper-citation-server")

T = TypeVar("T")

RETRYABLE_ERRORS = (openai.RateLimitError, openai.APIConnectionError)

_END = object()


class LLMClient:
    """
    Chat-completion client with timeout, abort and retry handling.

    Example usage:
        llm = LLMClient(api_key="sk-...", model="gpt-4o-mini")
        text = await llm.complete("You are terse.", "Say hi")
        async for delta in llm.stream(system, user, abort=event):
            ...
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "gpt-4o-mini",
        base_url: Optional[str] = None,
        timeout: float = 120,
        max_retries: int = 3,
        client: Optional[AsyncOpenAI] = None,
    ):
        """
        Initialize the client.

        Args:
            api_key: Provider API key (falls back to OPENAI_API_KEY).
            model: Chat model name.
            base_url: Optional OpenAI-compatible endpoint.
            timeout: Seconds before a call is aborted.
            max_retries: Attempts for rate-limit/connection errors.
            client: Pre-built AsyncOpenAI client (used by tests).
        """
        self.api_key = api_key
        self.model = model
        self.base_url = base_url
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self._client = client

    def _get_client(self) -> AsyncOpenAI:
        """Get or create the provider client."""
        if self._client is None:
            try:
                self._client = AsyncOpenAI(
                    api_key=self.api_key,
                    base_url=self.base_url,
                    max_retries=0,
                )
            except openai.OpenAIError as e:
                raise GenerationError(f"Language model client unavailable: {e}") from e
        return self._client

    # ==================== Guards ====================

    async def _guard(
        self,
        awaitable: Awaitable[T],
        abort: Optional[asyncio.Event],
        timeout: Optional[float] = None,
    ) -> T:
        """Await under the timeout, racing the abort signal."""
        task = asyncio.ensure_future(awaitable)
        waiters = {task}
        abort_task = None
        if abort is not None:
            abort_task = asyncio.ensure_future(abort.wait())
            waiters.add(abort_task)

        try:
            done, _ = await asyncio.wait(
                waiters,
                timeout=timeout if timeout is not None else self.timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            if abort_task is not None:
                abort_task.cancel()

        if task in done:
            return task.result()

        task.cancel()
        if abort_task is not None and abort_task in done:
            raise GenerationCancelledError("Generation cancelled by client")
        raise GenerationTimeoutError(f"Model call exceeded {self.timeout}s timeout")

    async def _call(
        self,
        request: Callable[[], Awaitable[T]],
        abort: Optional[asyncio.Event],
    ) -> T:
        """Run a provider request with retries and error mapping."""
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.max_retries),
                wait=wait_exponential(multiplier=1, min=1, max=30),
                retry=retry_if_exception_type(RETRYABLE_ERRORS),
                before_sleep=before_sleep_log(logger, logging.WARNING),
                reraise=True,
            ):
                with attempt:
                    result = await self._guard(request(), abort)
            return result

        except openai.APITimeoutError as e:
            raise GenerationTimeoutError(f"Model request timed out: {e}") from e
        except openai.OpenAIError as e:
            logger.error(f"Language model call failed: {e}")
            raise GenerationError(f"Language model call failed: {e}") from e

    @staticmethod
    def _messages(system: str, user: str) -> list[dict[str, str]]:
        return [
            {"role": "system", "content": system},
            {"role": "user", "content": user},
        ]

    # ==================== Public API ====================

    async def complete(
        self,
        system: str,
        user: str,
        temperature: float = 0.7,
        max_tokens: Optional[int] = None,
        abort: Optional[asyncio.Event] = None,
    ) -> str:
        """Single completion; returns the message text."""
        client = self._get_client()
        response = await self._call(
            lambda: client.chat.completions.create(
                model=self.model,
                messages=self._messages(system, user),
                temperature=temperature,
                max_tokens=max_tokens,
            ),
            abort,
        )
        return response.choices[0].message.content or ""

    async def complete_json(
        self,
        system: str,
        user: str,
        temperature: float = 0.1,
        max_tokens: Optional[int] = None,
        abort: Optional[asyncio.Event] = None,
    ) -> dict[str, Any]:
        """
        Structured completion.

        Requests a JSON object response and parses it.

        Raises:
            GenerationError: If the response is not a JSON object.
        """
        client = self._get_client()
        response = await self._call(
            lambda: client.chat.completions.create(
                model=self.model,
                messages=self._messages(system, user),
                temperature=temperature,
                max_tokens=max_tokens,
                response_format={"type": "json_object"},
            ),
            abort,
        )
        text = response.choices[0].message.content or ""
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise GenerationError(f"Model returned invalid JSON: {e}") from e
        if not isinstance(data, dict):
            raise GenerationError("Model returned JSON that is not an object")
        return data

    async def stream(
        self,
        system: str,
        user: str,
        temperature: float = 0.7,
        max_tokens: Optional[int] = None,
        abort: Optional[asyncio.Event] = None,
    ) -> AsyncIterator[str]:
        """
        Stream text deltas.

        The timeout covers the whole stream. Setting abort stops
        consumption and raises GenerationCancelledError.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout
        client = self._get_client()

        response = await self._call(
            lambda: client.chat.completions.create(
                model=self.model,
                messages=self._messages(system, user),
                temperature=temperature,
                max_tokens=max_tokens,
                stream=True,
            ),
            abort,
        )

        iterator = response.__aiter__()

        async def next_chunk():
            try:
                return await iterator.__anext__()
            except StopAsyncIteration:
                return _END

        try:
            while True:
                if abort is not None and abort.is_set():
                    raise GenerationCancelledError("Generation cancelled by client")
                remaining = deadline - loop.time()
                if remaining <= 0:
                    raise GenerationTimeoutError(f"Model stream exceeded {self.timeout}s timeout")

                try:
                    chunk = await self._guard(next_chunk(), abort, timeout=remaining)
                except openai.OpenAIError as e:
                    raise GenerationError(f"Model stream failed: {e}") from e

                if chunk is _END:
                    break
                if chunk.choices:
                    delta = chunk.choices[0].delta.content
                    if delta:
                        yield delta
        finally:
            await response.close()

    async def close(self) -> None:
        """Close the provider client and release resources."""
        if self._client is not None:
            await self._client.close()
            self._client = None
