"""
LLM call wrapper and it does:
- Sends chat messages to an OpenAI-compatible provider
- Classifies failures (transient / permanent / truncated)
- Retries transient failures with jittered exponential backoff
- Caps concurrent calls and bounds the queue behind them

Main purpose:
Central interface for all model calls.
"""


import asyncio
import random
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

import httpx

from studyplan.core.config import settings
from studyplan.core.errors import Truncated, UpstreamRejected, UpstreamTimeout, UpstreamUnavailable, redact_excerpt
from studyplan.core.logging import get_logger

log = get_logger("llm.client")


class TransientError(Exception):
    """A failed attempt that is eligible for retry (timeout, transport, 5xx, 429)."""


@dataclass
class CompletionParams:
    model: str = field(default_factory=lambda: settings.OPENAI_MODEL)
    temperature: float = field(default_factory=lambda: settings.OPENAI_TEMPERATURE)
    max_tokens: int = field(default_factory=lambda: settings.OPENAI_MAX_TOKENS)
    timeout: float = field(default_factory=lambda: settings.OPENAI_TIMEOUT_SECONDS)

    def __post_init__(self):
        if not 0 <= self.temperature <= 2:
            raise ValueError(f"temperature must be within [0, 2], got {self.temperature}")
        if self.max_tokens < 1:
            raise ValueError(f"max_tokens must be >= 1, got {self.max_tokens}")
        if self.timeout <= 0:
            raise ValueError(f"timeout must be positive, got {self.timeout}")


@dataclass
class CompletionResult:
    content: str
    finish_reason: Optional[str]
    attempts: int = 1


class LLMClient:
    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        params: Optional[CompletionParams] = None,
        max_retries: Optional[int] = None,
        backoff_base: Optional[float] = None,
        max_concurrency: Optional[int] = None,
        max_backlog: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.api_key = settings.OPENAI_API_KEY if api_key is None else api_key
        self.base_url = (base_url or settings.OPENAI_BASE_URL).rstrip("/")
        self.params = params or CompletionParams()
        self.max_retries = settings.LLM_MAX_RETRIES if max_retries is None else max_retries
        self.backoff_base = settings.LLM_BACKOFF_BASE_SECONDS if backoff_base is None else backoff_base
        self.max_concurrency = max_concurrency or settings.LLM_MAX_CONCURRENCY
        self.max_backlog = settings.LLM_MAX_BACKLOG if max_backlog is None else max_backlog

        self._transport = transport
        self._sleep = sleep
        self._client: Optional[httpx.AsyncClient] = None
        self._slots = asyncio.Semaphore(self.max_concurrency)
        self._waiting = 0

    def _http(self) -> httpx.AsyncClient:
        # one pool per process, sized to the concurrency cap
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.params.timeout, connect=10.0),
                limits=httpx.Limits(
                    max_connections=self.max_concurrency,
                    max_keepalive_connections=self.max_concurrency,
                ),
                transport=self._transport,
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def backoff(self, attempt: int) -> float:
        """Full jitter: uniform(0, base * 2**attempt)."""
        return random.uniform(0, self.backoff_base * (2**attempt))

    @staticmethod
    def _remaining(deadline: float) -> float:
        return deadline - asyncio.get_running_loop().time()

    async def complete(
        self,
        messages: list[dict[str, str]],
        params: Optional[CompletionParams] = None,
        deadline: Optional[float] = None,
    ) -> CompletionResult:
        """
        Run one chat completion, retrying transient failures.

        deadline is an absolute event-loop time; it caps every attempt and every
        backoff. Raises UpstreamUnavailable / UpstreamRejected / UpstreamTimeout /
        Truncated.
        """
        params = params or self.params
        if not self.api_key:
            raise UpstreamRejected("LLM credentials are not configured")

        if self._slots.locked() and self._waiting >= self.max_backlog:
            raise UpstreamUnavailable("Too many pending LLM calls, try again later")

        self._waiting += 1
        try:
            if deadline is None:
                await self._slots.acquire()
            else:
                try:
                    await asyncio.wait_for(self._slots.acquire(), timeout=max(self._remaining(deadline), 0))
                except asyncio.TimeoutError as e:
                    raise UpstreamTimeout("Deadline exceeded while queued for the LLM") from e
        finally:
            self._waiting -= 1

        try:
            return await self._complete_with_retry(messages, params, deadline)
        finally:
            self._slots.release()

    async def _complete_with_retry(
        self, messages: list[dict[str, str]], params: CompletionParams, deadline: Optional[float]
    ) -> CompletionResult:
        attempts = 1 + self.max_retries
        last_err: Optional[Exception] = None

        for attempt in range(attempts):
            try:
                content, finish_reason = await self._attempt(messages, params, deadline)
            except TransientError as e:
                last_err = e
                if attempt + 1 >= attempts:
                    break
                delay = self.backoff(attempt)
                if deadline is not None and self._remaining(deadline) <= delay:
                    raise UpstreamTimeout("Deadline exceeded before the LLM call could be retried") from e
                log.warning(f"{e}. retrying in {delay:.2f}s (attempt {attempt+1}/{attempts})")
                await self._sleep(delay)
                continue

            return CompletionResult(content=content, finish_reason=finish_reason, attempts=attempt + 1)

        log.error(f"LLM call failed after {attempts} attempts: {last_err}")
        raise UpstreamUnavailable(f"LLM provider unavailable after {attempts} attempts") from last_err

    async def _attempt(
        self, messages: list[dict[str, str]], params: CompletionParams, deadline: Optional[float]
    ) -> tuple[str, Optional[str]]:
        budget = params.timeout
        if deadline is not None:
            remaining = self._remaining(deadline)
            if remaining <= 0:
                raise UpstreamTimeout("Deadline exceeded before the LLM call")
            budget = min(budget, remaining)

        url = f"{self.base_url}/chat/completions"
        headers = {"Authorization": f"Bearer {self.api_key}"}
        payload = {
            "model": params.model,
            "messages": messages,
            "temperature": params.temperature,
            "max_tokens": params.max_tokens,
        }

        try:
            r = await asyncio.wait_for(self._http().post(url, headers=headers, json=payload), timeout=budget)
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            if deadline is not None and self._remaining(deadline) <= 0:
                raise UpstreamTimeout("Deadline exceeded during the LLM call") from e
            raise TransientError(f"LLM call timed out after {budget:.1f}s") from e
        except httpx.TransportError as e:
            raise TransientError(f"LLM transport error: {type(e).__name__}") from e

        if r.status_code == 429 or r.status_code >= 500:
            raise TransientError(f"LLM transient {r.status_code}")

        if r.status_code >= 400:
            log.warning(f"LLM rejected request {r.status_code}: {redact_excerpt(r.text)}")
            raise UpstreamRejected(f"LLM provider rejected the request ({r.status_code})")

        try:
            choice = r.json()["choices"][0]
            content = choice["message"].get("content")
            finish_reason = choice.get("finish_reason")
        except (ValueError, KeyError, IndexError, TypeError, AttributeError) as e:
            log.warning(f"Unexpected LLM envelope: {redact_excerpt(r.text)}")
            raise UpstreamRejected("Malformed LLM response envelope") from e

        if finish_reason != "stop":
            raise Truncated(finish_reason)
        if not isinstance(content, str):
            raise UpstreamRejected("LLM response has no text content")
        return content, finish_reason
