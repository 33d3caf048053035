"""
Contractbook - LLM Service

Chat completions for the safety audit classifier, against any
OpenAI-compatible /chat/completions endpoint (OpenRouter by default). A mock
provider answers with a canned verdict for tests and keyless local runs.

Without an API key the audit pass is skipped, so a missing key is not an
error at startup.
"""

from __future__ import annotations

import asyncio
import re
import time
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

logger = structlog.get_logger(__name__)

OPENROUTER_API_BASE = "https://openrouter.ai/api/v1"

# Attribution headers sent with every OpenRouter request
OPENROUTER_HEADERS = {
    "HTTP-Referer": "https://github.com/clawcontract",
    "X-Title": "ClawContractBook Verification Worker",
}

_FENCE_OPEN = re.compile(r"^```(?:json)?\n?", re.MULTILINE)
_FENCE_CLOSE = re.compile(r"\n?```\s*$", re.MULTILINE)


class LLMProvider(str, Enum):
    OPENAI = "openai"  # any OpenAI-compatible gateway
    MOCK = "mock"


@dataclass
class LLMConfig:
    """Provider, model and request limits for the audit classifier."""
    provider: LLMProvider = LLMProvider.OPENAI
    model: str = "anthropic/claude-sonnet-4-20250514"
    api_key: str | None = None
    api_base: str | None = OPENROUTER_API_BASE
    max_tokens: int = 4096
    temperature: float | None = None
    timeout_seconds: float = 60.0
    max_retries: int = 3
    extra_headers: dict[str, str] = field(default_factory=lambda: dict(OPENROUTER_HEADERS))


@dataclass
class LLMMessage:
    role: str  # system | user | assistant
    content: str


@dataclass
class LLMResponse:
    content: str
    model: str
    tokens_used: int = 0
    finish_reason: str = "stop"
    latency_ms: float = 0.0


class LLMConfigurationError(Exception):
    """The service cannot be built from the given config."""


class LLMProviderError(Exception):
    """The provider answered with an error or an empty completion."""


def strip_code_fence(content: str) -> str:
    """Remove a surrounding ``` or ```json fence from a completion."""
    cleaned = _FENCE_OPEN.sub("", content.strip(), count=1)
    return _FENCE_CLOSE.sub("", cleaned, count=1).strip()


class LLMProviderBase(ABC):

    @abstractmethod
    async def complete(
        self,
        messages: list[LLMMessage],
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> LLMResponse:
        ...

    async def close(self) -> None:
        return None


class OpenAIProvider(LLMProviderBase):
    """Provider speaking the OpenAI chat-completions protocol."""

    def __init__(
        self,
        api_key: str,
        model: str,
        api_base: str | None = None,
        timeout: float = 60.0,
        extra_headers: dict[str, str] | None = None,
    ):
        self._api_key = api_key
        self._model = model
        self._endpoint = f"{(api_base or OPENROUTER_API_BASE).rstrip('/')}/chat/completions"
        self._timeout = timeout
        self._extra_headers = extra_headers or {}
        self._http_client: httpx.AsyncClient | None = None

    def _client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
        return self._http_client

    async def close(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    async def complete(
        self,
        messages: list[LLMMessage],
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> LLMResponse:
        """
        POST one chat-completions request.

        Raises:
            LLMProviderError: On an HTTP error status, an ``error`` object in
                the body, or a completion without content
        """
        started = time.monotonic()

        body: dict[str, Any] = {
            "model": self._model,
            "messages": [{"role": m.role, "content": m.content} for m in messages],
            "max_tokens": max_tokens or 4096,
        }
        if temperature is not None:
            body["temperature"] = temperature

        response = await self._client().post(
            self._endpoint,
            headers={"Authorization": f"Bearer {self._api_key}", **self._extra_headers},
            json=body,
        )
        if response.is_error:
            raise LLMProviderError(
                f"LLM API error ({response.status_code}): {response.text[:200]}"
            )
        data = response.json()

        error = data.get("error") or {}
        if error.get("message"):
            raise LLMProviderError(f"LLM provider error: {error['message']}")

        choice = (data.get("choices") or [{}])[0]
        content = (choice.get("message") or {}).get("content")
        if not content:
            raise LLMProviderError("No response from LLM provider")

        return LLMResponse(
            content=content,
            model=data.get("model", self._model),
            tokens_used=(data.get("usage") or {}).get("total_tokens", 0),
            finish_reason=choice.get("finish_reason") or "stop",
            latency_ms=(time.monotonic() - started) * 1000,
        )


class MockLLMProvider(LLMProviderBase):
    """
    Canned-answer provider that records every conversation it receives.

    Not for production use.
    """

    def __init__(self, response: str = '{"safe": true}') -> None:
        self.response = response
        self.calls: list[list[LLMMessage]] = []
        logger.warning("mock_llm_provider_initialized", response=response)

    async def complete(
        self,
        messages: list[LLMMessage],
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> LLMResponse:
        self.calls.append(list(messages))
        return LLMResponse(content=self.response, model="mock")


class LLMService:
    """
    Chat completions for the audit classifier, with retries on transport
    failures and provider errors.

    Waits between attempts double from one second. ``sleep`` is injectable
    so callers (and tests) can replace the real delay.
    """

    def __init__(
        self,
        config: LLMConfig | None = None,
        provider: LLMProviderBase | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ):
        self._config = config or LLMConfig()
        self._provider = provider or _build_provider(self._config)
        self._sleep = sleep or asyncio.sleep

        logger.info(
            "llm_service_initialized",
            provider=self._config.provider.value,
            model=self._config.model,
        )

    @property
    def config(self) -> LLMConfig:
        return self._config

    async def complete(
        self,
        messages: list[LLMMessage],
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> LLMResponse:
        """
        Send ``messages`` to the provider, falling back to the configured
        ``max_tokens`` and ``temperature``.

        Raises:
            LLMProviderError: When the last attempt got an error answer
            httpx.HTTPError: When the last attempt failed in transport
        """
        max_tokens = max_tokens or self._config.max_tokens
        if temperature is None:
            temperature = self._config.temperature

        retrying = AsyncRetrying(
            stop=stop_after_attempt(max(self._config.max_retries, 1)),
            wait=wait_exponential(multiplier=1, min=1),
            retry=retry_if_exception_type((httpx.HTTPError, LLMProviderError)),
            before_sleep=_log_retry,
            sleep=self._sleep,
            reraise=True,
        )

        async for attempt in retrying:
            with attempt:
                response = await self._provider.complete(
                    messages=messages,
                    max_tokens=max_tokens,
                    temperature=temperature,
                )

        logger.debug(
            "llm_completion",
            model=response.model,
            tokens=response.tokens_used,
            latency_ms=response.latency_ms,
        )
        return response

    async def close(self) -> None:
        await self._provider.close()
        logger.info("llm_service_closed")


def _build_provider(config: LLMConfig) -> LLMProviderBase:
    if config.provider == LLMProvider.MOCK:
        return MockLLMProvider()
    if not config.api_key:
        raise LLMConfigurationError("API key required for OpenAI-compatible provider")
    return OpenAIProvider(
        api_key=config.api_key,
        model=config.model,
        api_base=config.api_base,
        timeout=config.timeout_seconds,
        extra_headers=config.extra_headers,
    )


def _log_retry(state: RetryCallState) -> None:
    error = state.outcome.exception() if state.outcome else None
    logger.warning("llm_retry", attempt=state.attempt_number, error=str(error))
