"""OpenAI-compatible chat completion client used as the decision function.

The client sends a system prompt plus a JSON payload and returns the raw
response text. Callers own parsing and validation of whatever comes back.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any

import httpx

from token_filter_pipeline.retry import retry_async

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.openai.com"
DEFAULT_MODEL = "gpt-4o"
DEFAULT_TIMEOUT = 60.0
DEFAULT_TEMPERATURE = 0.2
DEFAULT_MAX_TOKENS = 4096

RETRY_STATUS_CODES = (429, 500, 502, 503, 504)

# complete(prompt_text, payload) -> response_text
DecisionFunction = Callable[[str, Any], Awaitable[str]]


class LLMClientError(Exception):
    """Base exception for decision-function call failures."""


class LLMTransientError(LLMClientError):
    """Raised for retryable failures (429/5xx, network issues, timeouts)."""


class LLMClient:
    """Async client for an OpenAI-compatible ``/v1/chat/completions`` endpoint."""

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = DEFAULT_BASE_URL,
        model: str = DEFAULT_MODEL,
        temperature: float = DEFAULT_TEMPERATURE,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        timeout: float = DEFAULT_TIMEOUT,
        max_retries: int = 3,
        retry_base_delay: float = 1.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            api_key: Bearer token for the completion endpoint.
            base_url: API host (no trailing ``/v1``).
            model: Model name sent with every request.
            temperature: Sampling temperature.
            max_tokens: Completion token cap.
            timeout: Per-request timeout in seconds.
            max_retries: Retries on transient failures.
            retry_base_delay: Initial backoff delay (doubles per retry).
            transport: Optional httpx transport (used by tests).
        """
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self._max_retries = max_retries
        self._retry_base_delay = retry_base_delay
        self._client = httpx.AsyncClient(
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            },
            timeout=timeout,
            limits=httpx.Limits(max_keepalive_connections=10, max_connections=20),
            transport=transport,
        )

    async def complete(self, prompt_text: str, payload: Any) -> str:
        """Run one completion and return the response text.

        Raises:
            LLMClientError: On non-retryable failures.
            RetryError: When transient failures exhaust every attempt.
        """
        body = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": prompt_text},
                {"role": "user", "content": json.dumps(payload, default=str)},
            ],
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }
        return await retry_async(
            lambda: self._post(body),
            max_retries=self._max_retries,
            base_delay=self._retry_base_delay,
            retry_on=(LLMTransientError,),
            description="LLM completion",
        )

    async def _post(self, body: dict[str, Any]) -> str:
        try:
            response = await self._client.post(f"{self.base_url}/v1/chat/completions", json=body)
        except httpx.TimeoutException as e:
            raise LLMTransientError(f"completion timed out: {e}") from e
        except httpx.TransportError as e:
            raise LLMTransientError(f"completion network error: {e}") from e

        if response.status_code in RETRY_STATUS_CODES:
            raise LLMTransientError(f"completion returned HTTP {response.status_code}")
        if response.status_code >= 400:
            raise LLMClientError(
                f"completion returned HTTP {response.status_code}: {response.text[:200]}"
            )

        try:
            text = response.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise LLMClientError(f"unexpected completion response shape: {e}") from e

        if not isinstance(text, str) or not text.strip():
            raise LLMClientError("empty completion response")
        logger.debug("Completion returned %d characters", len(text))
        return text

    async def close(self) -> None:
        """Close the HTTP client."""
        if not self._client.is_closed:
            await self._client.aclose()
