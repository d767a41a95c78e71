"""LiteLLM adapter implementing the CompletionSource interface.

Routes streaming completion requests to any provider via LiteLLM's
unified API. Retries transient failures while opening the stream with
exponential backoff; failures after the first delta are not retried.
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import AsyncIterator

import litellm

# Suppress LiteLLM's "Give Feedback / Get Help" and "Provider List" banners
litellm.suppress_debug_info = True

from chatrelay.errors import CompletionError
from chatrelay.providers.base import CompletionSource
from chatrelay.schemas.config import ModelConfig

logger = logging.getLogger(__name__)

# Max retries for transient failures
_MAX_RETRIES = 3
_BASE_BACKOFF = 1.0  # seconds


def short_error_reason(error: BaseException) -> str:
    """Extract a short, user-friendly reason from a LiteLLM error.

    Maps error types and status codes to concise descriptions instead
    of dumping full JSON error payloads.
    """
    error_str = str(error).lower()
    if "rate" in error_str or "429" in error_str:
        return "rate limit"
    if "overloaded" in error_str or "529" in error_str:
        return "overloaded"
    if "timeout" in error_str or isinstance(error, TimeoutError):
        return "timeout"
    if "503" in error_str or "unavailable" in error_str:
        return "service unavailable"
    if "500" in error_str or "internal" in error_str:
        return "server error"
    if "connection" in error_str:
        return "connection error"
    # Fallback: first 80 chars of the error
    return str(error)[:80]


class LiteLLMCompletionSource(CompletionSource):
    """Streaming completion source powered by litellm.acompletion()."""

    def __init__(self, config: ModelConfig) -> None:
        super().__init__(config)
        # Resolve API key from environment
        self._api_key = os.environ.get(config.api_key_env, "")

    async def stream(
        self,
        messages: list[dict[str, str]],
        system: str,
        *,
        timeout: int | None = None,
    ) -> AsyncIterator[str]:
        """Stream deltas token-by-token from the configured model."""
        full_messages = [{"role": "system", "content": system}, *messages]
        kwargs = self._build_completion_kwargs(
            full_messages, timeout or self._config.timeout,
        )

        response = await self._call_streaming_with_retry(kwargs)

        try:
            async for chunk in response:
                delta = ""
                if chunk.choices and chunk.choices[0].delta:
                    delta = chunk.choices[0].delta.content or ""
                if delta:
                    yield delta
        except Exception as e:
            raise CompletionError(
                f"Stream from {self._config.model} broke off: {short_error_reason(e)}"
            ) from e

    def _build_completion_kwargs(
        self,
        messages: list[dict[str, str]],
        timeout: int,
    ) -> dict:
        """Build the kwargs dict for litellm.acompletion."""
        kwargs: dict = {
            "model": self._config.model,
            "messages": messages,
            "timeout": float(timeout),
            "max_tokens": self._config.max_tokens,
            "stream": True,
        }

        # Set API key if available
        if self._api_key:
            kwargs["api_key"] = self._api_key

        # Set custom API base if configured
        if self._config.api_base:
            kwargs["api_base"] = self._config.api_base

        return kwargs

    async def _call_streaming_with_retry(self, kwargs: dict):
        """Call litellm.acompletion with stream=True and retry on failure.

        Retries on transient errors (rate limits, server errors, timeouts).
        Non-retryable errors (auth, invalid request) are raised immediately.

        Raises:
            CompletionError: If the call fails after all retries or with a
                non-retryable error.
        """
        last_error: Exception | None = None

        for attempt in range(_MAX_RETRIES):
            try:
                return await litellm.acompletion(**kwargs)
            except TimeoutError:
                last_error = TimeoutError(
                    f"Streaming call timed out after {kwargs.get('timeout')}s "
                    f"(attempt {attempt + 1}/{_MAX_RETRIES})"
                )
            except litellm.AuthenticationError:
                raise CompletionError(
                    f"Authentication failed for {self._config.model}. "
                    f"Check that {self._config.api_key_env} is set correctly."
                ) from None
            except litellm.BadRequestError as e:
                raise CompletionError(
                    f"Bad request to {self._config.model}: {e}"
                ) from e
            except (
                litellm.RateLimitError,
                litellm.ServiceUnavailableError,
                litellm.InternalServerError,
                litellm.APIConnectionError,
            ) as e:
                last_error = e

            if attempt < _MAX_RETRIES - 1:
                backoff = _BASE_BACKOFF * (2**attempt)
                logger.warning(
                    "Streaming retry %d/%d for %s (%s, backoff: %.1fs)",
                    attempt + 1, _MAX_RETRIES, self.display_name,
                    short_error_reason(last_error), backoff,
                )
                await asyncio.sleep(backoff)

        raise CompletionError(
            f"Streaming call to {self._config.model} failed after "
            f"{_MAX_RETRIES} retries: {short_error_reason(last_error)}"
        ) from last_error
