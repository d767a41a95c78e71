"""Abstract base class for completion sources.

Defines the CompletionSource interface the stream producer consumes.
The producer never calls provider SDKs directly.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator

from chatrelay.schemas.config import ModelConfig


class CompletionSource(ABC):
    """Anything that turns a message history into an ordered stream of text deltas."""

    def __init__(self, config: ModelConfig) -> None:
        self._config = config

    # ── Identity ──────────────────────────────────────────────

    @property
    def provider_id(self) -> str:
        """Provider identifier (e.g. 'openai', 'anthropic')."""
        return self._config.provider

    @property
    def model_id(self) -> str:
        """LiteLLM model identifier used for routing."""
        return self._config.model

    @property
    def display_name(self) -> str:
        return self._config.display_name or self._config.model

    @property
    def config(self) -> ModelConfig:
        return self._config

    # ── Core interface ────────────────────────────────────────

    @abstractmethod
    def stream(
        self,
        messages: list[dict[str, str]],
        system: str,
        *,
        timeout: int | None = None,
    ) -> AsyncIterator[str]:
        """Open one upstream completion and yield its text deltas in order.

        Args:
            messages: Conversation messages in OpenAI format
                      (list of {"role": ..., "content": ...} dicts).
            system: System prompt prepended to the request.
            timeout: Timeout in seconds; defaults to the configured value.

        Returns:
            An async iterator of non-empty text fragments. Closing it early
            (aclose) abandons the upstream call on a best-effort basis.

        Raises:
            CompletionError: If the upstream call fails, either while
                opening or mid-stream.
        """
