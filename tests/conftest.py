"""Shared fixtures: a scripted completion source for the streaming tests."""

from __future__ import annotations

import asyncio

import pytest

from chatrelay.providers.base import CompletionSource
from chatrelay.schemas.config import ModelConfig


class ScriptedSource(CompletionSource):
    """Yields fixed deltas, then optionally raises or hangs forever."""

    def __init__(
        self,
        deltas: list[str],
        *,
        error: Exception | None = None,
        hang: bool = False,
    ) -> None:
        super().__init__(ModelConfig(
            provider="test",
            model="test-model",
            display_name="Test Model",
            api_key_env="TEST_API_KEY",
        ))
        self.deltas = deltas
        self.error = error
        self.hang = hang
        self.requests: list[tuple[list[dict[str, str]], str]] = []
        self.closed = False

    async def stream(self, messages, system, *, timeout=None):
        self.requests.append((messages, system))
        try:
            for delta in self.deltas:
                await asyncio.sleep(0)
                yield delta
            if self.error is not None:
                raise self.error
            if self.hang:
                await asyncio.Event().wait()
        finally:
            self.closed = True


@pytest.fixture
def make_source():
    """Factory for ScriptedSource; defaults to a three-delta reply."""

    def _make_source(
        deltas: list[str] | None = None,
        *,
        error: Exception | None = None,
        hang: bool = False,
    ) -> ScriptedSource:
        if deltas is None:
            deltas = ["Hi", " there", "!"]
        return ScriptedSource(deltas, error=error, hang=hang)

    return _make_source
