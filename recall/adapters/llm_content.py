"""LLM content adapter — implements AIContentPort over recall.core.llm."""

from __future__ import annotations

from typing import Any

from recall.core import llm


class LLMContentGenerator:
    """AIContentPort backed by the configured LLM provider."""

    def __init__(self, timeout_seconds: float = 15.0) -> None:
        self._timeout = timeout_seconds

    def is_configured(self) -> bool:
        return llm.is_configured()

    async def generate_json(self, prompt: str, max_tokens: int = 256) -> Any:
        return await llm.complete_json(prompt, max_tokens=max_tokens, timeout=self._timeout)
