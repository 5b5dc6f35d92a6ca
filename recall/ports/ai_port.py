"""AI content port — text prompt in, parsed JSON out.

Implementations must bound every call with a timeout and raise on
failure; callers fall back to deterministic wording.
"""

from __future__ import annotations

from typing import Any, Protocol


class AIContentPort(Protocol):
    """Abstract AI wording interface used by core modules."""

    def is_configured(self) -> bool: ...

    async def generate_json(self, prompt: str, max_tokens: int = 256) -> Any: ...
