"""Key-value store port — the only state the reminder engine persists itself."""

from __future__ import annotations

from typing import Protocol


class KeyValueStore(Protocol):
    """String-to-string persistent store."""

    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str) -> None: ...

    async def remove(self, key: str) -> None: ...
