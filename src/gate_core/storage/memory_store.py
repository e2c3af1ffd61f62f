"""Process-local persistence backend for headless runs and tests."""
from typing import Optional

from .base import KeyValuePersistence


class MemoryPersistence(KeyValuePersistence):
    """Dict-backed gateway; state is lost when the process exits."""

    def __init__(self, initial: Optional[dict[str, str]] = None) -> None:
        self.values: dict[str, str] = dict(initial or {})

    async def _get(self, key: str) -> Optional[str]:
        return self.values.get(key)

    async def _set(self, key: str, value: str) -> None:
        self.values[key] = value

    async def _delete(self, key: str) -> None:
        self.values.pop(key, None)
