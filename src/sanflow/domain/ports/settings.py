"""Port for the persisted settings records backing the reconciliation ledgers."""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class SettingsStore(Protocol):
    """Key/value store of JSON-serialised ledgers.

    ``load`` returns ``None`` when nothing has been saved under ``key`` yet.
    """

    async def load(self, key: str) -> str | None: ...

    async def save(self, key: str, payload: str) -> None: ...
