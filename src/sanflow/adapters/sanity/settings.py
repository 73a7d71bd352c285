"""Ledger persistence in ``webflowSyncSettings`` documents of the source dataset."""

from __future__ import annotations

from datetime import UTC, datetime
from logging import getLogger
from typing import TYPE_CHECKING, Final

if TYPE_CHECKING:
    from .client import SanityClient

log = getLogger(__name__)

SETTINGS_DOCUMENT_TYPE: Final[str] = "webflowSyncSettings"
SETTINGS_FIELDS: Final[dict[str, str]] = {
    "id-mappings": "idMappings",
    "sync-hashes": "hashes",
    "asset-mappings": "assetMappings",
    "sync-timestamps": "lastSyncTimestamps",
}
DEFAULT_FIELD: Final[str] = "payload"


class SanitySettingsStore:
    """Each key is stored as its own document with a JSON string field."""

    def __init__(self, client: SanityClient) -> None:
        self._client = client

    async def load(self, key: str) -> str | None:
        document = await self._client.query("*[_id == $id][0]", {"id": key})
        if not isinstance(document, dict):
            return None
        value = document.get(_field_for(key))
        return value if isinstance(value, str) else None

    async def save(self, key: str, payload: str) -> None:
        await self._client.create_or_replace(
            {
                "_id": key,
                "_type": SETTINGS_DOCUMENT_TYPE,
                _field_for(key): payload,
                "lastUpdated": datetime.now(UTC).isoformat(),
            }
        )
        log.debug("Saved settings document %s (%s bytes)", key, len(payload))


def _field_for(key: str) -> str:
    return SETTINGS_FIELDS.get(key, DEFAULT_FIELD)
