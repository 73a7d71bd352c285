"""Persistent reconciliation ledgers.

``ReconciliationState`` is owned by the scheduler for one run: it is loaded
from a :class:`~sanflow.domain.ports.SettingsStore` before the first
collection and saved after the last one (or on cancellation). Every ledger is
persisted as one JSON object whose keys are ``collectionKey:sourceId``.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import UTC, datetime
from logging import getLogger
from typing import TYPE_CHECKING, Any, Final

from sanflow.domain.model import collection_scoped_key

if TYPE_CHECKING:
    from sanflow.domain.ports import SettingsStore

log = getLogger(__name__)

ID_MAPPINGS_KEY: Final[str] = "id-mappings"
HASHES_KEY: Final[str] = "sync-hashes"
ASSET_MAPPINGS_KEY: Final[str] = "asset-mappings"
SYNC_TIMESTAMPS_KEY: Final[str] = "sync-timestamps"


def split_scoped_key(key: str) -> tuple[str, str] | None:
    collection_key, sep, source_id = key.partition(":")
    if not sep or not collection_key or not source_id:
        return None
    return collection_key, source_id


def _decode_flat_map(payload: str | None, label: str) -> dict[str, str]:
    """Decode a persisted ledger, starting empty when the payload is unusable.

    A per-collection nested layout (``{collection: {sourceId: value}}``) is
    flattened on the way in.
    """

    if payload is None or not payload.strip():
        return {}
    try:
        raw = json.loads(payload)
    except json.JSONDecodeError:
        log.warning("Could not decode %s ledger, starting from an empty map", label)
        return {}
    if not isinstance(raw, dict):
        log.warning("%s ledger is not a JSON object, starting from an empty map", label)
        return {}

    entries: dict[str, str] = {}
    for key, value in raw.items():
        if isinstance(value, str) and split_scoped_key(key) is not None:
            entries[key] = value
        elif isinstance(value, dict):
            for source_id, nested in value.items():
                if isinstance(nested, str):
                    entries[collection_scoped_key(key, source_id)] = nested
        else:
            log.warning("Dropping malformed %s ledger entry %r", label, key)
    return entries


class IdentityMappingStore:
    """``(collectionKey, sourceId) -> destinationId`` with a reverse index.

    ``set`` replaces any previous destination for the source and unbinds any
    other source of the same collection that pointed at the new destination, so
    both directions stay one-to-one. The unbound source id is returned.
    """

    def __init__(self, entries: dict[str, str] | None = None) -> None:
        self._entries: dict[str, str] = {}
        self._reverse: dict[tuple[str, str], str] = {}
        for key, destination_id in (entries or {}).items():
            parts = split_scoped_key(key)
            if parts is not None:
                self.set(parts[0], parts[1], destination_id)

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, collection_key: str, source_id: str) -> str | None:
        return self._entries.get(collection_scoped_key(collection_key, source_id))

    def set(self, collection_key: str, source_id: str, destination_id: str) -> str | None:
        displaced = self._reverse.get((collection_key, destination_id))
        if displaced == source_id:
            displaced = None
        if displaced is not None:
            self.delete(collection_key, displaced)
        self.delete(collection_key, source_id)
        self._entries[collection_scoped_key(collection_key, source_id)] = destination_id
        self._reverse[(collection_key, destination_id)] = source_id
        return displaced

    def delete(self, collection_key: str, source_id: str) -> str | None:
        destination_id = self._entries.pop(collection_scoped_key(collection_key, source_id), None)
        if destination_id is not None:
            self._reverse.pop((collection_key, destination_id), None)
        return destination_id

    def source_for(self, collection_key: str, destination_id: str) -> str | None:
        return self._reverse.get((collection_key, destination_id))

    def for_collection(self, collection_key: str) -> dict[str, str]:
        prefix = f"{collection_key}:"
        return {
            key.removeprefix(prefix): value
            for key, value in self._entries.items()
            if key.startswith(prefix)
        }

    def has_collection(self, collection_key: str) -> bool:
        prefix = f"{collection_key}:"
        return any(key.startswith(prefix) for key in self._entries)

    @classmethod
    def loads(cls, payload: str | None) -> IdentityMappingStore:
        return cls(_decode_flat_map(payload, "identity mapping"))

    def dumps(self) -> str:
        return json.dumps(self._entries, sort_keys=True)


class HashLedger:
    """``(collectionKey, sourceId) -> digest`` of the last written projection."""

    def __init__(self, entries: dict[str, str] | None = None) -> None:
        self._entries = dict(entries or {})

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, collection_key: str, source_id: str) -> str | None:
        return self._entries.get(collection_scoped_key(collection_key, source_id))

    def set(self, collection_key: str, source_id: str, digest: str) -> None:
        self._entries[collection_scoped_key(collection_key, source_id)] = digest

    def delete(self, collection_key: str, source_id: str) -> None:
        self._entries.pop(collection_scoped_key(collection_key, source_id), None)

    @classmethod
    def loads(cls, payload: str | None) -> HashLedger:
        return cls(_decode_flat_map(payload, "hash"))

    def dumps(self) -> str:
        return json.dumps(self._entries, sort_keys=True)


@dataclass(slots=True, frozen=True)
class AssetEntry:
    url: str
    filename: str | None = None
    alt: str | None = None
    updated_at: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "url": self.url,
            "filename": self.filename,
            "alt": self.alt,
            "updatedAt": self.updated_at,
        }


class AssetLedger:
    """Last seen locator of every source asset, keyed by asset id."""

    def __init__(self, entries: dict[str, AssetEntry] | None = None) -> None:
        self._entries = dict(entries or {})

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, asset_id: str) -> AssetEntry | None:
        return self._entries.get(asset_id)

    def record(
        self,
        asset_id: str,
        url: str,
        *,
        filename: str | None = None,
        alt: str | None = None,
    ) -> bool:
        """Store the asset's locator; return ``True`` when it is new or changed."""

        previous = self._entries.get(asset_id)
        if previous is not None and previous.url == url and previous.alt == alt:
            return False
        self._entries[asset_id] = AssetEntry(
            url=url,
            filename=filename,
            alt=alt,
            updated_at=datetime.now(UTC).isoformat(),
        )
        return True

    @classmethod
    def loads(cls, payload: str | None) -> AssetLedger:
        if payload is None or not payload.strip():
            return cls()
        try:
            raw = json.loads(payload)
        except json.JSONDecodeError:
            log.warning("Could not decode asset ledger, starting from an empty map")
            return cls()
        if not isinstance(raw, dict):
            log.warning("asset ledger is not a JSON object, starting from an empty map")
            return cls()
        entries: dict[str, AssetEntry] = {}
        for asset_id, value in raw.items():
            if isinstance(value, dict) and isinstance(value.get("url"), str):
                entries[asset_id] = AssetEntry(
                    url=value["url"],
                    filename=value.get("filename"),
                    alt=value.get("alt"),
                    updated_at=value.get("updatedAt"),
                )
        return cls(entries)

    def dumps(self) -> str:
        return json.dumps(
            {asset_id: entry.as_dict() for asset_id, entry in self._entries.items()},
            sort_keys=True,
        )


class SyncTimestamps:
    """Start time of the last clean run of every collection, keyed by collection.

    Values are ISO-8601 UTC strings comparable with the source store's
    ``_updatedAt``; an incremental run only fetches records updated afterwards.
    """

    def __init__(self, entries: dict[str, str] | None = None) -> None:
        self._entries = dict(entries or {})

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, collection_key: str) -> str | None:
        return self._entries.get(collection_key)

    def set(self, collection_key: str, timestamp: str) -> None:
        self._entries[collection_key] = timestamp

    @classmethod
    def loads(cls, payload: str | None) -> SyncTimestamps:
        if payload is None or not payload.strip():
            return cls()
        try:
            raw = json.loads(payload)
        except json.JSONDecodeError:
            log.warning("Could not decode sync timestamps, every collection runs in full")
            return cls()
        if not isinstance(raw, dict):
            log.warning("sync timestamps are not a JSON object, every collection runs in full")
            return cls()
        return cls({key: value for key, value in raw.items() if isinstance(value, str)})

    def dumps(self) -> str:
        return json.dumps(self._entries, sort_keys=True)


@dataclass(slots=True)
class ReconciliationState:
    mappings: IdentityMappingStore = field(default_factory=IdentityMappingStore)
    hashes: HashLedger = field(default_factory=HashLedger)
    assets: AssetLedger = field(default_factory=AssetLedger)
    timestamps: SyncTimestamps = field(default_factory=SyncTimestamps)

    def purge(self, collection_key: str, source_id: str) -> str | None:
        """Forget the mapping and hash of one source record."""

        self.hashes.delete(collection_key, source_id)
        return self.mappings.delete(collection_key, source_id)

    def bind(self, collection_key: str, source_id: str, destination_id: str) -> None:
        """Map a source record, dropping the hash of any source it displaces."""

        displaced = self.mappings.set(collection_key, source_id, destination_id)
        if displaced is not None:
            self.hashes.delete(collection_key, displaced)
            log.info(
                "%s: %s now belongs to %s, forgot %s",
                collection_key,
                destination_id,
                source_id,
                displaced,
            )

    @classmethod
    async def load_all(cls, store: SettingsStore) -> ReconciliationState:
        state = cls(
            mappings=IdentityMappingStore.loads(await store.load(ID_MAPPINGS_KEY)),
            hashes=HashLedger.loads(await store.load(HASHES_KEY)),
            assets=AssetLedger.loads(await store.load(ASSET_MAPPINGS_KEY)),
            timestamps=SyncTimestamps.loads(await store.load(SYNC_TIMESTAMPS_KEY)),
        )
        log.info(
            "Loaded reconciliation state: %s mappings, %s hashes, %s assets",
            len(state.mappings),
            len(state.hashes),
            len(state.assets),
        )
        return state

    async def save_all(self, store: SettingsStore) -> None:
        await store.save(ID_MAPPINGS_KEY, self.mappings.dumps())
        await store.save(HASHES_KEY, self.hashes.dumps())
        await store.save(ASSET_MAPPINGS_KEY, self.assets.dumps())
        await store.save(SYNC_TIMESTAMPS_KEY, self.timestamps.dumps())
        log.info(
            "Saved reconciliation state: %s mappings, %s hashes, %s assets",
            len(self.mappings),
            len(self.hashes),
            len(self.assets),
        )
