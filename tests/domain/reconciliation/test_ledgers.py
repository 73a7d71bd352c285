from __future__ import annotations

import asyncio
import json

from sanflow.domain.reconciliation import (
    ASSET_MAPPINGS_KEY,
    HASHES_KEY,
    ID_MAPPINGS_KEY,
    SYNC_TIMESTAMPS_KEY,
    AssetLedger,
    HashLedger,
    IdentityMappingStore,
    ReconciliationState,
    SyncTimestamps,
    stable_hash,
)
from tests.support.fakes import MemorySettingsStore


def test_hash_ignores_key_order() -> None:
    first = {"name": "Alpha", "image": {"url": "https://cdn/a.jpg", "alt": "A"}, "year": 2020}
    second = {"year": 2020, "image": {"alt": "A", "url": "https://cdn/a.jpg"}, "name": "Alpha"}

    assert stable_hash(first) == stable_hash(second)


def test_hash_changes_with_nested_asset_locator() -> None:
    before = {"name": "Alpha", "gallery": [{"url": "https://cdn/a.jpg", "alt": ""}]}
    after = {"name": "Alpha", "gallery": [{"url": "https://cdn/b.jpg", "alt": ""}]}

    assert stable_hash(before) != stable_hash(after)


def test_hash_changes_with_any_field() -> None:
    base = {"name": "Alpha", "price": "100", "creator": "wf-1"}

    digests = {
        stable_hash(base),
        stable_hash({**base, "name": "Alpha!"}),
        stable_hash({**base, "price": "101"}),
        stable_hash({**base, "creator": "wf-2"}),
    }

    assert len(digests) == 4


def test_hash_exclusion() -> None:
    assert stable_hash({"name": "A", "slug": "a"}, exclude=("slug",)) == stable_hash({"name": "A"})


def test_mapping_is_one_to_one() -> None:
    mappings = IdentityMappingStore()
    mappings.set("artwork", "a", "wf-1")
    mappings.set("artwork", "b", "wf-1")

    assert mappings.get("artwork", "a") is None
    assert mappings.get("artwork", "b") == "wf-1"
    assert mappings.source_for("artwork", "wf-1") == "b"

    mappings.set("artwork", "b", "wf-2")
    assert mappings.source_for("artwork", "wf-1") is None
    assert len(mappings) == 1


def test_mapping_collections_are_independent() -> None:
    mappings = IdentityMappingStore()
    mappings.set("artwork", "x", "wf-1")
    mappings.set("creator", "x", "wf-1")

    assert mappings.for_collection("artwork") == {"x": "wf-1"}
    assert mappings.has_collection("creator")
    assert not mappings.has_collection("article")
    assert mappings.delete("artwork", "x") == "wf-1"
    assert mappings.get("creator", "x") == "wf-1"


def test_mapping_round_trip_and_nested_layout() -> None:
    mappings = IdentityMappingStore()
    mappings.set("artwork", "a", "wf-1")

    restored = IdentityMappingStore.loads(mappings.dumps())
    nested = IdentityMappingStore.loads(json.dumps({"creator": {"c1": "wf-9"}}))

    assert restored.get("artwork", "a") == "wf-1"
    assert nested.get("creator", "c1") == "wf-9"


def test_unreadable_ledgers_start_empty() -> None:
    assert len(IdentityMappingStore.loads("{not json")) == 0
    assert len(HashLedger.loads("[1, 2]")) == 0
    assert len(HashLedger.loads(json.dumps({"no-collection": "x", "artwork:a": "d"}))) == 1
    assert len(AssetLedger.loads(None)) == 0


def test_asset_ledger_reports_changes() -> None:
    ledger = AssetLedger()

    assert ledger.record("image-1", "https://cdn/a.jpg", filename="a.jpg")
    assert not ledger.record("image-1", "https://cdn/a.jpg", filename="a.jpg")
    assert ledger.record("image-1", "https://cdn/b.jpg", filename="b.jpg")

    restored = AssetLedger.loads(ledger.dumps())
    entry = restored.get("image-1")
    assert entry is not None
    assert entry.url == "https://cdn/b.jpg"
    assert entry.filename == "b.jpg"


def test_state_purge_and_persistence() -> None:
    store = MemorySettingsStore()
    state = ReconciliationState()
    state.mappings.set("artwork", "a", "wf-1")
    state.mappings.set("artwork", "b", "wf-2")
    state.hashes.set("artwork", "a", "digest-a")
    state.hashes.set("artwork", "b", "digest-b")
    state.assets.record("image-1", "https://cdn/a.jpg")

    assert state.purge("artwork", "a") == "wf-1"
    asyncio.run(state.save_all(store))
    loaded = asyncio.run(ReconciliationState.load_all(store))

    assert store.saves == [ID_MAPPINGS_KEY, HASHES_KEY, ASSET_MAPPINGS_KEY, SYNC_TIMESTAMPS_KEY]
    assert loaded.mappings.get("artwork", "a") is None
    assert loaded.hashes.get("artwork", "a") is None
    assert loaded.mappings.get("artwork", "b") == "wf-2"
    assert loaded.hashes.get("artwork", "b") == "digest-b"
    assert loaded.assets.get("image-1") is not None


def test_bind_drops_the_hash_of_a_displaced_source() -> None:
    state = ReconciliationState()
    state.mappings.set("artwork", "old", "wf-1")
    state.hashes.set("artwork", "old", "digest-old")

    state.bind("artwork", "new", "wf-1")

    assert state.mappings.get("artwork", "new") == "wf-1"
    assert state.mappings.get("artwork", "old") is None
    assert state.hashes.get("artwork", "old") is None
    assert state.mappings.set("artwork", "new", "wf-1") is None


def test_sync_timestamps_round_trip() -> None:
    timestamps = SyncTimestamps()
    timestamps.set("artwork", "2025-03-01T10:00:00Z")

    restored = SyncTimestamps.loads(timestamps.dumps())

    assert restored.get("artwork") == "2025-03-01T10:00:00Z"
    assert restored.get("creator") is None
    assert len(SyncTimestamps.loads("{broken")) == 0
    assert len(SyncTimestamps.loads(json.dumps({"artwork": 3, "creator": "t"}))) == 1
