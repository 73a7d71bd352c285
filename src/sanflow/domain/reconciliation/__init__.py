"""Reconciliation core: classify source records against the destination and apply the plan.

Flow per collection:
1) fetch source records for the scope
2) list destination items (both locales) and rebuild missing mappings
3) classify each record as new, update or unchanged via mappings and hashes
4) find orphans (complete scopes only)
5) delete orphans, create, update, publish
"""

from __future__ import annotations

from .hashing import ASSET_LOCATOR_KEY, canonical_json, fold_asset_locators, stable_hash
from .plan import Classification, CollectionPlan, CollectionResult, RecordPlan
from .rebuild import rebuild_mappings
from .reconciler import CollectionReconciler, ReconcileScope
from .state import (
    ASSET_MAPPINGS_KEY,
    HASHES_KEY,
    ID_MAPPINGS_KEY,
    SYNC_TIMESTAMPS_KEY,
    AssetEntry,
    AssetLedger,
    HashLedger,
    IdentityMappingStore,
    ReconciliationState,
    SyncTimestamps,
)

__all__ = [
    "ASSET_LOCATOR_KEY",
    "ASSET_MAPPINGS_KEY",
    "HASHES_KEY",
    "ID_MAPPINGS_KEY",
    "SYNC_TIMESTAMPS_KEY",
    "AssetEntry",
    "AssetLedger",
    "Classification",
    "CollectionPlan",
    "CollectionReconciler",
    "CollectionResult",
    "HashLedger",
    "IdentityMappingStore",
    "ReconcileScope",
    "ReconciliationState",
    "RecordPlan",
    "SyncTimestamps",
    "canonical_json",
    "fold_asset_locators",
    "rebuild_mappings",
    "stable_hash",
]
