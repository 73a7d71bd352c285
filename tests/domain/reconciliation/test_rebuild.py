from __future__ import annotations

from sanflow.domain.model import DestinationRecord
from sanflow.domain.reconciliation import IdentityMappingStore, rebuild_mappings
from tests.support.fakes import WIDGET, make_record


def _item(destination_id: str, *, slug: str, name: str) -> DestinationRecord:
    return DestinationRecord(destination_id=destination_id, field_data={"slug": slug, "name": name})


def test_rebuild_matches_slug_then_name_then_generated_slug() -> None:
    records = [
        make_record("a", "Alpha", slug="alpha"),
        make_record("b", "Beta"),
        make_record("c", "Gamma Ray"),
        make_record("d", "Delta"),
    ]
    items = [
        _item("wf-1", slug="alpha", name="Renamed"),
        _item("wf-2", slug="beta-old", name="Beta"),
        _item("wf-3", slug="gamma-ray", name="Something else"),
        _item("wf-4", slug="zeta", name="Zeta"),
    ]
    mappings = IdentityMappingStore()

    rebuilt = rebuild_mappings(WIDGET, records, items, mappings)

    assert rebuilt == 3
    assert mappings.for_collection("widget") == {"a": "wf-1", "b": "wf-2", "c": "wf-3"}
    assert mappings.source_for("widget", "wf-4") is None


def test_rebuild_claims_each_record_once() -> None:
    records = [make_record("a", "Alpha")]
    items = [
        _item("wf-1", slug="alpha", name="Alpha"),
        _item("wf-2", slug="alpha-2", name="Alpha"),
    ]
    mappings = IdentityMappingStore()

    rebuilt = rebuild_mappings(WIDGET, records, items, mappings)

    assert rebuilt == 1
    assert mappings.get("widget", "a") == "wf-1"


def test_rebuild_ignores_items_without_slug_or_name() -> None:
    records = [make_record("a", "Alpha")]
    items = [DestinationRecord(destination_id="wf-1", field_data={})]
    mappings = IdentityMappingStore()

    assert rebuild_mappings(WIDGET, records, items, mappings) == 0
    assert len(mappings) == 0
