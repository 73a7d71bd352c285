"""Reconstruct lost identity mappings from destination content."""

from __future__ import annotations

from logging import getLogger
from typing import TYPE_CHECKING

from sanflow.domain.catalog import source_slug
from sanflow.domain.richtext import generate_slug

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from sanflow.domain.catalog import CollectionSpec
    from sanflow.domain.model import DestinationRecord, SourceRecord
    from sanflow.domain.reconciliation.state import IdentityMappingStore

log = getLogger(__name__)

type Matcher = Callable[[SourceRecord, DestinationRecord], bool]


def rebuild_mappings(
    spec: CollectionSpec,
    records: Sequence[SourceRecord],
    destination_items: Sequence[DestinationRecord],
    mappings: IdentityMappingStore,
) -> int:
    """Bind destination items to source records by slug, then name, then generated slug.

    For each destination item the matchers are tried in that order and the first
    unclaimed source record that matches wins. Unmatched items stay unmapped and
    are left to orphan handling. Returns the number of mappings created.
    """

    def by_slug(record: SourceRecord, item: DestinationRecord) -> bool:
        return item.slug is not None and source_slug(record) == item.slug

    def by_name(record: SourceRecord, item: DestinationRecord) -> bool:
        return item.name is not None and spec.name_of(record) == item.name

    def by_generated_slug(record: SourceRecord, item: DestinationRecord) -> bool:
        name = spec.name_of(record)
        return item.slug is not None and bool(name) and generate_slug(name) == item.slug

    matchers: tuple[Matcher, ...] = (by_slug, by_name, by_generated_slug)
    claimed: set[str] = set()
    rebuilt = 0
    for item in destination_items:
        match = next(
            (
                record
                for matcher in matchers
                for record in records
                if record.source_id not in claimed and matcher(record, item)
            ),
            None,
        )
        if match is None:
            continue
        mappings.set(spec.key, match.source_id, item.destination_id)
        claimed.add(match.source_id)
        rebuilt += 1

    log.info(
        "Rebuilt %s %s mappings from %s destination items",
        rebuilt,
        spec.key,
        len(destination_items),
    )
    return rebuilt
