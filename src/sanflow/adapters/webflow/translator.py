"""Translate Webflow payloads into domain records."""

from __future__ import annotations

from typing import TYPE_CHECKING

from sanflow.domain.model import DestinationRecord
from sanflow.domain.ports import DestinationCollection

if TYPE_CHECKING:
    from .schema import WebflowCollection, WebflowItem


def to_destination_record(item: WebflowItem) -> DestinationRecord:
    return DestinationRecord(
        destination_id=item.id,
        field_data=dict(item.field_data),
        is_draft=item.is_draft,
        is_archived=item.is_archived,
        cms_locale_id=item.cms_locale_id,
        last_published=item.last_published,
    )


def to_destination_collection(collection: WebflowCollection) -> DestinationCollection:
    return DestinationCollection(
        collection_id=collection.id,
        display_name=collection.display_name,
        singular_name=collection.singular_name,
        slug=collection.slug,
    )
