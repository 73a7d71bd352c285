"""Domain records exchanged between the stores and the reconciler."""

from __future__ import annotations

from .locales import LocaleMap, LocaleRole
from .records import DestinationRecord, FieldMap, SourceRecord, collection_scoped_key

__all__ = [
    "DestinationRecord",
    "FieldMap",
    "LocaleMap",
    "LocaleRole",
    "SourceRecord",
    "collection_scoped_key",
]
