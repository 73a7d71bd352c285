"""Source and destination record types."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

type FieldMap = dict[str, Any]


def collection_scoped_key(collection_key: str, source_id: str) -> str:
    """Flat ledger key used by the persisted identity and hash maps."""
    return f"{collection_key}:{source_id}"


@dataclass(slots=True, frozen=True)
class SourceRecord:
    """One document read from the source store. Read-only to the reconciler."""

    source_id: str
    collection_key: str
    data: dict[str, Any] = field(default_factory=dict)
    updated_at: str | None = None

    def get(self, name: str, default: Any = None) -> Any:
        return self.data.get(name, default)


@dataclass(slots=True)
class DestinationRecord:
    """An item stored in a destination collection."""

    destination_id: str
    field_data: FieldMap = field(default_factory=dict)
    is_draft: bool = False
    is_archived: bool = False
    cms_locale_id: str | None = None
    last_published: str | None = None

    @property
    def slug(self) -> str | None:
        value = self.field_data.get("slug")
        return value if isinstance(value, str) and value else None

    @property
    def name(self) -> str | None:
        value = self.field_data.get("name")
        return value if isinstance(value, str) and value else None
