"""Port for reading records from the source content store."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from sanflow.domain.model import SourceRecord


@dataclass(slots=True, frozen=True)
class ReferenceFilter:
    """Keep only documents whose ``field`` references one of ``ids``."""

    field: str
    ids: tuple[str, ...]


@dataclass(slots=True, frozen=True)
class SourceQuery:
    """Read-only query for one collection.

    ``projection`` and ``order`` are expressed in the source store's query
    language; ``item_id`` narrows the query to one record (published or draft),
    ``since`` to records updated after an ISO timestamp and ``referencing`` to
    records pointing at given documents.
    """

    collection_key: str
    document_type: str
    projection: str
    order: str = "_createdAt asc"
    item_id: str | None = None
    since: str | None = None
    limit: int | None = None
    referencing: ReferenceFilter | None = None


@runtime_checkable
class SourceStore(Protocol):
    async def fetch_records(self, query: SourceQuery) -> list[SourceRecord]: ...
