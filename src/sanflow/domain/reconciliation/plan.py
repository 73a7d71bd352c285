"""Classification and result types shared by the reconciler and the scheduler.

The plan is the contract between classification (read-only: mappings, ledger,
destination listing) and execution (writes through the destination store).
A dry run reports the plan and stops there.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from sanflow.domain.model import DestinationRecord, FieldMap, SourceRecord


class Classification(StrEnum):
    """Outcome of comparing one source record with the destination."""

    NEW = "new"
    UPDATE = "update"
    UNCHANGED = "unchanged"
    SKIPPED = "skipped"


@dataclass(slots=True, kw_only=True)
class RecordPlan:
    """Planned operation for a single source record."""

    record: SourceRecord
    classification: Classification
    primary: FieldMap
    secondary: FieldMap | None = None
    digest: str
    destination_id: str | None = None
    adopted: bool = False


@dataclass(slots=True)
class CollectionPlan:
    """Aggregate plan for one collection in one run."""

    collection_key: str
    records: list[RecordPlan] = field(default_factory=list["RecordPlan"])
    orphans: list[DestinationRecord] = field(default_factory=list["DestinationRecord"])
    skipped: int = 0

    def of(self, classification: Classification) -> list[RecordPlan]:
        return [plan for plan in self.records if plan.classification is classification]


@dataclass(slots=True)
class CollectionResult:
    collection_key: str
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    deleted: int = 0
    skipped: int = 0
    failed: int = 0
    published: int = 0
    errors: list[str] = field(default_factory=list[str])
    destination_ids: dict[str, str] = field(default_factory=dict[str, str])
    cancelled: bool = False

    @property
    def synced(self) -> int:
        return self.created + self.updated

    def record_error(self, message: str) -> None:
        self.errors.append(message)
