"""Locale projection of source records into destination field maps.

A collection declares its destination fields as :class:`FieldRule` entries.
Structural rules (slug, relations, ordering, numbers, images) are written only
with the primary locale; localized rules are written with both.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import StrEnum
from logging import getLogger
from typing import TYPE_CHECKING, Any

from sanflow.domain.errors import ProjectionError
from sanflow.domain.model import FieldMap, LocaleRole

if TYPE_CHECKING:
    from collections.abc import Sequence

    from sanflow.domain.model import SourceRecord
    from sanflow.domain.reconciliation.state import IdentityMappingStore

log = getLogger(__name__)


class FieldKind(StrEnum):
    STRUCTURAL = "structural"
    LOCALIZED = "localized"


type Extractor = Callable[[ProjectionContext], Any]


@dataclass(slots=True, frozen=True)
class FieldRule:
    name: str
    extract: Extractor
    kind: FieldKind = FieldKind.STRUCTURAL
    omit_when_none: bool = False


def structural(name: str, extract: Extractor, *, omit_when_none: bool = False) -> FieldRule:
    return FieldRule(name, extract, FieldKind.STRUCTURAL, omit_when_none)


def localized_field(name: str, extract: Extractor, *, omit_when_none: bool = False) -> FieldRule:
    return FieldRule(name, extract, FieldKind.LOCALIZED, omit_when_none)


def localized(
    value: Any,
    role: LocaleRole,
    default: Any = "",
    *,
    fallback: bool = True,
) -> Any:
    """Pick the role's language from ``{"en": ..., "de": ...}``.

    Plain values are returned as-is. Missing or empty values fall back to the
    other language (unless ``fallback`` is off) and then to ``default``.
    """

    if not isinstance(value, Mapping):
        return value if value not in (None, "") else default
    chosen = value.get(role.language)
    if chosen in (None, "", []) and fallback:
        chosen = value.get(role.fallback_language)
    return chosen if chosen not in (None, "", []) else default


def reference_id(value: Any) -> str | None:
    """Source id of a reference, whether raw (``_ref``), expanded (``_id``) or a string."""

    if isinstance(value, str):
        return value or None
    if isinstance(value, Mapping):
        for key in ("_ref", "_id"):
            ref = value.get(key)
            if isinstance(ref, str) and ref:
                return ref
    return None


class RelationResolver:
    """Resolve source references through the referenced collection's mappings.

    An unmapped target degrades to ``None`` (or is left out of a list) and is
    logged, the record itself is still projected.
    """

    def __init__(self, mappings: IdentityMappingStore | None = None) -> None:
        self._mappings = mappings
        self.unresolved: list[tuple[str, str]] = []

    def resolve(self, collection_key: str, value: Any, *, referrer: str = "") -> str | None:
        source_id = reference_id(value)
        if source_id is None:
            return None
        destination_id = (
            self._mappings.get(collection_key, source_id) if self._mappings is not None else None
        )
        if destination_id is None:
            self.unresolved.append((collection_key, source_id))
            log.warning(
                "Reference %s:%s from %s is not mapped yet, leaving it empty",
                collection_key,
                source_id,
                referrer or "unknown record",
            )
        return destination_id

    def resolve_many(self, collection_key: str, values: Any, *, referrer: str = "") -> list[str]:
        if not isinstance(values, list):
            return []
        resolved = (self.resolve(collection_key, value, referrer=referrer) for value in values)
        return [destination_id for destination_id in resolved if destination_id]


@dataclass(slots=True, frozen=True)
class ProjectionContext:
    record: SourceRecord
    role: LocaleRole
    relations: RelationResolver

    def get(self, name: str, default: Any = None) -> Any:
        return self.record.data.get(name, default)

    def text(self, name: str, default: Any = "", *, fallback: bool = True) -> Any:
        return localized(self.get(name), self.role, default, fallback=fallback)

    def ref(self, collection_key: str, name: str) -> str | None:
        return self.relations.resolve(
            collection_key, self.get(name), referrer=self.record.source_id
        )

    def refs(self, collection_key: str, name: str) -> list[str]:
        return self.relations.resolve_many(
            collection_key, self.get(name), referrer=self.record.source_id
        )


def project(
    rules: Sequence[FieldRule],
    record: SourceRecord,
    role: LocaleRole,
    relations: RelationResolver,
) -> FieldMap:
    """Compute the field map of ``record`` for one locale role.

    Raises :class:`ProjectionError` when a rule itself fails; missing content is
    handled by the rules' fallbacks and never raises.
    """

    context = ProjectionContext(record=record, role=role, relations=relations)
    fields: FieldMap = {}
    for rule in rules:
        if role is LocaleRole.SECONDARY and rule.kind is FieldKind.STRUCTURAL:
            continue
        try:
            value = rule.extract(context)
        except Exception as exc:
            raise ProjectionError(record.source_id, rule.name, exc) from exc
        if value is None and rule.omit_when_none:
            continue
        fields[rule.name] = value
    return fields


def image_field(image: Any, role: LocaleRole, alt_fallback: str = "") -> dict[str, str] | None:
    """``{"url", "alt"}`` for an image whose asset was expanded in the query."""

    if not isinstance(image, Mapping):
        return None
    asset = image.get("asset")
    url = asset.get("url") if isinstance(asset, Mapping) else None
    if not isinstance(url, str) or not url:
        return None
    alt = localized(image.get("alt"), role, "")
    if not alt and isinstance(asset, Mapping):
        alt = asset.get("altText") or ""
    return {"url": url, "alt": str(alt or alt_fallback)}


def image_list(images: Any, role: LocaleRole, alt_fallback: str = "") -> list[dict[str, str]]:
    if not isinstance(images, list):
        return []
    fields = (image_field(image, role, alt_fallback) for image in images)
    return [field for field in fields if field is not None]


def asset_references(record: SourceRecord) -> list[dict[str, Any]]:
    """Every expanded asset (``{"_id", "url", ...}``) nested anywhere in the record."""

    found: list[dict[str, Any]] = []

    def walk(value: Any) -> None:
        if isinstance(value, Mapping):
            asset = value.get("asset")
            if (
                isinstance(asset, Mapping)
                and isinstance(asset.get("_id"), str)
                and isinstance(asset.get("url"), str)
            ):
                found.append({**asset, "alt": value.get("alt")})
            for item in value.values():
                walk(item)
        elif isinstance(value, list):
            for item in value:
                walk(item)

    walk(record.data)
    return found
