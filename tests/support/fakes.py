"""In-memory stores implementing the sanflow ports for tests."""

from __future__ import annotations

import itertools
from collections import defaultdict
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from sanflow.domain.catalog import CollectionSpec, source_slug
from sanflow.domain.errors import RemoteError
from sanflow.domain.model import DestinationRecord, LocaleMap, SourceRecord
from sanflow.domain.ports import DestinationCollection
from sanflow.domain.projection import localized_field, structural
from sanflow.domain.richtext import generate_slug

if TYPE_CHECKING:
    from collections.abc import Sequence

    from sanflow.domain.model import FieldMap
    from sanflow.domain.ports import SourceQuery

PRIMARY_LOCALE = "loc-en"
SECONDARY_LOCALE = "loc-de"
BOTH_LOCALES = LocaleMap(primary=PRIMARY_LOCALE, secondary=SECONDARY_LOCALE)


def make_record(
    source_id: str,
    title: str,
    *,
    collection_key: str = "widget",
    slug: str | None = None,
    title_de: str | None = None,
    image_url: str | None = None,
    updated_at: str | None = None,
    **extra: Any,
) -> SourceRecord:
    data: dict[str, Any] = {"title": {"en": title, "de": title_de or f"{title} (de)"}}
    if slug is not None:
        data["slug"] = {"current": slug}
    if image_url is not None:
        data["image"] = {"asset": {"_id": f"image-{source_id}", "url": image_url}}
    data.update(extra)
    return SourceRecord(
        source_id=source_id,
        collection_key=collection_key,
        data=data,
        updated_at=updated_at,
    )


def _referenced_id(record: SourceRecord, field_name: str) -> str | None:
    value = record.get(field_name)
    if not isinstance(value, dict):
        return None
    return value.get("_ref") or value.get("_id")


def _widget_name(record: SourceRecord) -> str | None:
    title = record.get("title")
    return title.get("en") if isinstance(title, dict) else None


def _widget_image(ctx: Any) -> dict[str, str] | None:
    image = ctx.get("image")
    if not isinstance(image, dict):
        return None
    return {"url": image["asset"]["url"], "alt": ""}


WIDGET = CollectionSpec(
    key="widget",
    display_name="Widgets",
    document_type="widget",
    phase=1,
    projection="title, slug, image{asset->{_id, url}}",
    rules=(
        localized_field("name", lambda ctx: ctx.text("title", "Untitled")),
        structural(
            "slug",
            lambda ctx: source_slug(ctx.record) or generate_slug(_widget_name(ctx.record)),
        ),
        structural("image", _widget_image, omit_when_none=True),
    ),
    destination_names=("widgets",),
    name_of=_widget_name,
)


class FakeSource:
    """Source store returning fixed records per collection key."""

    def __init__(self, records: dict[str, list[SourceRecord]] | None = None) -> None:
        self.records: dict[str, list[SourceRecord]] = records or {}
        self.queries: list[SourceQuery] = []

    async def fetch_records(self, query: SourceQuery) -> list[SourceRecord]:
        self.queries.append(query)
        records = list(self.records.get(query.collection_key, []))
        if query.item_id is not None:
            wanted = query.item_id.removeprefix("drafts.")
            return [record for record in records if record.source_id == wanted]
        if query.since is not None:
            since = query.since
            records = [r for r in records if r.updated_at is not None and r.updated_at > since]
        reference = query.referencing
        if reference is not None:
            wanted_ids = set(reference.ids)
            records = [r for r in records if _referenced_id(r, reference.field) in wanted_ids]
        if query.limit is not None:
            records = records[: query.limit]
        return records


@dataclass
class StoredItem:
    item_id: str
    fields: dict[str, FieldMap] = field(default_factory=dict)
    published: bool = False


class FakeDestination:
    """Destination store holding items per collection and per locale.

    ``failures`` queues exceptions per operation name; each call to that
    operation pops and raises the next one.
    """

    def __init__(
        self,
        *,
        locales: LocaleMap = BOTH_LOCALES,
        collections: Sequence[DestinationCollection] = (),
    ) -> None:
        self.locales = locales
        self.collections = list(collections) or [
            DestinationCollection(collection_id="col-widgets", display_name="Widgets")
        ]
        self.items: dict[str, dict[str, StoredItem]] = defaultdict(dict)
        self.calls: list[tuple[str, ...]] = []
        self.failures: dict[str, list[Exception]] = defaultdict(list)
        self._ids = itertools.count(1)

    # setup helpers

    def seed(self, collection_id: str, item_id: str, field_data: FieldMap) -> None:
        fields = {locale: dict(field_data) for locale in self.locales.all_ids() or ("",)}
        self.items[collection_id][item_id] = StoredItem(item_id=item_id, fields=fields)

    def fields_of(self, collection_id: str, item_id: str, locale: str = PRIMARY_LOCALE) -> FieldMap:
        return self.items[collection_id][item_id].fields[locale]

    def writes(self) -> list[tuple[str, ...]]:
        return [call for call in self.calls if call[0] in {"create", "update", "delete", "publish"}]

    def _maybe_fail(self, operation: str) -> None:
        queue = self.failures.get(operation)
        if queue:
            raise queue.pop(0)

    # DestinationStore

    async def get_locales(self) -> LocaleMap:
        self.calls.append(("get_locales",))
        return self.locales

    async def list_collections(self) -> list[DestinationCollection]:
        self.calls.append(("list_collections",))
        return list(self.collections)

    async def list_items(
        self,
        collection_id: str,
        *,
        cms_locale_id: str | None = None,
    ) -> list[DestinationRecord]:
        self.calls.append(("list", collection_id, cms_locale_id or ""))
        self._maybe_fail("list")
        locale = cms_locale_id or PRIMARY_LOCALE
        return [
            DestinationRecord(
                destination_id=item.item_id,
                field_data=dict(item.fields.get(locale, {})),
                cms_locale_id=cms_locale_id,
            )
            for item in self.items[collection_id].values()
            if locale in item.fields
        ]

    async def get_item(self, collection_id: str, item_id: str) -> DestinationRecord:
        self.calls.append(("get", collection_id, item_id))
        self._maybe_fail("get")
        item = self.items[collection_id].get(item_id)
        if item is None:
            raise RemoteError("Item not found", status=404)
        return DestinationRecord(
            destination_id=item_id,
            field_data=dict(item.fields.get(PRIMARY_LOCALE, {})),
        )

    async def create_item(
        self,
        collection_id: str,
        field_data: FieldMap,
        *,
        cms_locale_ids: Sequence[str] = (),
        is_draft: bool = False,
    ) -> DestinationRecord:
        self.calls.append(("create", collection_id, str(field_data.get("slug"))))
        self._maybe_fail("create")
        item_id = f"wf-{next(self._ids)}"
        locales = tuple(cms_locale_ids) or (PRIMARY_LOCALE,)
        self.items[collection_id][item_id] = StoredItem(
            item_id=item_id,
            fields={locale: dict(field_data) for locale in locales},
        )
        return DestinationRecord(destination_id=item_id, field_data=dict(field_data))

    async def update_item(
        self,
        collection_id: str,
        item_id: str,
        field_data: FieldMap,
        *,
        cms_locale_id: str | None = None,
    ) -> None:
        self.calls.append(("update", collection_id, item_id, cms_locale_id or ""))
        self._maybe_fail("update")
        item = self.items[collection_id].get(item_id)
        if item is None:
            raise RemoteError("Item not found", status=404)
        locale = cms_locale_id or PRIMARY_LOCALE
        item.fields.setdefault(locale, {}).update(field_data)

    async def delete_item(self, collection_id: str, item_id: str) -> None:
        self.calls.append(("delete", collection_id, item_id))
        self._maybe_fail("delete")
        if self.items[collection_id].pop(item_id, None) is None:
            raise RemoteError("Item not found", status=404)

    async def publish_items(
        self,
        collection_id: str,
        item_ids: Sequence[str],
        *,
        cms_locale_ids: Sequence[str] = (),
    ) -> None:
        self.calls.append(("publish", collection_id, *item_ids))
        self._maybe_fail("publish")
        for item_id in item_ids:
            self.items[collection_id][item_id].published = True


class MemorySettingsStore:
    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self.payloads: dict[str, str] = dict(initial or {})
        self.saves: list[str] = []

    async def load(self, key: str) -> str | None:
        return self.payloads.get(key)

    async def save(self, key: str, payload: str) -> None:
        self.saves.append(key)
        self.payloads[key] = payload


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
