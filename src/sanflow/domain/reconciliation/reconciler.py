"""Reconcile one collection of the source store against its destination collection."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from logging import getLogger
from typing import TYPE_CHECKING

from sanflow.config.sync import SyncConfig
from sanflow.domain.errors import (
    MappingInconsistency,
    ProjectionError,
    RateLimitExhausted,
    RemoteError,
)
from sanflow.domain.model import LocaleRole
from sanflow.domain.projection import RelationResolver, asset_references, localized, project

from .hashing import stable_hash
from .plan import Classification, CollectionPlan, CollectionResult, RecordPlan
from .rebuild import rebuild_mappings

if TYPE_CHECKING:
    from collections.abc import Sequence

    from sanflow.domain.catalog import CollectionSpec
    from sanflow.domain.model import DestinationRecord, FieldMap, LocaleMap, SourceRecord
    from sanflow.domain.ports import DestinationStore, ReferenceFilter, SourceStore

    from .state import ReconciliationState

log = getLogger(__name__)

type Sleep = Callable[[float], Awaitable[None]]

HASH_EXCLUDED_FIELDS = ("slug",)


@dataclass(slots=True, frozen=True)
class ReconcileScope:
    """What one reconcile call may read and touch.

    Orphan deletion only runs for complete scopes: no single item, no
    ``since`` or reference filter and no ``limit`` that actually truncated the
    source list.
    """

    item_id: str | None = None
    limit: int | None = None
    since: str | None = None
    referencing: ReferenceFilter | None = None
    force: bool = False
    dry_run: bool = False
    primary_only: bool = False
    publish: bool = True
    cancel_event: asyncio.Event | None = None

    @property
    def single_item(self) -> bool:
        return self.item_id is not None

    @property
    def cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()

    def is_complete(self, fetched: int) -> bool:
        if self.single_item or self.since is not None or self.referencing is not None:
            return False
        return self.limit is None or fetched < self.limit


class CollectionReconciler:
    def __init__(
        self,
        *,
        source: SourceStore,
        destination: DestinationStore,
        state: ReconciliationState,
        locales: LocaleMap,
        settings: SyncConfig | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._source = source
        self._destination = destination
        self._state = state
        self._locales = locales
        self._settings = settings or SyncConfig()
        self._sleep = sleep
        self._collection_ids: dict[str, str] = {}

    async def reconcile(
        self,
        spec: CollectionSpec,
        collection_id: str,
        scope: ReconcileScope | None = None,
    ) -> CollectionResult:
        scope = scope or ReconcileScope()
        result = CollectionResult(collection_key=spec.key)
        self._collection_ids[spec.key] = collection_id

        records = await self._source.fetch_records(
            spec.query(
                item_id=scope.item_id,
                since=scope.since,
                limit=scope.limit,
                referencing=scope.referencing,
            )
        )
        if scope.single_item and not records:
            log.warning("Source record %s not found in %s", scope.item_id, spec.key)

        destination_items: list[DestinationRecord] = []
        if not scope.single_item:
            destination_items = await self._list_destination(collection_id)
            if not self._state.mappings.has_collection(spec.key) and destination_items:
                rebuild_mappings(spec, records, destination_items, self._state.mappings)

        plan = await self.classify(
            spec, collection_id, records, destination_items, scope, result
        )
        if scope.is_complete(len(records)):
            plan.orphans = self._find_orphans(spec, plan, destination_items, records)
        elif destination_items:
            log.info("%s: partial scope, orphan deletion skipped", spec.key)

        log.info(
            "%s: %s new, %s to update, %s unchanged, %s orphaned, %s skipped",
            spec.key,
            len(plan.of(Classification.NEW)),
            len(plan.of(Classification.UPDATE)),
            len(plan.of(Classification.UNCHANGED)),
            len(plan.orphans),
            plan.skipped,
        )
        result.unchanged = len(plan.of(Classification.UNCHANGED))
        if scope.dry_run:
            result.created = len(plan.of(Classification.NEW))
            result.updated = len(plan.of(Classification.UPDATE))
            result.deleted = len(plan.orphans)
            return result

        await self._execute(spec, collection_id, plan, scope, result)
        result.destination_ids = {
            record_plan.record.source_id: record_plan.destination_id
            for record_plan in plan.records
            if record_plan.destination_id
        }
        return result

    async def classify(
        self,
        spec: CollectionSpec,
        collection_id: str,
        records: Sequence[SourceRecord],
        destination_items: Sequence[DestinationRecord],
        scope: ReconcileScope,
        result: CollectionResult,
    ) -> CollectionPlan:
        """Classify every source record; the only remote calls are liveness checks."""

        mappings = self._state.mappings
        plan = CollectionPlan(collection_key=spec.key)
        listed_ids = {item.destination_id for item in destination_items}
        current_ids = {record.source_id for record in records}
        claimed_by_current = {
            destination_id
            for source_id in current_ids
            if (destination_id := mappings.get(spec.key, source_id)) is not None
        }
        unmapped_by_slug: dict[str, DestinationRecord] = {}
        for item in destination_items:
            if item.destination_id not in claimed_by_current and item.slug:
                unmapped_by_slug.setdefault(item.slug, item)

        relations = RelationResolver(mappings)
        for record in records:
            try:
                primary, secondary = self._project(spec, record, relations, scope)
            except ProjectionError as exc:
                log.error("%s: skipping %s: %s", spec.key, record.source_id, exc)
                result.skipped += 1
                result.record_error(str(exc))
                plan.skipped += 1
                plan.records.append(
                    RecordPlan(
                        record=record,
                        classification=Classification.SKIPPED,
                        primary={},
                        digest="",
                        destination_id=mappings.get(spec.key, record.source_id),
                    )
                )
                continue

            digest = stable_hash(primary, exclude=HASH_EXCLUDED_FIELDS)
            destination_id = await self._live_destination_id(
                spec.key, collection_id, record.source_id, listed_ids
            )

            adopted = False
            slug = primary.get("slug")
            if destination_id is None and isinstance(slug, str):
                candidate = unmapped_by_slug.pop(slug, None)
                if candidate is not None:
                    destination_id = candidate.destination_id
                    self._state.bind(spec.key, record.source_id, destination_id)
                    adopted = True
                    log.info(
                        "%s: adopted %s for %s by slug %r",
                        spec.key,
                        destination_id,
                        record.source_id,
                        slug,
                    )

            if destination_id is None:
                classification = Classification.NEW
            elif not scope.force and self._state.hashes.get(spec.key, record.source_id) == digest:
                classification = Classification.UNCHANGED
            else:
                classification = Classification.UPDATE
            plan.records.append(
                RecordPlan(
                    record=record,
                    classification=classification,
                    primary=primary,
                    secondary=secondary,
                    digest=digest,
                    destination_id=destination_id,
                    adopted=adopted,
                )
            )
        return plan

    def _project(
        self,
        spec: CollectionSpec,
        record: SourceRecord,
        relations: RelationResolver,
        scope: ReconcileScope,
    ) -> tuple[FieldMap, FieldMap | None]:
        primary = project(spec.rules, record, LocaleRole.PRIMARY, relations)
        if scope.primary_only or not self._locales.has_secondary:
            return primary, None
        return primary, project(spec.rules, record, LocaleRole.SECONDARY, relations)

    async def _live_destination_id(
        self,
        collection_key: str,
        collection_id: str,
        source_id: str,
        listed_ids: set[str],
    ) -> str | None:
        """Return the mapped destination id once it is known to resolve.

        Ids present in the collection listing count as live. Anything else is
        fetched once; a 404 purges the mapping and hash. Other errors keep the
        mapping rather than risk a duplicate.
        """

        destination_id = self._state.mappings.get(collection_key, source_id)
        if destination_id is None or destination_id in listed_ids:
            return destination_id
        try:
            try:
                await self._destination.get_item(collection_id, destination_id)
            except RemoteError as exc:
                if exc.is_not_found:
                    raise MappingInconsistency(collection_key, source_id, destination_id) from exc
                log.warning(
                    "Could not verify %s for %s:%s (%s), keeping the mapping",
                    destination_id,
                    collection_key,
                    source_id,
                    exc,
                )
        except MappingInconsistency as exc:
            log.warning("%s, treating the record as new", exc)
            self._state.purge(collection_key, source_id)
            return None
        return destination_id

    def _find_orphans(
        self,
        spec: CollectionSpec,
        plan: CollectionPlan,
        destination_items: Sequence[DestinationRecord],
        records: Sequence[SourceRecord],
    ) -> list[DestinationRecord]:
        if not records:
            if destination_items:
                log.warning(
                    "%s: source returned no records, refusing to delete %s destination items",
                    spec.key,
                    len(destination_items),
                )
            return []
        claimed = {plan.destination_id for plan in plan.records if plan.destination_id}
        source_slugs = {
            slug
            for record_plan in plan.records
            if isinstance(slug := record_plan.primary.get("slug"), str)
        }
        return [
            item
            for item in destination_items
            if item.destination_id not in claimed and item.slug not in source_slugs
        ]

    async def _execute(
        self,
        spec: CollectionSpec,
        collection_id: str,
        plan: CollectionPlan,
        scope: ReconcileScope,
        result: CollectionResult,
    ) -> None:
        await self._delete_orphans(spec, collection_id, plan.orphans, scope, result)

        touched: list[str] = []
        for record_plan in plan.of(Classification.NEW):
            if self._stop(scope, result):
                break
            if await self._guarded(spec, record_plan, result, self._create):
                result.created += 1
                if record_plan.destination_id:
                    touched.append(record_plan.destination_id)

        for record_plan in plan.of(Classification.UPDATE):
            if self._stop(scope, result):
                break
            if await self._guarded(spec, record_plan, result, self._update):
                result.updated += 1
                if record_plan.destination_id:
                    touched.append(record_plan.destination_id)

        if scope.publish and touched:
            await self._publish(spec, collection_id, touched, result)

    def _stop(self, scope: ReconcileScope, result: CollectionResult) -> bool:
        if scope.cancelled:
            if not result.cancelled:
                log.warning("%s: cancellation requested, stopping", result.collection_key)
            result.cancelled = True
            return True
        return False

    async def _delete_orphans(
        self,
        spec: CollectionSpec,
        collection_id: str,
        orphans: Sequence[DestinationRecord],
        scope: ReconcileScope,
        result: CollectionResult,
    ) -> None:
        batch_size = max(self._settings.delete_batch_size, 1)
        for start in range(0, len(orphans), batch_size):
            for item in orphans[start : start + batch_size]:
                if self._stop(scope, result):
                    return
                try:
                    await self._destination.delete_item(collection_id, item.destination_id)
                except RemoteError as exc:
                    if not exc.is_not_found:
                        result.failed += 1
                        result.record_error(f"delete {item.destination_id}: {exc}")
                        log.error(
                            "%s: deleting orphan %s failed: %s", spec.key, item.destination_id, exc
                        )
                        continue
                source_id = self._state.mappings.source_for(spec.key, item.destination_id)
                if source_id is not None:
                    self._state.purge(spec.key, source_id)
                result.deleted += 1
                log.info("%s: deleted orphan %s (%s)", spec.key, item.destination_id, item.slug)

    async def _guarded(
        self,
        spec: CollectionSpec,
        record_plan: RecordPlan,
        result: CollectionResult,
        operation: Callable[[CollectionSpec, RecordPlan, CollectionResult], Awaitable[None]],
    ) -> bool:
        """Run a write, retrying once after a cooldown when the rate limit is exhausted."""

        source_id = record_plan.record.source_id
        try:
            try:
                await operation(spec, record_plan, result)
            except RateLimitExhausted:
                cooldown = self._settings.rate_limit_cooldown_seconds
                log.warning(
                    "%s: rate limit exhausted for %s, cooling down %.1fs before one retry",
                    spec.key,
                    source_id,
                    cooldown,
                )
                await self._sleep(cooldown)
                await operation(spec, record_plan, result)
        except RemoteError as exc:
            result.failed += 1
            result.record_error(f"{record_plan.classification} {source_id}: {exc}")
            log.error(
                "%s: %s of %s failed: %s", spec.key, record_plan.classification, source_id, exc
            )
            return False
        self._record_assets(record_plan.record)
        return True

    async def _create(
        self,
        spec: CollectionSpec,
        record_plan: RecordPlan,
        result: CollectionResult,
    ) -> None:
        collection_id = self._collection_id_for(spec)
        with_secondary = record_plan.secondary is not None and self._locales.has_secondary
        locale_ids = self._locales.all_ids() if with_secondary else _present(self._locales.primary)
        created = await self._destination.create_item(
            collection_id, record_plan.primary, cms_locale_ids=locale_ids
        )
        source_id = record_plan.record.source_id
        record_plan.destination_id = created.destination_id
        self._state.bind(spec.key, source_id, created.destination_id)
        log.info("%s: created %s for %s", spec.key, created.destination_id, source_id)

        if with_secondary and not await self._write_secondary(spec, record_plan, result):
            return
        self._state.hashes.set(spec.key, source_id, record_plan.digest)

    async def _update(
        self,
        spec: CollectionSpec,
        record_plan: RecordPlan,
        result: CollectionResult,
    ) -> None:
        destination_id = record_plan.destination_id
        if destination_id is None:
            raise MappingInconsistency(spec.key, record_plan.record.source_id, "")
        fields = {
            name: value
            for name, value in record_plan.primary.items()
            if name not in HASH_EXCLUDED_FIELDS
        }
        await self._destination.update_item(
            self._collection_id_for(spec),
            destination_id,
            fields,
            cms_locale_id=self._locales.primary,
        )
        log.info("%s: updated %s for %s", spec.key, destination_id, record_plan.record.source_id)
        if record_plan.secondary is not None and self._locales.has_secondary:
            if not await self._write_secondary(spec, record_plan, result):
                return
        self._state.hashes.set(spec.key, record_plan.record.source_id, record_plan.digest)

    async def _write_secondary(
        self,
        spec: CollectionSpec,
        record_plan: RecordPlan,
        result: CollectionResult,
    ) -> bool:
        """Patch the secondary locale after a short delay.

        A failure here leaves the hash unset so the next run retries the record.
        """

        if record_plan.destination_id is None or record_plan.secondary is None:
            return False
        await self._sleep(self._settings.locale_delay_seconds)
        try:
            await self._destination.update_item(
                self._collection_id_for(spec),
                record_plan.destination_id,
                record_plan.secondary,
                cms_locale_id=self._locales.secondary,
            )
        except RemoteError as exc:
            message = f"secondary locale of {record_plan.record.source_id}: {exc}"
            result.record_error(message)
            log.warning("%s: %s", spec.key, message)
            return False
        return True

    async def _publish(
        self,
        spec: CollectionSpec,
        collection_id: str,
        item_ids: list[str],
        result: CollectionResult,
    ) -> None:
        try:
            await self._destination.publish_items(
                collection_id, item_ids, cms_locale_ids=self._locales.all_ids()
            )
        except RemoteError as exc:
            result.record_error(f"publish: {exc}")
            log.error("%s: publishing %s items failed: %s", spec.key, len(item_ids), exc)
            return
        result.published = len(item_ids)

    def _record_assets(self, record: SourceRecord) -> None:
        for asset in asset_references(record):
            alt = localized(asset.get("alt"), LocaleRole.PRIMARY, None)
            previous = self._state.assets.get(asset["_id"])
            changed = self._state.assets.record(
                asset["_id"],
                asset["url"],
                filename=asset.get("originalFilename"),
                alt=alt if isinstance(alt, str) else None,
            )
            if changed and previous is not None:
                log.info("Asset %s changed: %s -> %s", asset["_id"], previous.url, asset["url"])

    async def _list_destination(self, collection_id: str) -> list[DestinationRecord]:
        """List the collection once per locale; primary-locale copies take precedence."""

        items = await self._destination.list_items(
            collection_id, cms_locale_id=self._locales.primary
        )
        if self._locales.secondary:
            seen = {item.destination_id for item in items}
            secondary_items = await self._destination.list_items(
                collection_id, cms_locale_id=self._locales.secondary
            )
            items.extend(item for item in secondary_items if item.destination_id not in seen)
        return items

    def _collection_id_for(self, spec: CollectionSpec) -> str:
        return self._collection_ids[spec.key]


def _present(*values: str | None) -> tuple[str, ...]:
    return tuple(value for value in values if value)
