"""Phase-ordered scheduler running the collection reconcilers for one sync run."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from logging import getLogger
from typing import TYPE_CHECKING

from sanflow.config.sync import SyncConfig
from sanflow.domain.catalog import CATALOG, REVERSE_LINKS, by_phase, resolve_collection_ids
from sanflow.domain.errors import RemoteError
from sanflow.domain.reconciliation import (
    CollectionReconciler,
    CollectionResult,
    ReconcileScope,
    ReconciliationState,
)

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping, Sequence

    from sanflow.domain.catalog import CollectionSpec, ReverseLink
    from sanflow.domain.model import DestinationRecord, LocaleMap
    from sanflow.domain.ports import (
        DestinationStore,
        ReferenceFilter,
        SettingsStore,
        SourceStore,
    )
    from sanflow.domain.reconciliation.reconciler import Sleep

log = getLogger(__name__)

REVERSE_LINK_PHASE = "reverse-links"


def utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass(slots=True, frozen=True)
class RunOptions:
    only: str | None = None
    item_id: str | None = None
    document_type: str | None = None
    limit: int | None = None
    since: str | None = None
    incremental: bool = False
    referencing: ReferenceFilter | None = None
    force: bool = False
    publish: bool = True
    dry_run: bool = False
    primary_only: bool = False
    cancel_event: asyncio.Event | None = None

    @property
    def single_item(self) -> bool:
        return self.item_id is not None

    @property
    def covers_whole_source(self) -> bool:
        """``True`` when every record updated after ``since`` is fetched."""

        return (
            not self.single_item
            and not self.dry_run
            and self.limit is None
            and self.referencing is None
        )


@dataclass(slots=True, frozen=True)
class ProgressEvent:
    phase: str
    message: str
    current: int = 0
    total: int = 0
    total_synced: int = 0
    kind: str = "progress"


type Observer = Callable[[ProgressEvent], None]


@dataclass(slots=True)
class RunResult:
    total_synced: int = 0
    duration: float = 0.0
    collections: list[CollectionResult] = field(default_factory=list[CollectionResult])
    errors: list[str] = field(default_factory=list[str])
    cancelled: bool = False

    def result_for(self, collection_key: str) -> CollectionResult | None:
        return next((c for c in self.collections if c.collection_key == collection_key), None)

    @property
    def created(self) -> int:
        return sum(result.created for result in self.collections)

    @property
    def updated(self) -> int:
        return sum(result.updated for result in self.collections)

    @property
    def unchanged(self) -> int:
        return sum(result.unchanged for result in self.collections)

    @property
    def deleted(self) -> int:
        return sum(result.deleted for result in self.collections)


class PipelineScheduler:
    """Run every selected collection in dependency order, then the reverse-link pass.

    The scheduler owns the :class:`ReconciliationState` of the run: it is loaded
    once before the first collection and always saved afterwards, including when
    a collection fails or the run is cancelled. Bootstrap failures (locales,
    collection listing, state loading) propagate; everything after that is
    aggregated into the :class:`RunResult`.

    A collection that finishes without errors on an unlimited, unfiltered run
    stamps its sync timestamp with the start of the run; ``incremental`` runs
    then fetch only records updated after that stamp.
    """

    def __init__(
        self,
        *,
        source: SourceStore,
        destination: DestinationStore,
        settings_store: SettingsStore,
        catalog: Sequence[CollectionSpec] = CATALOG,
        reverse_links: Sequence[ReverseLink] = REVERSE_LINKS,
        collection_overrides: Mapping[str, str] | None = None,
        sync_config: SyncConfig | None = None,
        observer: Observer | None = None,
        clock: Callable[[], float] = time.perf_counter,
        now: Callable[[], datetime] = utc_now,
        sleep: Sleep | None = None,
    ) -> None:
        self._source = source
        self._destination = destination
        self._settings_store = settings_store
        self._catalog = tuple(catalog)
        self._reverse_links = tuple(reverse_links)
        self._overrides = dict(collection_overrides or {})
        self._sync_config = sync_config or SyncConfig()
        self._observer = observer
        self._clock = clock
        self._now = now
        self._sleep = sleep

    async def run(self, options: RunOptions | None = None) -> RunResult:
        options = options or RunOptions()
        started = self._clock()
        started_at = format_timestamp(self._now())
        result = RunResult()

        selected = self.select(options)
        if not selected:
            selector = options.only or options.document_type
            raise ValueError(f"No collection matches {selector!r}")

        locales = await self._destination.get_locales()
        collections = await self._destination.list_collections()
        collection_ids = resolve_collection_ids(self._catalog, collections, self._overrides)
        state = await ReconciliationState.load_all(self._settings_store)

        reconciler = self._reconciler(state, locales)
        scope = ReconcileScope(
            item_id=options.item_id,
            limit=1 if options.single_item else options.limit,
            since=options.since,
            referencing=options.referencing,
            force=options.force,
            dry_run=options.dry_run,
            primary_only=options.primary_only,
            publish=options.publish,
            cancel_event=options.cancel_event,
        )
        try:
            phases = by_phase(selected)
            total = len(selected)
            for phase_index, phase in enumerate(phases, start=1):
                phase_name = f"phase-{phase_index}"
                self._emit(
                    phase_name,
                    f"Phase {phase_index}: {', '.join(spec.key for spec in phase)}",
                    current=len(result.collections),
                    total=total,
                    total_synced=result.total_synced,
                    kind="phase",
                )
                for spec in phase:
                    if self._cancelled(options):
                        result.cancelled = True
                        break
                    collection_scope = self._scope_for(spec, scope, state, options)
                    collection_result = await self._run_collection(
                        reconciler,
                        spec,
                        collection_ids,
                        collection_scope,
                        result,
                        phase_name,
                        total,
                    )
                    if self._completed_cleanly(options, collection_result):
                        state.timestamps.set(spec.key, started_at)
                if result.cancelled:
                    break

            if self._wants_reverse_links(options, result):
                await self._reverse_link_pass(collection_ids, locales, options, result)
        finally:
            if options.dry_run:
                log.info("Dry run, reconciliation state not saved")
            else:
                await state.save_all(self._settings_store)

        result.duration = self._clock() - started
        log.info(
            "Sync finished in %.1fs: %s synced (%s created, %s updated, %s unchanged, "
            "%s deleted), %s errors%s",
            result.duration,
            result.total_synced,
            result.created,
            result.updated,
            result.unchanged,
            result.deleted,
            len(result.errors),
            ", cancelled" if result.cancelled else "",
        )
        self._emit(
            "complete",
            f"Synced {result.total_synced} items in {result.duration:.1f}s",
            current=len(result.collections),
            total=len(selected),
            total_synced=result.total_synced,
            kind="complete",
        )
        return result

    def select(self, options: RunOptions) -> list[CollectionSpec]:
        """Collections taking part in the run, in catalog order."""

        if options.single_item:
            selector = options.document_type or options.only
            if selector is None:
                raise ValueError("A single-item run needs the document type")
            return [
                spec
                for spec in self._catalog
                if spec.document_type == selector or spec.matches(selector)
            ][:1]
        if options.only is not None:
            return [spec for spec in self._catalog if spec.matches(options.only)][:1]
        if options.referencing is not None:
            raise ValueError("A reference-filtered run needs the collection to filter")
        return list(self._catalog)

    def _reconciler(self, state: ReconciliationState, locales: LocaleMap) -> CollectionReconciler:
        return CollectionReconciler(
            source=self._source,
            destination=self._destination,
            state=state,
            locales=locales,
            settings=self._sync_config,
            sleep=self._sleep or asyncio.sleep,
        )

    async def _run_collection(
        self,
        reconciler: CollectionReconciler,
        spec: CollectionSpec,
        collection_ids: Mapping[str, str],
        scope: ReconcileScope,
        result: RunResult,
        phase_name: str,
        total: int,
    ) -> CollectionResult | None:
        collection_id = collection_ids.get(spec.key)
        if collection_id is None:
            message = f"{spec.key}: no destination collection, skipped"
            result.errors.append(message)
            self._emit(phase_name, message, kind="warning")
            return None

        self._emit(
            phase_name,
            f"Syncing {spec.display_name}",
            current=len(result.collections),
            total=total,
            total_synced=result.total_synced,
        )
        try:
            collection_result = await reconciler.reconcile(spec, collection_id, scope)
        except Exception as exc:
            log.exception("%s: collection failed", spec.key)
            collection_result = CollectionResult(collection_key=spec.key)
            collection_result.record_error(f"{type(exc).__name__}: {exc}")

        result.collections.append(collection_result)
        result.total_synced += collection_result.synced
        result.errors.extend(f"{spec.key}: {error}" for error in collection_result.errors)
        if collection_result.cancelled:
            result.cancelled = True
        self._emit(
            phase_name,
            (
                f"{spec.display_name}: {collection_result.created} created, "
                f"{collection_result.updated} updated, {collection_result.unchanged} unchanged, "
                f"{collection_result.deleted} deleted"
            ),
            current=len(result.collections),
            total=total,
            total_synced=result.total_synced,
            kind="collection",
        )
        return collection_result

    def _scope_for(
        self,
        spec: CollectionSpec,
        scope: ReconcileScope,
        state: ReconciliationState,
        options: RunOptions,
    ) -> ReconcileScope:
        """Narrow an incremental run to records updated since the last clean run."""

        if not options.incremental or options.since is not None or options.single_item:
            return scope
        last_run = state.timestamps.get(spec.key)
        if last_run is None:
            log.info("%s: no previous clean run, syncing in full", spec.key)
            return scope
        log.info("%s: syncing records updated after %s", spec.key, last_run)
        return replace(scope, since=last_run)

    def _completed_cleanly(
        self, options: RunOptions, collection_result: CollectionResult | None
    ) -> bool:
        return (
            options.covers_whole_source
            and collection_result is not None
            and not collection_result.errors
            and not collection_result.cancelled
        )

    def _wants_reverse_links(self, options: RunOptions, result: RunResult) -> bool:
        if options.single_item or options.dry_run or result.cancelled or not self._reverse_links:
            return False
        if options.only is None:
            return True
        keys = {result.collection_key for result in result.collections}
        return any(link.target in keys or link.source in keys for link in self._reverse_links)

    async def _reverse_link_pass(
        self,
        collection_ids: Mapping[str, str],
        locales: LocaleMap,
        options: RunOptions,
        result: RunResult,
    ) -> None:
        for link in self._reverse_links:
            target_id = collection_ids.get(link.target)
            source_id = collection_ids.get(link.source)
            if target_id is None or source_id is None:
                log.warning(
                    "Reverse link %s.%s skipped, collection missing", link.target, link.target_field
                )
                continue
            try:
                patched = await self._apply_reverse_link(
                    link, target_id, source_id, locales, publish=options.publish
                )
            except RemoteError as exc:
                message = f"reverse link {link.target}.{link.target_field}: {exc}"
                log.error(message)
                result.errors.append(message)
                continue
            self._emit(
                REVERSE_LINK_PHASE,
                f"Linked {link.target}.{link.target_field} on {patched} items",
                total_synced=result.total_synced,
                kind="collection",
            )

    async def _apply_reverse_link(
        self,
        link: ReverseLink,
        target_collection_id: str,
        source_collection_id: str,
        locales: LocaleMap,
        *,
        publish: bool = True,
    ) -> int:
        """Write the back-reference field on every target whose value changed."""

        targets = await self._destination.list_items(
            target_collection_id, cms_locale_id=locales.primary
        )
        sources = await self._destination.list_items(
            source_collection_id, cms_locale_id=locales.primary
        )
        linked = backreferences(sources, link.source_field)

        patched: list[str] = []
        for target in targets:
            wanted = linked.get(target.destination_id, [])
            current = target.field_data.get(link.target_field) or []
            if sorted(current) == sorted(wanted):
                continue
            await self._destination.update_item(
                target_collection_id,
                target.destination_id,
                {link.target_field: wanted},
                cms_locale_id=locales.primary,
            )
            patched.append(target.destination_id)
        if patched:
            log.info(
                "Reverse link %s.%s updated on %s items",
                link.target,
                link.target_field,
                len(patched),
            )
        if patched and publish:
            await self._destination.publish_items(
                target_collection_id, patched, cms_locale_ids=locales.all_ids()
            )
        return len(patched)

    def _cancelled(self, options: RunOptions) -> bool:
        return options.cancel_event is not None and options.cancel_event.is_set()

    def _emit(
        self,
        phase: str,
        message: str,
        *,
        current: int = 0,
        total: int = 0,
        total_synced: int = 0,
        kind: str = "progress",
    ) -> None:
        if self._observer is None:
            return
        self._observer(
            ProgressEvent(
                phase=phase,
                message=message,
                current=current,
                total=total,
                total_synced=total_synced,
                kind=kind,
            )
        )


def backreferences(
    sources: Sequence[DestinationRecord], source_field: str
) -> dict[str, list[str]]:
    """Map each referenced destination id to the source items pointing at it."""

    linked: dict[str, list[str]] = {}
    for item in sources:
        value = item.field_data.get(source_field)
        targets = value if isinstance(value, list) else [value]
        for target in targets:
            if isinstance(target, str) and target:
                linked.setdefault(target, []).append(item.destination_id)
    return linked


def format_timestamp(moment: datetime) -> str:
    """ISO-8601 UTC with a ``Z`` suffix, the form the source store compares against."""

    return moment.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")
