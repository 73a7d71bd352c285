"""Application orchestration entry points."""

from __future__ import annotations

import asyncio
from contextlib import AsyncExitStack
from dataclasses import dataclass, replace
from logging import getLogger
from typing import TYPE_CHECKING

from sanflow.adapters.sanity import SanityClient, SanitySettingsStore, strip_draft_prefix
from sanflow.adapters.sqlalchemy import SqlAlchemySettingsStore
from sanflow.adapters.webflow import WebflowClient
from sanflow.config import (
    StateBackend,
    get_sanity_config,
    get_storage_config,
    get_sync_config,
    get_webflow_config,
)
from sanflow.domain.scheduler import PipelineScheduler, RunOptions, RunResult

if TYPE_CHECKING:
    from sanflow.config import StorageConfig, SyncConfig
    from sanflow.domain.ports import SettingsStore
    from sanflow.domain.scheduler import Observer

log = getLogger(__name__)


@dataclass(slots=True, frozen=True)
class SingleItemResult:
    document_id: str
    document_type: str
    webflow_id: str | None
    published: bool
    result: RunResult


def build_settings_store(storage: StorageConfig, sanity: SanityClient) -> SettingsStore:
    if storage.backend is StateBackend.SQLITE:
        log.info("Persisting reconciliation state in %s", storage.database_uri())
        return SqlAlchemySettingsStore(database_uri=storage.database_uri())
    return SanitySettingsStore(sanity)


def apply_sync_defaults(options: RunOptions, sync_config: SyncConfig) -> RunOptions:
    """Fill options left at their defaults from the environment-level sync config."""

    limit = options.limit
    if limit is None and not options.single_item and options.referencing is None:
        limit = sync_config.limit_per_collection
    return replace(
        options,
        limit=limit,
        force=options.force or sync_config.force,
        publish=options.publish and sync_config.publish,
    )


async def run_sync(options: RunOptions, observer: Observer | None = None) -> RunResult:
    """Build the configured adapters and run one scheduler pass."""

    webflow_config = get_webflow_config()
    sanity_config = get_sanity_config()
    storage_config = get_storage_config()
    sync_config = get_sync_config()
    options = apply_sync_defaults(options, sync_config)

    log.info(
        "Starting sync: only=%s, item=%s, limit=%s, since=%s, incremental=%s, force=%s, "
        "publish=%s, dry_run=%s",
        options.only,
        options.item_id,
        options.limit,
        options.since,
        options.incremental,
        options.force,
        options.publish,
        options.dry_run,
    )
    async with AsyncExitStack() as stack:
        sanity = await stack.enter_async_context(SanityClient(config=sanity_config))
        webflow = await stack.enter_async_context(
            WebflowClient(
                config=webflow_config,
                page_size=sync_config.page_size,
                publish_batch_size=sync_config.publish_batch_size,
            )
        )
        settings_store = build_settings_store(storage_config, sanity)
        if isinstance(settings_store, SqlAlchemySettingsStore):
            stack.callback(settings_store.dispose)

        scheduler = PipelineScheduler(
            source=sanity,
            destination=webflow,
            settings_store=settings_store,
            collection_overrides=webflow_config.collection_overrides,
            sync_config=sync_config,
            observer=observer,
        )
        return await scheduler.run(options)


async def run_single_item(
    document_id: str,
    document_type: str,
    *,
    force: bool = False,
    publish: bool = True,
    observer: Observer | None = None,
) -> SingleItemResult:
    options = RunOptions(
        item_id=document_id,
        document_type=document_type,
        force=force,
        publish=publish,
    )
    result = await run_sync(options, observer)
    collection = result.collections[0] if result.collections else None
    webflow_id = None
    if collection is not None:
        webflow_id = collection.destination_ids.get(strip_draft_prefix(document_id))
    return SingleItemResult(
        document_id=document_id,
        document_type=document_type,
        webflow_id=webflow_id,
        published=bool(collection and collection.published),
        result=result,
    )


def sync_site(options: RunOptions | None = None, observer: Observer | None = None) -> RunResult:
    """Synchronise the whole site (or the ``only`` collection) from Sanity to Webflow."""

    return asyncio.run(run_sync(options or RunOptions(), observer))


def sync_single_item(
    document_id: str,
    document_type: str,
    *,
    force: bool = False,
    publish: bool = True,
) -> SingleItemResult:
    """Synchronise one Sanity document without touching the rest of its collection."""

    result = asyncio.run(
        run_single_item(document_id, document_type, force=force, publish=publish)
    )
    log.info(
        "Single item %s (%s) -> %s, published=%s",
        result.document_id,
        result.document_type,
        result.webflow_id,
        result.published,
    )
    return result
