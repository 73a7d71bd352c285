"""Synchronization defaults for reconciliation runs."""

from __future__ import annotations

from dataclasses import dataclass

from .env import env_flag, env_int

DEFAULT_PUBLISH_BATCH_SIZE = 50
DEFAULT_DELETE_BATCH_SIZE = 50
DEFAULT_PAGE_SIZE = 100
DEFAULT_LOCALE_DELAY_SECONDS = 0.8
DEFAULT_RATE_LIMIT_COOLDOWN_SECONDS = 3.0


@dataclass(frozen=True, slots=True)
class SyncConfig:
    publish_batch_size: int = DEFAULT_PUBLISH_BATCH_SIZE
    delete_batch_size: int = DEFAULT_DELETE_BATCH_SIZE
    page_size: int = DEFAULT_PAGE_SIZE
    locale_delay_seconds: float = DEFAULT_LOCALE_DELAY_SECONDS
    rate_limit_cooldown_seconds: float = DEFAULT_RATE_LIMIT_COOLDOWN_SECONDS
    publish: bool = True
    force: bool = False
    limit_per_collection: int | None = None


def get_sync_config() -> SyncConfig:
    return SyncConfig(
        publish=env_flag("SANFLOW_PUBLISH", default=True),
        force=env_flag("FORCE_UPDATE", default=False),
        limit_per_collection=env_int("LIMIT_PER_COLLECTION"),
    )
