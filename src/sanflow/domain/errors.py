"""Error taxonomy for reconciliation runs.

Per-record and per-operation errors are caught by the collection reconciler and
reported in its result; per-collection errors are caught by the scheduler.
Configuration errors live in :mod:`sanflow.config.errors` and always propagate.
"""

from __future__ import annotations


class SyncError(RuntimeError):
    """Base class for errors raised while mirroring content."""


class RemoteError(SyncError):
    """A remote store answered with a non-success status."""

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        body: str = "",
        method: str | None = None,
        url: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.body = body
        self.method = method
        self.url = url

    @property
    def is_not_found(self) -> bool:
        return self.status == 404


class RateLimitExhausted(RemoteError):
    """HTTP 429 kept coming back after the retry ceiling was reached."""


class RemoteUnavailable(RemoteError):
    """5xx responses or network failures persisted after the retry ceiling."""


class MappingInconsistency(SyncError):
    """A stored identity mapping points at a destination record that is gone."""

    def __init__(self, collection_key: str, source_id: str, destination_id: str) -> None:
        super().__init__(
            f"Mapping {collection_key}:{source_id} -> {destination_id} no longer resolves"
        )
        self.collection_key = collection_key
        self.source_id = source_id
        self.destination_id = destination_id


class ProjectionError(SyncError):
    """A field rule failed while projecting a source record."""

    def __init__(self, source_id: str, field: str, cause: Exception) -> None:
        super().__init__(f"Projecting field {field!r} of {source_id} failed: {cause}")
        self.source_id = source_id
        self.field = field
        self.cause = cause
