"""SQLAlchemy adapter for the local settings backend."""

from __future__ import annotations

from .settings import SqlAlchemySettingsStore
from .tables import metadata, sync_settings_table

__all__ = ["SqlAlchemySettingsStore", "metadata", "sync_settings_table"]
