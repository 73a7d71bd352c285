"""Ports implemented by the store adapters."""

from __future__ import annotations

from .destination import DestinationCollection, DestinationStore
from .settings import SettingsStore
from .source import ReferenceFilter, SourceQuery, SourceStore

__all__ = [
    "DestinationCollection",
    "DestinationStore",
    "ReferenceFilter",
    "SettingsStore",
    "SourceQuery",
    "SourceStore",
]
