"""Public interface for the Sanity adapter."""

from __future__ import annotations

from .client import SanityClient, build_query, strip_draft_prefix
from .settings import SanitySettingsStore

__all__ = ["SanityClient", "SanitySettingsStore", "build_query", "strip_draft_prefix"]
