"""Public interface for the Webflow adapter."""

from __future__ import annotations

from .client import WebflowAPIError, WebflowClient, resolve_locales
from .schema import WebflowCollection, WebflowItem, WebflowSite

__all__ = [
    "WebflowAPIError",
    "WebflowClient",
    "WebflowCollection",
    "WebflowItem",
    "WebflowSite",
    "resolve_locales",
]
