"""Stable content digests for delta detection."""

from __future__ import annotations

import hashlib
import json
from collections.abc import Mapping
from typing import Any

ASSET_LOCATOR_KEY = "_asset"


def fold_asset_locators(value: Any) -> Any:
    """Copy ``value`` with every embedded asset's URL lifted into ``_asset``.

    An embedded asset is any mapping carrying a non-empty string ``url``; the
    fold walks nested mappings and lists so images inside galleries count too.
    """

    if isinstance(value, Mapping):
        folded = {str(key): fold_asset_locators(item) for key, item in value.items()}
        url = value.get("url")
        if isinstance(url, str) and url:
            folded[ASSET_LOCATOR_KEY] = url
        return folded
    if isinstance(value, list | tuple):
        return [fold_asset_locators(item) for item in value]
    return value


def canonical_json(projection: Mapping[str, Any]) -> str:
    return json.dumps(
        fold_asset_locators(projection),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=str,
    )


def stable_hash(projection: Mapping[str, Any], *, exclude: tuple[str, ...] = ()) -> str:
    """128-bit hex digest of ``projection``; key order never affects the result."""

    if exclude:
        projection = {key: value for key, value in projection.items() if key not in exclude}
    encoded = canonical_json(projection).encode("utf-8")
    return hashlib.md5(encoded, usedforsecurity=False).hexdigest()
