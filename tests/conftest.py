from __future__ import annotations

import pytest

_CONFIG_VARS = (
    "DATABASE_URI",
    "FORCE_UPDATE",
    "LIMIT_PER_COLLECTION",
    "SANFLOW_DATA_DIR",
    "SANFLOW_PUBLISH",
    "SANFLOW_STATE_BACKEND",
    "WEBFLOW_COLLECTIONS_JSON",
    "WEBFLOW_MIN_REQUEST_INTERVAL",
    "WEBFLOW_SECONDARY_LOCALE_TAGS",
)


@pytest.fixture(autouse=True)
def isolated_config_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep a developer's shell or ``.env`` values out of the config under test."""
    for name in _CONFIG_VARS:
        monkeypatch.delenv(name, raising=False)
