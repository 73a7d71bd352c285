"""Webflow configuration values."""

from __future__ import annotations

import json
from dataclasses import dataclass, field

from .env import env_float, optional_env_var, require_env_vars
from .errors import ConfigurationError
from .http_resilience import ResilienceConfig, RetryPolicy

WEBFLOW_BASE_URL = "https://api.webflow.com/v2/"
WEBFLOW_TIMEOUT_SECONDS = 30.0
DEFAULT_MIN_REQUEST_INTERVAL = 1.2
DEFAULT_SECONDARY_LOCALE_TAGS = ("de", "de-DE")


@dataclass(frozen=True)
class WebflowConfig:
    """Holds Webflow API configuration values."""

    api_token: str
    site_id: str
    resilience: ResilienceConfig
    collection_overrides: dict[str, str] = field(default_factory=dict)
    secondary_locale_tags: tuple[str, ...] = DEFAULT_SECONDARY_LOCALE_TAGS


def build_webflow_resilience(
    api_token: str,
    *,
    min_interval_seconds: float = DEFAULT_MIN_REQUEST_INTERVAL,
    retry: RetryPolicy | None = None,
) -> ResilienceConfig:
    return ResilienceConfig(
        name="webflow",
        base_url=WEBFLOW_BASE_URL,
        timeout_seconds=WEBFLOW_TIMEOUT_SECONDS,
        retry=retry or RetryPolicy(),
        min_interval_seconds=min_interval_seconds,
        default_headers={
            "Authorization": f"Bearer {api_token}",
            "accept": "application/json",
        },
    )


def _parse_collection_overrides(raw: str | None) -> dict[str, str]:
    if raw is None:
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ConfigurationError("WEBFLOW_COLLECTIONS_JSON is not valid JSON") from exc
    if not isinstance(parsed, dict) or not all(
        isinstance(key, str) and isinstance(value, str) for key, value in parsed.items()
    ):
        raise ConfigurationError(
            "WEBFLOW_COLLECTIONS_JSON must map collection keys to collection ids"
        )
    return dict(parsed)


def _parse_locale_tags(raw: str | None) -> tuple[str, ...]:
    if raw is None:
        return DEFAULT_SECONDARY_LOCALE_TAGS
    tags = tuple(tag.strip() for tag in raw.split(",") if tag.strip())
    return tags or DEFAULT_SECONDARY_LOCALE_TAGS


def get_webflow_config(*, resilience: ResilienceConfig | None = None) -> WebflowConfig:
    values = require_env_vars(("WEBFLOW_API_TOKEN", "WEBFLOW_SITE_ID"))
    api_token = values["WEBFLOW_API_TOKEN"]
    return WebflowConfig(
        api_token=api_token,
        site_id=values["WEBFLOW_SITE_ID"],
        resilience=resilience
        or build_webflow_resilience(
            api_token,
            min_interval_seconds=env_float(
                "WEBFLOW_MIN_REQUEST_INTERVAL", default=DEFAULT_MIN_REQUEST_INTERVAL
            ),
        ),
        collection_overrides=_parse_collection_overrides(
            optional_env_var("WEBFLOW_COLLECTIONS_JSON")
        ),
        secondary_locale_tags=_parse_locale_tags(
            optional_env_var("WEBFLOW_SECONDARY_LOCALE_TAGS")
        ),
    )
