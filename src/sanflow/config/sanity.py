"""Sanity configuration values."""

from __future__ import annotations

from dataclasses import dataclass

from .env import optional_env_var, require_env_vars
from .http_resilience import RateLimit, ResilienceConfig, RetryPolicy

DEFAULT_DATASET = "production"
DEFAULT_API_VERSION = "2023-01-01"
SANITY_TIMEOUT_SECONDS = 30.0


@dataclass(frozen=True)
class SanityConfig:
    """Holds Sanity project configuration values."""

    project_id: str
    dataset: str
    api_version: str
    api_token: str
    resilience: ResilienceConfig

    @property
    def base_url(self) -> str:
        return f"https://{self.project_id}.api.sanity.io/v{self.api_version}/"


def build_sanity_resilience(project_id: str, api_version: str, api_token: str) -> ResilienceConfig:
    return ResilienceConfig(
        name="sanity",
        base_url=f"https://{project_id}.api.sanity.io/v{api_version}/",
        timeout_seconds=SANITY_TIMEOUT_SECONDS,
        retry=RetryPolicy(total=3, backoff_factor=0.5),
        ratelimit=RateLimit(max_calls=25, per_seconds=1.0),
        default_headers={"Authorization": f"Bearer {api_token}"},
    )


def get_sanity_config(*, resilience: ResilienceConfig | None = None) -> SanityConfig:
    values = require_env_vars(("SANITY_PROJECT_ID", "SANITY_API_TOKEN"))
    project_id = values["SANITY_PROJECT_ID"]
    api_token = values["SANITY_API_TOKEN"]
    api_version = optional_env_var("SANITY_API_VERSION", DEFAULT_API_VERSION) or DEFAULT_API_VERSION
    return SanityConfig(
        project_id=project_id,
        dataset=optional_env_var("SANITY_DATASET", DEFAULT_DATASET) or DEFAULT_DATASET,
        api_version=api_version,
        api_token=api_token,
        resilience=resilience or build_sanity_resilience(project_id, api_version, api_token),
    )
