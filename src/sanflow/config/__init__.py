"""Application configuration helpers."""

from __future__ import annotations

from .env import env_flag, env_float, env_int, optional_env_var, require_env_var, require_env_vars
from .errors import ConfigurationError, MissingConfigurationError
from .http_resilience import RateLimit, ResilienceConfig, RetryPolicy
from .sanity import SanityConfig, get_sanity_config
from .storage import StateBackend, StorageConfig, get_storage_config
from .sync import SyncConfig, get_sync_config
from .webflow import WebflowConfig, build_webflow_resilience, get_webflow_config

__all__ = [
    "ConfigurationError",
    "MissingConfigurationError",
    "RateLimit",
    "ResilienceConfig",
    "RetryPolicy",
    "SanityConfig",
    "StateBackend",
    "StorageConfig",
    "SyncConfig",
    "WebflowConfig",
    "build_webflow_resilience",
    "env_flag",
    "env_float",
    "env_int",
    "get_sanity_config",
    "get_storage_config",
    "get_sync_config",
    "get_webflow_config",
    "optional_env_var",
    "require_env_var",
    "require_env_vars",
]
