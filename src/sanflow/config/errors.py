"""Errors raised while assembling sanflow settings from the environment."""

from __future__ import annotations


class ConfigurationError(RuntimeError):
    """A Sanity, Webflow or storage setting is present but unusable."""


class MissingConfigurationError(ConfigurationError):
    """A required credential or identifier (API token, project, site) is unset."""
