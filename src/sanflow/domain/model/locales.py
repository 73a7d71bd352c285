"""Locale roles resolved once at the destination boundary."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum


class LocaleRole(StrEnum):
    PRIMARY = "primary"
    SECONDARY = "secondary"

    @property
    def language(self) -> str:
        """Language key used by localized source fields."""
        return "en" if self is LocaleRole.PRIMARY else "de"

    @property
    def fallback_language(self) -> str:
        return "de" if self is LocaleRole.PRIMARY else "en"


@dataclass(slots=True, frozen=True)
class LocaleMap:
    """Destination locale identifiers keyed by role.

    ``secondary`` is ``None`` when the destination site has no matching
    secondary locale; in that case only primary projections are written.
    """

    primary: str | None
    secondary: str | None = None

    def for_role(self, role: LocaleRole) -> str | None:
        return self.primary if role is LocaleRole.PRIMARY else self.secondary

    @property
    def has_secondary(self) -> bool:
        return self.secondary is not None

    def all_ids(self) -> tuple[str, ...]:
        return tuple(value for value in (self.primary, self.secondary) if value)
