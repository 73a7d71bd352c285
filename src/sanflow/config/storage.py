"""State storage configuration helpers."""

from __future__ import annotations

import os
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import Final

from .env import optional_env_var
from .errors import ConfigurationError

APP_DIR_NAME: Final[str] = "sanflow"
DEFAULT_DB_FILENAME: Final[str] = "sanflow.db"


class StateBackend(StrEnum):
    """Where the mapping, hash and asset ledgers are persisted."""

    SANITY = "sanity"
    SQLITE = "sqlite"


@dataclass(frozen=True, slots=True)
class StorageConfig:
    data_dir: Path
    backend: StateBackend = StateBackend.SANITY
    database_filename: str = DEFAULT_DB_FILENAME
    database_uri_override: str | None = None

    def resolve_data_dir(self) -> Path:
        return self.data_dir.expanduser().resolve()

    def ensure_data_dir(self) -> Path:
        data_dir = self.resolve_data_dir()
        data_dir.mkdir(parents=True, exist_ok=True)
        return data_dir

    def database_path(self, *, ensure: bool = True) -> Path:
        base = self.ensure_data_dir() if ensure else self.resolve_data_dir()
        return base / self.database_filename

    def database_uri(self) -> str:
        if self.database_uri_override:
            return self.database_uri_override
        return f"sqlite+pysqlite:///{self.database_path()}"


def _default_data_dir() -> Path:
    if os.name == "nt":
        base = os.getenv("LOCALAPPDATA")
        base_path = Path(base) if base else (Path.home() / "AppData" / "Local")
    else:
        base = os.getenv("XDG_DATA_HOME")
        base_path = Path(base) if base else (Path.home() / ".local" / "share")
    return (base_path / APP_DIR_NAME).expanduser().resolve()


def get_storage_config() -> StorageConfig:
    env_dir = optional_env_var("SANFLOW_DATA_DIR")
    data_dir = Path(env_dir) if env_dir else _default_data_dir()
    raw_backend = optional_env_var("SANFLOW_STATE_BACKEND", StateBackend.SANITY.value)
    try:
        backend = StateBackend(str(raw_backend).lower())
    except ValueError as exc:
        choices = ", ".join(member.value for member in StateBackend)
        raise ConfigurationError(
            f"SANFLOW_STATE_BACKEND must be one of {choices}, got {raw_backend!r}"
        ) from exc
    return StorageConfig(
        data_dir=data_dir,
        backend=backend,
        database_uri_override=optional_env_var("DATABASE_URI"),
    )
