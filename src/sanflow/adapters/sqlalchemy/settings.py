"""SQLAlchemy-backed settings store for running without write access to Sanity."""

from __future__ import annotations

from datetime import UTC, datetime
from logging import getLogger
from typing import TYPE_CHECKING

from sqlalchemy import create_engine, insert, select, update

from .tables import metadata, sync_settings_table

if TYPE_CHECKING:
    from sqlalchemy.engine import Engine

log = getLogger(__name__)


class SqlAlchemySettingsStore:
    def __init__(
        self,
        *,
        engine: Engine | None = None,
        database_uri: str | None = None,
    ) -> None:
        if engine is None and database_uri is None:
            raise ValueError("Provide either an engine or a database URI")
        self._engine = engine or create_engine(str(database_uri), future=True)
        metadata.create_all(self._engine)

    @property
    def engine(self) -> Engine:
        return self._engine

    async def load(self, key: str) -> str | None:
        statement = select(sync_settings_table.c.payload).where(sync_settings_table.c.key == key)
        with self._engine.connect() as connection:
            return connection.execute(statement).scalar_one_or_none()

    async def save(self, key: str, payload: str) -> None:
        now = datetime.now(UTC)
        with self._engine.begin() as connection:
            result = connection.execute(
                update(sync_settings_table)
                .where(sync_settings_table.c.key == key)
                .values(payload=payload, updated_at=now)
            )
            if result.rowcount == 0:
                connection.execute(
                    insert(sync_settings_table).values(key=key, payload=payload, updated_at=now)
                )
        log.debug("Saved settings row %s (%s bytes)", key, len(payload))

    def dispose(self) -> None:
        self._engine.dispose()
