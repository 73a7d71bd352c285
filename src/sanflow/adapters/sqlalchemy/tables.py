"""SQLAlchemy metadata for locally persisted sync settings."""

from __future__ import annotations

from sqlalchemy import Column, DateTime, MetaData, String, Table, Text

metadata = MetaData()

sync_settings_table = Table(
    "sync_settings",
    metadata,
    Column("key", String, primary_key=True),
    Column("payload", Text, nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
)
