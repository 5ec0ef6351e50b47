"""Local Store rows and retained backup snapshots."""
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel


class LocalEntry(SQLModel, table=True):
    """Latest serialized value-set for one entity type (one row per type)."""

    entity_type: str = Field(primary_key=True)
    payload: bytes
    updated_at: datetime = Field(default_factory=datetime.utcnow, sa_type=DateTime)


class SnapshotRecord(SQLModel, table=True):
    """A retained backup: the full snapshot JSON document as exported."""

    id: Optional[int] = Field(default=None, primary_key=True)
    version: str
    created_at: datetime = Field(index=True, sa_type=DateTime)
    document: str
    size_bytes: int = 0
    entity_count: int = 0
    pending_count: int = 0
