"""Mutation queue rows, sync metadata and the sync audit log."""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict
from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel

from tinysteps.models.entities import EntityType, SyncAction


class QueuedMutation(SQLModel, table=True):
    """One pending change awaiting remote transmission.

    ``seq`` is the FIFO position; ``item_id`` is the public identifier handed
    back by enqueue and used for compare-and-remove after a sync pass.
    """

    seq: Optional[int] = Field(default=None, primary_key=True)
    item_id: str = Field(unique=True, index=True)
    entity_type: str = Field(index=True)
    action: str
    payload: bytes = b""
    enqueued_at: datetime = Field(sa_type=DateTime)

    def to_item(self) -> "SyncItem":
        return SyncItem(
            id=self.item_id,
            entity_type=EntityType(self.entity_type),
            action=SyncAction(self.action),
            payload=self.payload or b"",
            timestamp=self.enqueued_at,
        )


class SyncItem(BaseModel):
    """Detached, immutable view of a queued mutation."""

    model_config = ConfigDict(frozen=True)

    id: str
    entity_type: EntityType
    action: SyncAction
    payload: bytes = b""
    timestamp: datetime


class SyncMeta(SQLModel, table=True):
    """Key/value bookkeeping: last successful sync, last backup."""

    key: str = Field(primary_key=True)
    value: str


class SyncLog(SQLModel, table=True):
    """Records each sync pass for audit and debugging."""

    id: Optional[int] = Field(default=None, primary_key=True)
    started_at: datetime = Field(default_factory=datetime.utcnow, sa_type=DateTime)
    finished_at: Optional[datetime] = Field(default=None, sa_type=DateTime)
    status: str = "running"  # "running", "success", "partial", "error"
    items_total: int = 0
    items_synced: int = 0
    items_failed: int = 0
    error_message: Optional[str] = None
