"""Timestamps the layer remembers across restarts (last sync, last backup)."""
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from tinysteps.clock import to_naive_utc
from tinysteps.models.sync import SyncMeta
from tinysteps.storage.errors import PersistenceError

LAST_SYNC_KEY = "last_sync_at"
LAST_BACKUP_KEY = "last_backup_at"


class MetaStore:
    """Small key/value namespace stored beside the queue."""

    def __init__(self, engine):
        self.engine = engine

    def get_datetime(self, key: str) -> Optional[datetime]:
        with Session(self.engine) as s:
            row = s.get(SyncMeta, key)
        return datetime.fromisoformat(row.value) if row is not None else None

    def set_datetime(self, key: str, value: Optional[datetime]) -> None:
        try:
            with Session(self.engine) as s:
                self.write_datetime(s, key, value)
                s.commit()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Could not save {key}: {exc}") from exc

    def write_datetime(self, session: Session, key: str, value: Optional[datetime]) -> None:
        """Stage a write inside the caller's transaction; None deletes the key."""
        if value is not None:
            value = to_naive_utc(value)
        row = session.get(SyncMeta, key)
        if value is None:
            if row is not None:
                session.delete(row)
            return
        if row is None:
            row = SyncMeta(key=key, value=value.isoformat())
        else:
            row.value = value.isoformat()
        session.add(row)

    # ─── Convenience accessors ────────────────────────────────────────────────

    def last_sync_at(self) -> Optional[datetime]:
        return self.get_datetime(LAST_SYNC_KEY)

    def last_backup_at(self) -> Optional[datetime]:
        return self.get_datetime(LAST_BACKUP_KEY)
