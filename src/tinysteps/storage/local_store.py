"""
LocalStore — latest known value-set per entity type.

One LocalEntry row per EntityType. Every call commits before it returns, so
a successful put() survives an immediate crash. The store is what the UI
renders from, independent of whether the remote has seen the change.

Corrupted payloads (bytes that no longer parse as JSON) are never raised
from get(): the caller gets None and the condition is logged. HealthCheck
reports them as issues.
"""
import json
import logging
import threading
from typing import Dict, List, Optional, Union

from sqlalchemy import delete, func
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from tinysteps.clock import Clock, utcnow
from tinysteps.models.entities import EntityType
from tinysteps.models.store import LocalEntry
from tinysteps.storage.errors import PersistenceError

logger = logging.getLogger(__name__)

EntityKey = Union[EntityType, str]


def payload_is_readable(payload: Optional[bytes]) -> bool:
    """True if payload deserializes as JSON."""
    if payload is None:
        return False
    try:
        json.loads(payload)
    except ValueError:  # JSONDecodeError and UnicodeDecodeError
        return False
    return True


class LocalStore:
    """Durable per-entity-type key/value store backed by SQLite."""

    def __init__(self, engine, clock: Clock = utcnow):
        """
        Args:
            engine: SQLAlchemy engine (SQLModel create_engine result).
            clock: Callable returning the current naive-UTC datetime.
        """
        self.engine = engine
        self._clock = clock
        # Held by MutationQueue (after its own lock) when it writes here
        self.lock = threading.RLock()

    # ─── Public API ───────────────────────────────────────────────────────────

    def put(self, entity_type: EntityKey, payload: bytes) -> None:
        """Overwrite the value-set for entity_type. Durable on return."""
        etype = EntityType(entity_type)
        with self.lock:
            try:
                with Session(self.engine) as s:
                    self.write(s, etype, payload)
                    s.commit()
            except SQLAlchemyError as exc:
                raise PersistenceError(
                    f"Could not save local data for {etype.value}: {exc}"
                ) from exc

    def get(self, entity_type: EntityKey) -> Optional[bytes]:
        """Return the stored payload, or None if absent or unreadable."""
        etype = EntityType(entity_type)
        payload = self.raw(etype)
        if payload is None:
            return None
        if not payload_is_readable(payload):
            logger.warning("Corrupted local data for %s; treating as absent", etype.value)
            return None
        return payload

    def remove(self, entity_type: EntityKey) -> None:
        etype = EntityType(entity_type)
        with self.lock:
            try:
                with Session(self.engine) as s:
                    self.delete(s, etype)
                    s.commit()
            except SQLAlchemyError as exc:
                raise PersistenceError(
                    f"Could not remove local data for {etype.value}: {exc}"
                ) from exc

    def raw(self, entity_type: EntityKey) -> Optional[bytes]:
        """Return stored bytes without the readability check."""
        etype = EntityType(entity_type)
        try:
            with Session(self.engine) as s:
                row = s.get(LocalEntry, etype.value)
                return bytes(row.payload) if row is not None else None
        except SQLAlchemyError as exc:
            raise PersistenceError(
                f"Could not read local data for {etype.value}: {exc}"
            ) from exc

    def entries(self) -> Dict[EntityType, bytes]:
        """Every stored payload, keyed by type, corrupted ones included."""
        try:
            with Session(self.engine) as s:
                rows = s.exec(select(LocalEntry).order_by(LocalEntry.entity_type)).all()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Could not read local store: {exc}") from exc

        result: Dict[EntityType, bytes] = {}
        for row in rows:
            try:
                etype = EntityType(row.entity_type)
            except ValueError:
                logger.warning("Ignoring local entry with unknown type %r", row.entity_type)
                continue
            result[etype] = bytes(row.payload)
        return result

    def entity_types(self) -> List[EntityType]:
        return list(self.entries().keys())

    def clear(self) -> None:
        """Drop every entry (user-initiated cache clear)."""
        with self.lock:
            try:
                with Session(self.engine) as s:
                    self.delete_all(s)
                    s.commit()
            except SQLAlchemyError as exc:
                raise PersistenceError(f"Could not clear local store: {exc}") from exc

    def footprint_bytes(self) -> int:
        """Total payload size in bytes."""
        with Session(self.engine) as s:
            total = s.exec(
                select(func.coalesce(func.sum(func.length(LocalEntry.payload)), 0))
            ).one()
        return int(total)

    # ─── Transaction helpers (caller owns the session and the commit) ─────────

    def write(self, session: Session, entity_type: EntityType, payload: bytes) -> None:
        row = session.get(LocalEntry, entity_type.value)
        if row is None:
            row = LocalEntry(
                entity_type=entity_type.value,
                payload=payload,
                updated_at=self._clock(),
            )
        else:
            row.payload = payload
            row.updated_at = self._clock()
        session.add(row)

    def delete(self, session: Session, entity_type: EntityType) -> None:
        row = session.get(LocalEntry, entity_type.value)
        if row is not None:
            session.delete(row)

    def delete_all(self, session: Session) -> None:
        session.exec(delete(LocalEntry))
