"""
MutationQueue — durable FIFO log of changes not yet confirmed remotely.

enqueue() is the single write path for record edits:
  1. Apply the change to LocalStore (create/update overwrite, delete removes)
  2. Append a QueuedMutation row
  3. Commit both in one transaction

The commit happens before enqueue() returns, so an id handed back to the
caller survives an immediate crash. A failed commit raises PersistenceError
and leaves neither the store nor the queue changed.

Ordering: rows carry an auto-increment ``seq``; peek_all() returns them in
that order. remove_succeeded() deletes by item id only, so items appended
while a sync pass is running are never touched and failed items keep their
relative order.

Locking: queue lock first, then LocalStore.lock. Nothing takes them in the
opposite order.
"""
import logging
import threading
import uuid
from typing import Iterable, List, Optional

from sqlalchemy import delete, func
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, col, select

from tinysteps.clock import Clock, utcnow
from tinysteps.models.entities import EntityType, SyncAction
from tinysteps.models.sync import QueuedMutation, SyncItem
from tinysteps.storage.errors import PersistenceError
from tinysteps.storage.local_store import EntityKey, LocalStore

logger = logging.getLogger(__name__)


class MutationQueue:
    """Ordered, persisted queue of SyncItems with optimistic local apply."""

    def __init__(self, engine, store: LocalStore, clock: Clock = utcnow):
        """
        Args:
            engine: SQLAlchemy engine shared with the LocalStore.
            store: LocalStore that receives the optimistic write.
            clock: Callable returning the current naive-UTC datetime.
        """
        self.engine = engine
        self.store = store
        self._clock = clock
        self.lock = threading.RLock()

    def enqueue(
        self,
        entity_type: EntityKey,
        action: SyncAction,
        payload: bytes = b"",
    ) -> str:
        """Apply locally and queue for sync. Returns the new item id.

        Raises:
            PersistenceError: the change could not be written durably.
        """
        etype = EntityType(entity_type)
        act = SyncAction(action)
        item_id = uuid.uuid4().hex
        row = QueuedMutation(
            item_id=item_id,
            entity_type=etype.value,
            action=act.value,
            payload=payload,
            enqueued_at=self._clock(),
        )

        with self.lock, self.store.lock:
            try:
                with Session(self.engine) as s:
                    if act is SyncAction.DELETE:
                        self.store.delete(s, etype)
                    else:
                        self.store.write(s, etype, payload)
                    s.add(row)
                    s.commit()
            except SQLAlchemyError as exc:
                logger.error("Enqueue failed for %s/%s: %s", etype.value, act.value, exc)
                raise PersistenceError(
                    f"Could not save {act.value} for {etype.value}: {exc}"
                ) from exc

        logger.debug("Queued %s %s as %s", act.value, etype.value, item_id)
        return item_id

    def peek_all(self) -> List[SyncItem]:
        """Every pending item, oldest first. A stable copy, not a live view."""
        try:
            with Session(self.engine) as s:
                rows = s.exec(select(QueuedMutation).order_by(QueuedMutation.seq)).all()
                return [r.to_item() for r in rows]
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Could not read sync queue: {exc}") from exc

    def count(self) -> int:
        with Session(self.engine) as s:
            return int(s.exec(select(func.count()).select_from(QueuedMutation)).one())

    def footprint_bytes(self) -> int:
        with Session(self.engine) as s:
            total = s.exec(
                select(func.coalesce(func.sum(func.length(QueuedMutation.payload)), 0))
            ).one()
        return int(total)

    def remove_succeeded(self, ids: Iterable[str]) -> int:
        """Delete exactly the given item ids; unknown ids are ignored.

        Returns the number of rows removed.
        """
        id_list = list(ids)
        if not id_list:
            return 0
        with self.lock:
            try:
                with Session(self.engine) as s:
                    result = s.exec(
                        delete(QueuedMutation).where(col(QueuedMutation.item_id).in_(id_list))
                    )
                    s.commit()
                    removed = result.rowcount
            except SQLAlchemyError as exc:
                raise PersistenceError(f"Could not remove synced items: {exc}") from exc
        logger.debug("Removed %d synced items from queue", removed)
        return removed

    def clear(self) -> None:
        """Drop every pending item (user-initiated cache clear)."""
        with self.lock:
            try:
                with Session(self.engine) as s:
                    self.delete_all(s)
                    s.commit()
            except SQLAlchemyError as exc:
                raise PersistenceError(f"Could not clear sync queue: {exc}") from exc

    # ─── Transaction helpers (caller owns the session and the commit) ─────────

    def delete_all(self, session: Session) -> None:
        session.exec(delete(QueuedMutation))

    def append_all(self, session: Session, items: Iterable[SyncItem]) -> None:
        """Stage items in the given order, keeping their ids and timestamps."""
        for item in items:
            session.add(QueuedMutation(
                item_id=item.id,
                entity_type=item.entity_type.value,
                action=item.action.value,
                payload=item.payload,
                enqueued_at=item.timestamp,
            ))

    def get(self, item_id: str) -> Optional[SyncItem]:
        with Session(self.engine) as s:
            row = s.exec(
                select(QueuedMutation).where(QueuedMutation.item_id == item_id)
            ).first()
            return row.to_item() if row is not None else None

    def replace_all(self, session: Session, items: Iterable[SyncItem]) -> None:
        """Stage a full replacement of the queue (snapshot import)."""
        self.delete_all(session)
        self.append_all(session, items)
