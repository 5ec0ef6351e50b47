"""
SnapshotService — export, import and retained backups of the whole dataset.

A snapshot is Local Store + Mutation Queue + last sync time captured as one
versioned JSON document. Import is a destructive replace-all: it checks the
document version first (before anything else is validated), then swaps
store, queue and last sync time in a single transaction. A failure at any
point leaves the previous state untouched.

Retained backups are SnapshotRecord rows, newest first, bounded by
``retention``; the oldest are evicted when a new one is created.
"""
import json
import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import List, Optional, Union

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, col, select

from tinysteps.clock import Clock, utcnow
from tinysteps.models.snapshot import SnapshotDocument, SnapshotItem, encode_payload
from tinysteps.models.store import SnapshotRecord
from tinysteps.storage.errors import (
    IncompatibleVersionError,
    InvalidSnapshotError,
    PersistenceError,
)
from tinysteps.storage.local_store import LocalStore
from tinysteps.storage.meta import LAST_BACKUP_KEY, LAST_SYNC_KEY, MetaStore
from tinysteps.storage.mutation_queue import MutationQueue

logger = logging.getLogger(__name__)

CURRENT_VERSION = "1.0.0"
SUPPORTED_VERSIONS = frozenset({CURRENT_VERSION})
BACKUP_FILE_PREFIX = "TinySteps_Backup_"
_EPOCH = datetime(1970, 1, 1)


class SnapshotService:
    """Builds and restores SnapshotDocuments; manages retained backups."""

    def __init__(
        self,
        store: LocalStore,
        queue: MutationQueue,
        meta: MetaStore,
        *,
        retention: int = 5,
        auto_backup_hours: int = 24,
        clock: Clock = utcnow,
    ):
        self.store = store
        self.queue = queue
        self.meta = meta
        self.engine = queue.engine
        self.retention = max(1, retention)
        self.auto_backup_hours = auto_backup_hours
        self._clock = clock

    # ─── Export / import ──────────────────────────────────────────────────────

    def export_snapshot(self) -> SnapshotDocument:
        """Capture the current dataset. Works offline; never touches the remote."""
        with self.queue.lock, self.store.lock:
            entities = self.store.entries()
            items = self.queue.peek_all()
            last_sync = self.meta.last_sync_at()

        return SnapshotDocument(
            version=CURRENT_VERSION,
            created_at=self._clock(),
            entities={etype: encode_payload(data) for etype, data in entities.items()},
            pending_items=[SnapshotItem.from_sync_item(i) for i in items],
            last_sync_timestamp=last_sync,
        )

    def import_snapshot(self, document: SnapshotDocument) -> None:
        """Replace store, queue and last sync time with the document's contents.

        Raises:
            IncompatibleVersionError: version not supported; nothing changed.
            InvalidSnapshotError: payloads are not valid base64; nothing changed.
            PersistenceError: the write failed and was rolled back.
        """
        if document.version not in SUPPORTED_VERSIONS:
            raise IncompatibleVersionError(document.version, SUPPORTED_VERSIONS)
        try:
            entities = document.entity_payloads()
            items = document.sync_items()
        except ValueError as exc:  # binascii.Error subclasses ValueError
            raise InvalidSnapshotError(f"Snapshot payload is not valid base64: {exc}") from exc
        if len({item.id for item in items}) != len(items):
            raise InvalidSnapshotError("Snapshot has duplicate pending item ids")

        with self.queue.lock, self.store.lock:
            try:
                with Session(self.engine) as s:
                    self.store.delete_all(s)
                    for etype, payload in entities.items():
                        self.store.write(s, etype, payload)
                    self.queue.replace_all(s, items)
                    self.meta.write_datetime(s, LAST_SYNC_KEY, document.last_sync_timestamp)
                    s.commit()
            except SQLAlchemyError as exc:
                logger.error("Snapshot import failed, rolled back: %s", exc)
                raise PersistenceError(f"Could not import snapshot: {exc}") from exc

        logger.info(
            "Imported snapshot from %s: %d entity types, %d pending items",
            document.created_at.isoformat(), len(entities), len(items),
        )

    def parse_document(self, raw: Union[str, bytes]) -> SnapshotDocument:
        """Parse JSON text into a SnapshotDocument, checking version first.

        Raises:
            InvalidSnapshotError: not JSON, not an object, or fails validation.
            IncompatibleVersionError: the version is not supported.
        """
        try:
            data = json.loads(raw)
        except ValueError as exc:
            raise InvalidSnapshotError(f"Snapshot is not valid JSON: {exc}") from exc
        if not isinstance(data, dict):
            raise InvalidSnapshotError("Snapshot must be a JSON object")

        version = data.get("version")
        if not isinstance(version, str):
            raise InvalidSnapshotError("Snapshot has no version")
        if version not in SUPPORTED_VERSIONS:
            raise IncompatibleVersionError(version, SUPPORTED_VERSIONS)

        try:
            return SnapshotDocument.model_validate(data)
        except ValidationError as exc:
            raise InvalidSnapshotError(f"Snapshot failed validation: {exc}") from exc

    def import_document(self, raw: Union[str, bytes]) -> SnapshotDocument:
        document = self.parse_document(raw)
        self.import_snapshot(document)
        return document

    # ─── Files ────────────────────────────────────────────────────────────────

    def export_to_file(self, directory: Union[str, Path]) -> Path:
        """Write a snapshot as TinySteps_Backup_<epoch>.json. Returns the path."""
        document = self.export_snapshot()
        epoch = int((document.created_at - _EPOCH).total_seconds())
        path = Path(directory) / f"{BACKUP_FILE_PREFIX}{epoch}.json"
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(document.to_json(), encoding="utf-8")
        except OSError as exc:
            raise PersistenceError(f"Could not write backup file {path}: {exc}") from exc
        logger.info("Exported snapshot to %s", path)
        return path

    def import_from_file(self, path: Union[str, Path]) -> SnapshotDocument:
        try:
            raw = Path(path).read_bytes()
        except OSError as exc:
            raise PersistenceError(f"Could not read backup file {path}: {exc}") from exc
        return self.import_document(raw)

    # ─── Retained backups ─────────────────────────────────────────────────────

    def create_backup(self) -> SnapshotRecord:
        """Export and retain a snapshot, evicting beyond the retention bound."""
        document = self.export_snapshot()
        text = document.to_json()
        record = SnapshotRecord(
            version=document.version,
            created_at=document.created_at,
            document=text,
            size_bytes=len(text.encode("utf-8")),
            entity_count=len(document.entities),
            pending_count=len(document.pending_items),
        )
        try:
            with Session(self.engine) as s:
                s.add(record)
                s.flush()
                stale = s.exec(
                    select(SnapshotRecord)
                    .order_by(col(SnapshotRecord.created_at).desc(), col(SnapshotRecord.id).desc())
                    .offset(self.retention)
                ).all()
                for old in stale:
                    s.delete(old)
                self.meta.write_datetime(s, LAST_BACKUP_KEY, document.created_at)
                s.commit()
                s.refresh(record)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Could not save backup: {exc}") from exc

        if stale:
            logger.info("Evicted %d old backup(s)", len(stale))
        logger.info("Created backup %s (%d bytes)", record.id, record.size_bytes)
        return record

    def list_backups(self) -> List[SnapshotRecord]:
        """Retained backups, newest first."""
        with Session(self.engine) as s:
            return list(s.exec(
                select(SnapshotRecord)
                .order_by(col(SnapshotRecord.created_at).desc(), col(SnapshotRecord.id).desc())
            ).all())

    def load_backup(self, backup_id: int) -> Optional[SnapshotDocument]:
        with Session(self.engine) as s:
            record = s.get(SnapshotRecord, backup_id)
            if record is None:
                return None
            return self.parse_document(record.document)

    def restore_backup(self, backup_id: int) -> bool:
        """Import a retained backup. Returns False if no such backup exists."""
        document = self.load_backup(backup_id)
        if document is None:
            return False
        self.import_snapshot(document)
        return True

    def delete_backup(self, backup_id: int) -> bool:
        try:
            with Session(self.engine) as s:
                record = s.get(SnapshotRecord, backup_id)
                if record is None:
                    return False
                s.delete(record)
                s.commit()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Could not delete backup {backup_id}: {exc}") from exc
        return True

    def clear_backups(self) -> int:
        try:
            with Session(self.engine) as s:
                records = s.exec(select(SnapshotRecord)).all()
                for record in records:
                    s.delete(record)
                self.meta.write_datetime(s, LAST_BACKUP_KEY, None)
                s.commit()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Could not clear backups: {exc}") from exc
        return len(records)

    def should_auto_backup(self) -> bool:
        """True if no backup exists yet, or the last one is auto_backup_hours old."""
        last = self.meta.last_backup_at()
        if last is None:
            return True
        return self._clock() - last >= timedelta(hours=self.auto_backup_hours)

