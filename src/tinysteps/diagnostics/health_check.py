"""
HealthCheck — read-only self-diagnosis of the local dataset.

Issues make the report unhealthy:
  * a Local Store entry that no longer deserializes ("Corrupted data for <type>")

Warnings are advisory:
  * sync queue longer than the threshold
  * more whole days since the last sync than allowed (never synced → no warning)
  * storage footprint (store + queue + retained backups) above the limit

run() only reads. It never repairs, evicts or resets anything.
"""
import logging
from typing import List

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from sqlalchemy import func
from sqlmodel import Session, select

from tinysteps.clock import Clock, utcnow
from tinysteps.models.store import SnapshotRecord
from tinysteps.storage.local_store import LocalStore, payload_is_readable
from tinysteps.storage.meta import MetaStore
from tinysteps.storage.mutation_queue import MutationQueue

logger = logging.getLogger(__name__)

BYTES_PER_MB = 1024 * 1024


class HealthReport(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    is_healthy: bool
    issues: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    storage_bytes: int = 0
    pending_item_count: int = 0


class HealthCheck:
    def __init__(
        self,
        store: LocalStore,
        queue: MutationQueue,
        meta: MetaStore,
        *,
        queue_warning_threshold: int = 100,
        stale_sync_days: int = 7,
        storage_warning_mb: float = 50.0,
        clock: Clock = utcnow,
    ):
        self.store = store
        self.queue = queue
        self.meta = meta
        self.queue_warning_threshold = queue_warning_threshold
        self.stale_sync_days = stale_sync_days
        self.storage_warning_mb = storage_warning_mb
        self._clock = clock

    def run(self) -> HealthReport:
        issues: List[str] = []
        warnings: List[str] = []

        for etype, payload in self.store.entries().items():
            if not payload_is_readable(payload):
                issues.append(f"Corrupted data for {etype.value}")

        pending = self.queue.count()
        if pending > self.queue_warning_threshold:
            warnings.append(f"Large sync queue ({pending} items)")

        last_sync = self.meta.last_sync_at()
        if last_sync is not None:
            days = (self._clock() - last_sync).days
            if days > self.stale_sync_days:
                warnings.append(f"No sync for {days} days")

        storage = self.storage_bytes()
        if storage > self.storage_warning_mb * BYTES_PER_MB:
            warnings.append(f"Large cache size ({storage // BYTES_PER_MB} MB)")

        report = HealthReport(
            is_healthy=not issues,
            issues=issues,
            warnings=warnings,
            storage_bytes=storage,
            pending_item_count=pending,
        )
        if issues:
            logger.warning("Health check found %d issue(s): %s", len(issues), "; ".join(issues))
        return report

    def storage_bytes(self) -> int:
        """Local Store + queue payloads + retained backup documents."""
        with Session(self.queue.engine) as s:
            backups = s.exec(
                select(func.coalesce(func.sum(SnapshotRecord.size_bytes), 0))
            ).one()
        return self.store.footprint_bytes() + self.queue.footprint_bytes() + int(backups)
