"""
DurabilityLayer — wires the storage, sync, backup and diagnostics services.

Everything is constructed explicitly here from Settings and an engine; the
services themselves hold no globals. The async methods are the surface the
app (or the HTTP API) calls: blocking SQLite work is pushed to the default
executor so the event loop never waits on disk.
"""
import logging
from pathlib import Path
from typing import Optional, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from tinysteps.backup.snapshot_service import SnapshotService
from tinysteps.clock import Clock, utcnow
from tinysteps.config import Settings, get_settings
from tinysteps.diagnostics.health_check import HealthCheck, HealthReport
from tinysteps.executor import run_blocking
from tinysteps.models.entities import SyncAction
from tinysteps.models.snapshot import SnapshotDocument
from tinysteps.models.store import SnapshotRecord
from tinysteps.storage.errors import PersistenceError
from tinysteps.storage.local_store import EntityKey, LocalStore
from tinysteps.storage.meta import LAST_SYNC_KEY, MetaStore
from tinysteps.storage.mutation_queue import MutationQueue
from tinysteps.sync.engine import SyncConcurrency, SyncEngine, SyncStatus
from tinysteps.sync.reachability import ReachabilityMonitor, probe_target_from_url, tcp_probe
from tinysteps.sync.transport import HttpTransport, SyncTransport

logger = logging.getLogger(__name__)


class DurabilityLayer:
    """Composition root for the local-first durability services."""

    def __init__(
        self,
        engine,
        settings: Optional[Settings] = None,
        *,
        transport: Optional[SyncTransport] = None,
        reachability: Optional[ReachabilityMonitor] = None,
        clock: Clock = utcnow,
    ):
        """
        Args:
            engine: SQLAlchemy engine with the tinysteps tables created.
            settings: Settings (defaults to get_settings()).
            transport: Remote sender. Defaults to an HttpTransport when
                       remote_sync_url is set; otherwise local-only mode.
            reachability: Monitor to use instead of one built from settings.
            clock: Callable returning the current naive-UTC datetime.
        """
        self.settings = settings or get_settings()
        self.engine = engine
        s = self.settings

        if transport is None and s.remote_sync_url:
            transport = HttpTransport(s.remote_sync_url, timeout=s.remote_timeout_seconds)
        self.transport = transport

        self.store = LocalStore(engine, clock=clock)
        self.queue = MutationQueue(engine, self.store, clock=clock)
        self.meta = MetaStore(engine)
        self.reachability = reachability or _build_monitor(s)
        self.sync_engine = SyncEngine(
            self.queue,
            self.meta,
            self.reachability,
            transport,
            concurrency=SyncConcurrency(s.sync_concurrency),
            max_parallel=s.sync_max_parallel,
            item_timeout=s.sync_item_timeout_seconds,
            clock=clock,
        )
        self.snapshots = SnapshotService(
            self.store,
            self.queue,
            self.meta,
            retention=s.snapshot_retention,
            auto_backup_hours=s.auto_backup_hours,
            clock=clock,
        )
        self.health = HealthCheck(
            self.store,
            self.queue,
            self.meta,
            queue_warning_threshold=s.queue_warning_threshold,
            stale_sync_days=s.stale_sync_days,
            storage_warning_mb=s.storage_warning_mb,
            clock=clock,
        )
        self._unsubscribe = None

    # ─── Lifecycle ────────────────────────────────────────────────────────────

    async def start(self) -> None:
        """Subscribe the sync engine to reachability and start probing."""
        if self._unsubscribe is None:
            self._unsubscribe = self.reachability.subscribe(
                self.sync_engine.on_reachability_change
            )
        await self.reachability.start()

    async def stop(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        await self.reachability.stop()
        if isinstance(self.transport, HttpTransport):
            await self.transport.aclose()

    # ─── Operations ───────────────────────────────────────────────────────────

    async def enqueue(self, entity_type: EntityKey, action: SyncAction, payload: bytes = b"") -> str:
        return await run_blocking(self.queue.enqueue, entity_type, action, payload)

    async def sync_now(self) -> SyncStatus:
        return await self.sync_engine.attempt_sync()

    async def export_snapshot(self) -> SnapshotDocument:
        return await run_blocking(self.snapshots.export_snapshot)

    async def import_snapshot(self, document: SnapshotDocument) -> None:
        await run_blocking(self.snapshots.import_snapshot, document)

    async def import_document(self, raw: Union[str, bytes]) -> SnapshotDocument:
        return await run_blocking(self.snapshots.import_document, raw)

    async def export_to_file(self, directory: Union[str, Path, None] = None) -> Path:
        return await run_blocking(
            self.snapshots.export_to_file, directory or self.settings.backup_dir
        )

    async def create_backup(self) -> SnapshotRecord:
        return await run_blocking(self.snapshots.create_backup)

    async def health_check(self) -> HealthReport:
        return await run_blocking(self.health.run)

    async def clear_cache(self) -> None:
        await run_blocking(self._clear_cache)

    def _clear_cache(self) -> None:
        """Drop local data, pending items and the last sync time together."""
        with self.queue.lock, self.store.lock:
            try:
                with Session(self.engine) as s:
                    self.store.delete_all(s)
                    self.queue.delete_all(s)
                    self.meta.write_datetime(s, LAST_SYNC_KEY, None)
                    s.commit()
            except SQLAlchemyError as exc:
                raise PersistenceError(f"Could not clear cache: {exc}") from exc
        logger.info("Local cache cleared")


def _build_monitor(settings: Settings) -> ReachabilityMonitor:
    host, port = settings.reachability_probe_host, settings.reachability_probe_port
    if not host:
        host, default_port = probe_target_from_url(settings.remote_sync_url)
        port = port or default_port
    if not host:
        # Nothing to probe; treat the network as available
        return ReachabilityMonitor(
            debounce_seconds=settings.reachability_debounce_seconds,
            initially_online=True,
        )
    return ReachabilityMonitor(
        tcp_probe(host, port or 443, timeout=settings.reachability_probe_timeout),
        debounce_seconds=settings.reachability_debounce_seconds,
        poll_seconds=settings.reachability_poll_seconds,
    )
