"""Tests for HealthCheck issues, warnings and footprint."""
from datetime import datetime

import pytest

from tinysteps.backup.snapshot_service import SnapshotService
from tinysteps.diagnostics.health_check import HealthCheck
from tinysteps.models.entities import EntityType, SyncAction
from tinysteps.storage.meta import LAST_SYNC_KEY
from tinysteps.sync.engine import SyncEngine, SyncStatus


@pytest.fixture
def health(store, queue, meta, clock):
    return HealthCheck(
        store, queue, meta,
        queue_warning_threshold=3,
        stale_sync_days=7,
        storage_warning_mb=0.0001,  # ~105 bytes
        clock=clock,
    )


class TestHealthCheck:
    def test_empty_store_is_healthy(self, health):
        report = health.run()
        assert report.is_healthy is True
        assert report.issues == []
        assert report.warnings == []
        assert report.storage_bytes == 0
        assert report.pending_item_count == 0

    def test_corrupted_entry_is_an_issue(self, health, store):
        store.put(EntityType.FEEDING, b"[]")
        store.put(EntityType.SLEEP, b"\x00garbage")
        report = health.run()
        assert report.is_healthy is False
        assert report.issues == ["Corrupted data for sleep"]

    def test_large_queue_warning(self, health, queue):
        for _ in range(4):
            queue.enqueue(EntityType.NAPPY, SyncAction.CREATE, b"[]")
        report = health.run()
        assert report.is_healthy is True
        assert "Large sync queue (4 items)" in report.warnings
        assert report.pending_item_count == 4

    def test_queue_at_threshold_no_warning(self, health, queue):
        for _ in range(3):
            queue.enqueue(EntityType.NAPPY, SyncAction.CREATE, b"[]")
        assert not any("sync queue" in w for w in health.run().warnings)

    def test_stale_sync_warning(self, health, meta, clock):
        meta.set_datetime(LAST_SYNC_KEY, clock.now)
        clock.advance(days=8, hours=2)
        assert "No sync for 8 days" in health.run().warnings

    def test_seven_days_is_not_stale(self, health, meta, clock):
        meta.set_datetime(LAST_SYNC_KEY, clock.now)
        clock.advance(days=7, hours=23)
        assert not any(w.startswith("No sync") for w in health.run().warnings)

    def test_never_synced_no_warning(self, health, clock):
        clock.advance(days=365)
        assert health.run().warnings == []

    def test_storage_counts_store_queue_and_backups(self, health, store, queue, meta, clock):
        queue.enqueue(EntityType.FEEDING, SyncAction.CREATE, b"x" * 100)  # store + queue
        record = SnapshotService(store, queue, meta, clock=clock).create_backup()
        report = health.run()
        assert report.storage_bytes == 200 + record.size_bytes
        assert any(w.startswith("Large cache size") for w in report.warnings)

    def test_run_is_read_only(self, health, store, queue, meta, network, clock):
        sync_engine = SyncEngine(queue, meta, network, transport=None, clock=clock)
        store.put(EntityType.SLEEP, b"{{corrupt")
        queue.enqueue(EntityType.FEEDING, SyncAction.CREATE, b"[]")
        meta.set_datetime(LAST_SYNC_KEY, datetime(2025, 1, 1))
        before = (store.entries(), queue.peek_all(), meta.last_sync_at())
        status, progress = sync_engine.status, sync_engine.progress

        health.run()
        health.run()

        assert (store.entries(), queue.peek_all(), meta.last_sync_at()) == before
        assert sync_engine.status == status == SyncStatus.idle()
        assert sync_engine.progress == progress
        assert not sync_engine.is_syncing

    def test_report_serializes_camel_case(self, health):
        data = health.run().model_dump(by_alias=True)
        assert set(data) == {"isHealthy", "issues", "warnings", "storageBytes", "pendingItemCount"}
