"""Integration tests for DurabilityLayer wiring: enqueue → reachability → sync."""
import asyncio

import pytest

from tinysteps.config import Settings
from tinysteps.layer import DurabilityLayer
from tinysteps.models.entities import EntityType, SyncAction
from tinysteps.sync.engine import SyncState, SyncStatus
from tinysteps.sync.reachability import ReachabilityMonitor
from tinysteps.sync.transport import HttpTransport


class RecordingTransport:
    def __init__(self, reject=()):
        self.reject = set(reject)
        self.sent = []

    async def send(self, item):
        self.sent.append(item)
        return item.entity_type not in self.reject


@pytest.fixture
def settings():
    return Settings(
        database_url="sqlite://",
        remote_sync_url="",
        reachability_probe_host="",
        reachability_debounce_seconds=0.01,
        sync_concurrency="sequential",
    )


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def monitor():
    return ReachabilityMonitor(debounce_seconds=0.01)


@pytest.fixture
def layer(engine, settings, transport, monitor, clock):
    return DurabilityLayer(engine, settings, transport=transport, reachability=monitor, clock=clock)


class TestOperations:
    @pytest.mark.asyncio
    async def test_enqueue_is_visible_locally_before_sync(self, layer):
        await layer.enqueue(EntityType.FEEDING, SyncAction.CREATE, b'[{"ml": 90}]')
        assert layer.store.get(EntityType.FEEDING) == b'[{"ml": 90}]'
        assert layer.queue.count() == 1

    @pytest.mark.asyncio
    async def test_sync_now_while_offline_is_noop(self, layer, transport):
        await layer.enqueue(EntityType.FEEDING, SyncAction.CREATE, b"[]")
        status = await layer.sync_now()
        assert status == SyncStatus.idle()
        assert transport.sent == []

    @pytest.mark.asyncio
    async def test_reconnect_drains_queue(self, layer, monitor, transport):
        await layer.start()
        await layer.enqueue(EntityType.FEEDING, SyncAction.CREATE, b"[]")
        await layer.enqueue(EntityType.SLEEP, SyncAction.CREATE, b"[]")

        monitor.report(True)
        for _ in range(50):
            await asyncio.sleep(0.02)
            if layer.sync_engine.status.state is SyncState.COMPLETED:
                break
        await layer.stop()

        assert [i.entity_type for i in transport.sent] == [EntityType.FEEDING, EntityType.SLEEP]
        assert layer.queue.count() == 0
        assert layer.meta.last_sync_at() is not None

    @pytest.mark.asyncio
    async def test_stop_unsubscribes(self, layer, monitor, transport):
        await layer.start()
        await layer.stop()
        await layer.enqueue(EntityType.FEEDING, SyncAction.CREATE, b"[]")
        monitor.report(True)
        await asyncio.sleep(0.05)
        assert transport.sent == []

    @pytest.mark.asyncio
    async def test_export_import_round_trip(self, layer):
        await layer.enqueue(EntityType.MILESTONE, SyncAction.CREATE, b'[{"first": "steps"}]')
        document = await layer.export_snapshot()
        await layer.clear_cache()
        assert layer.queue.count() == 0

        await layer.import_snapshot(document)
        assert layer.store.get(EntityType.MILESTONE) == b'[{"first": "steps"}]'
        assert layer.queue.count() == 1

    @pytest.mark.asyncio
    async def test_import_document_text(self, layer):
        await layer.enqueue(EntityType.MOOD, SyncAction.CREATE, b"[3]")
        text = (await layer.export_snapshot()).to_json()
        await layer.clear_cache()
        await layer.import_document(text)
        assert layer.store.get(EntityType.MOOD) == b"[3]"

    @pytest.mark.asyncio
    async def test_clear_cache_resets_last_sync(self, layer, monitor):
        monitor.report(True)
        await asyncio.sleep(0.05)
        await layer.enqueue(EntityType.FEEDING, SyncAction.CREATE, b"[]")
        await layer.sync_now()
        assert layer.meta.last_sync_at() is not None

        await layer.clear_cache()
        assert layer.meta.last_sync_at() is None
        assert layer.store.entries() == {}

    @pytest.mark.asyncio
    async def test_create_backup_and_health(self, layer):
        await layer.enqueue(EntityType.WEIGHT, SyncAction.CREATE, b'[{"kg": 4.1}]')
        record = await layer.create_backup()
        report = await layer.health_check()
        assert record.pending_count == 1
        assert report.is_healthy
        assert report.pending_item_count == 1
        assert report.storage_bytes >= record.size_bytes

    @pytest.mark.asyncio
    async def test_export_to_file_defaults_to_backup_dir(self, engine, clock, tmp_path):
        settings = Settings(database_url="sqlite://", backup_dir=str(tmp_path / "backups"))
        layer = DurabilityLayer(engine, settings, clock=clock)
        path = await layer.export_to_file()
        assert path.parent == tmp_path / "backups"
        assert path.exists()


class TestWiring:
    def test_local_only_mode(self, engine, settings):
        layer = DurabilityLayer(engine, settings)
        assert layer.transport is None
        # Nothing to probe: assume the network is there
        assert layer.reachability.is_online is True

    @pytest.mark.asyncio
    async def test_remote_url_builds_http_transport_and_probe(self, engine):
        settings = Settings(database_url="sqlite://", remote_sync_url="https://api.tinysteps.test")
        layer = DurabilityLayer(engine, settings)
        assert isinstance(layer.transport, HttpTransport)
        assert layer.transport.base_url == "https://api.tinysteps.test"
        assert layer.reachability.is_online is False
        await layer.stop()

    def test_per_type_concurrency_setting(self, engine):
        settings = Settings(database_url="sqlite://", sync_concurrency="per_type", sync_max_parallel=2)
        layer = DurabilityLayer(engine, settings)
        assert layer.sync_engine.concurrency.value == "per_type"
        assert layer.sync_engine.max_parallel == 2
