"""Tests for APScheduler job configuration and job bodies."""
import pytest
from unittest.mock import AsyncMock, MagicMock, patch
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from tinysteps.config import Settings
from tinysteps.scheduler.jobs import build_scheduler, _auto_backup, _periodic_sync


def _layer(**overrides):
    layer = MagicMock()
    layer.settings = Settings(database_url="sqlite://", **overrides)
    return layer


class TestBuildScheduler:
    def test_returns_scheduler(self):
        scheduler = build_scheduler(_layer())
        assert isinstance(scheduler, AsyncIOScheduler)

    def test_jobs_registered(self):
        scheduler = build_scheduler(_layer())
        job_ids = {job.id for job in scheduler.get_jobs()}
        assert job_ids == {"periodic_sync", "auto_backup"}

    def test_periodic_sync_is_interval(self):
        scheduler = build_scheduler(_layer())
        job = next(j for j in scheduler.get_jobs() if j.id == "periodic_sync")
        assert job.trigger.__class__.__name__ == "IntervalTrigger"

    def test_sync_interval_from_layer_settings(self):
        """Scheduler uses the layer's own Settings, not the global ones."""
        with patch("tinysteps.config.get_settings") as global_settings:
            global_settings.return_value.sync_interval_seconds = 999
            scheduler = build_scheduler(_layer(sync_interval_seconds=120))

        job = next(j for j in scheduler.get_jobs() if j.id == "periodic_sync")
        assert job.trigger.interval.total_seconds() == 120

    def test_scheduler_not_running_on_creation(self):
        """build_scheduler should not auto-start."""
        scheduler = build_scheduler(_layer())
        assert not scheduler.running


# ─── Job bodies ────────────────────────────────────────────────────────────────

class TestPeriodicSyncJob:
    @pytest.mark.asyncio
    async def test_calls_sync_now(self):
        layer = MagicMock()
        layer.sync_now = AsyncMock()
        await _periodic_sync(layer)
        layer.sync_now.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_swallows_sync_errors(self):
        """A failing pass must not crash the scheduler job."""
        layer = MagicMock()
        layer.sync_now = AsyncMock(side_effect=RuntimeError("disk full"))
        await _periodic_sync(layer)  # should not raise


class TestAutoBackupJob:
    @pytest.mark.asyncio
    async def test_backs_up_when_due(self):
        layer = MagicMock()
        layer.snapshots.should_auto_backup.return_value = True
        layer.create_backup = AsyncMock()
        await _auto_backup(layer)
        layer.create_backup.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_skips_when_not_due(self):
        layer = MagicMock()
        layer.snapshots.should_auto_backup.return_value = False
        layer.create_backup = AsyncMock()
        await _auto_backup(layer)
        layer.create_backup.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_swallows_backup_errors(self):
        layer = MagicMock()
        layer.snapshots.should_auto_backup.side_effect = RuntimeError("db locked")
        await _auto_backup(layer)  # should not raise
