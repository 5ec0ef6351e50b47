"""
APScheduler jobs for background sync and backups.

The periodic sync catches anything a reachability transition missed (e.g.
the connection came back while a pass was already running). The backup job
runs hourly and only writes a snapshot when the last one is old enough.

The scheduler runs inside the same process as the reachability monitor
(wired in __main__.py).
"""
import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from tinysteps.executor import run_blocking

logger = logging.getLogger(__name__)

AUTO_BACKUP_CHECK_MINUTES = 60


def build_scheduler(layer) -> AsyncIOScheduler:
    """
    Create and configure the APScheduler.

    Args:
        layer: DurabilityLayer whose settings, sync engine and snapshots the jobs use.

    Returns:
        Configured AsyncIOScheduler (not yet started).
    """
    settings = layer.settings
    scheduler = AsyncIOScheduler()

    scheduler.add_job(
        _periodic_sync,
        trigger="interval",
        seconds=settings.sync_interval_seconds,
        id="periodic_sync",
        replace_existing=True,
        kwargs={"layer": layer},
    )
    scheduler.add_job(
        _auto_backup,
        trigger="interval",
        minutes=AUTO_BACKUP_CHECK_MINUTES,
        id="auto_backup",
        replace_existing=True,
        kwargs={"layer": layer},
    )

    return scheduler


async def _periodic_sync(layer) -> None:
    """Interval job: attempt a sync pass (no-op when offline or already running)."""
    try:
        status = await layer.sync_now()
        logger.debug("Periodic sync finished with %s", status.state.value)
    except Exception as exc:
        logger.error("Periodic sync failed: %s", exc)


async def _auto_backup(layer) -> None:
    """Interval job: retain a snapshot when the last backup is old enough."""
    try:
        due = await run_blocking(layer.snapshots.should_auto_backup)
        if not due:
            return
        record = await layer.create_backup()
        logger.info("Automatic backup %s created", record.id)
    except Exception as exc:
        logger.error("Automatic backup failed: %s", exc)
