"""
Main entrypoint: starts the reachability monitor + APScheduler in one process.

FastAPI runs separately under uvicorn (diagnostics and control endpoints).

Usage:
    python -m tinysteps             # starts monitor + scheduler
    uvicorn tinysteps.api.main:app --host 0.0.0.0 --port 8000  # starts API
"""
import asyncio
import logging

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(name)s %(levelname)s %(message)s",
)
logger = logging.getLogger(__name__)


async def _run() -> None:
    from tinysteps.config import get_settings
    from tinysteps.db.engine import get_engine
    from tinysteps.layer import DurabilityLayer
    from tinysteps.scheduler.jobs import build_scheduler

    settings = get_settings()
    layer = DurabilityLayer(get_engine(), settings)

    if layer.transport is None:
        logger.info("REMOTE_SYNC_URL not set; running in local-only mode.")

    await layer.start()

    scheduler = build_scheduler(layer)
    scheduler.start()
    logger.info(
        "Scheduler started (sync every %ds, backup check hourly)",
        settings.sync_interval_seconds,
    )

    # Drain anything left over from the previous run
    await layer.sync_now()

    logger.info("Durability layer is running. Press Ctrl+C to stop.")
    try:
        await asyncio.Event().wait()
    except (KeyboardInterrupt, SystemExit, asyncio.CancelledError):
        logger.info("Shutting down...")
    finally:
        scheduler.shutdown()
        await layer.stop()
        logger.info("Goodbye.")


if __name__ == "__main__":
    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        pass
