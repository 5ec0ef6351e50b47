"""
Backup/maintenance script for the local durability store.

Usage:
    python -m tinysteps.scripts.backup export [--dir ./backups]
    python -m tinysteps.scripts.backup import TinySteps_Backup_1726905600.json
    python -m tinysteps.scripts.backup health
    python -m tinysteps.scripts.backup sync

import is a destructive replace-all of local data and pending items.
Exit status is non-zero when the command fails (or the store is unhealthy).
"""
import argparse
import asyncio
import logging
import sys
from typing import List, Optional

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
logger = logging.getLogger(__name__)


async def _export(layer, directory: Optional[str]) -> int:
    path = await layer.export_to_file(directory)
    logger.info("Snapshot written to %s", path)
    return 0


async def _import(layer, path: str) -> int:
    from tinysteps.executor import run_blocking

    document = await run_blocking(layer.snapshots.import_from_file, path)
    logger.info(
        "Imported %d entity types and %d pending items (snapshot %s)",
        len(document.entities),
        len(document.pending_items),
        document.created_at.isoformat(),
    )
    return 0


async def _health(layer) -> int:
    report = await layer.health_check()
    logger.info(
        "Healthy: %s | pending items: %d | storage: %d bytes",
        report.is_healthy, report.pending_item_count, report.storage_bytes,
    )
    for issue in report.issues:
        logger.error("Issue: %s", issue)
    for warning in report.warnings:
        logger.warning("Warning: %s", warning)
    return 0 if report.is_healthy else 1


async def _sync(layer) -> int:
    # One-shot: give the probe a chance to establish connectivity first
    await layer.reachability.check_now()
    await asyncio.sleep(layer.settings.reachability_debounce_seconds + 0.1)
    status = await layer.sync_now()
    logger.info("Sync %s%s", status.state.value, f": {status.reason}" if status.reason else "")
    return 0 if status.reason is None else 1


async def _main(args: argparse.Namespace) -> int:
    from tinysteps.db.engine import get_engine
    from tinysteps.layer import DurabilityLayer
    from tinysteps.storage.errors import DurabilityError

    layer = DurabilityLayer(get_engine())
    try:
        if args.command == "export":
            return await _export(layer, args.dir)
        if args.command == "import":
            return await _import(layer, args.path)
        if args.command == "health":
            return await _health(layer)
        return await _sync(layer)
    except DurabilityError as exc:
        logger.error("%s failed: %s", args.command, exc)
        return 2
    finally:
        await layer.stop()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="TinySteps backup and maintenance")
    sub = parser.add_subparsers(dest="command", required=True)

    export = sub.add_parser("export", help="Write a snapshot file")
    export.add_argument("--dir", default=None, help="Output directory (default: BACKUP_DIR)")

    imp = sub.add_parser("import", help="Replace local data with a snapshot file")
    imp.add_argument("path", help="Snapshot JSON file")

    sub.add_parser("health", help="Run the health check")
    sub.add_parser("sync", help="Run one sync pass")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    return asyncio.run(_main(args))


if __name__ == "__main__":
    sys.exit(main())
