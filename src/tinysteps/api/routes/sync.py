"""Sync trigger and status routes."""
import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends
from pydantic import BaseModel
from sqlmodel import Session, col, select

from tinysteps.api.deps import get_layer
from tinysteps.executor import run_blocking
from tinysteps.layer import DurabilityLayer
from tinysteps.models.sync import SyncLog

logger = logging.getLogger(__name__)

router = APIRouter()


class LastPass(BaseModel):
    status: str
    started_at: datetime
    finished_at: Optional[datetime]
    items_synced: int
    items_failed: int
    error_message: Optional[str]


class SyncStatusResponse(BaseModel):
    state: str
    reason: Optional[str]
    is_online: bool
    progress_succeeded: int
    progress_total: int
    pending_items: int
    last_sync_at: Optional[datetime]
    last_pass: Optional[LastPass]


async def _do_sync(layer: DurabilityLayer) -> None:
    """Background task: run one sync pass."""
    try:
        await layer.sync_now()
    except Exception as exc:
        logger.error("On-demand sync failed: %s", exc)


@router.post("/trigger")
async def trigger_sync(
    background_tasks: BackgroundTasks,
    layer: DurabilityLayer = Depends(get_layer),
):
    """
    Trigger an on-demand sync.
    Returns immediately; the pass runs in the background.
    """
    if layer.sync_engine.is_syncing:
        return {"message": "Sync already in progress"}
    background_tasks.add_task(_do_sync, layer)
    return {"message": "Sync started"}


def _latest_log(engine) -> Optional[SyncLog]:
    with Session(engine) as s:
        return s.exec(
            select(SyncLog).order_by(col(SyncLog.started_at).desc(), col(SyncLog.id).desc())
        ).first()


@router.get("/status", response_model=SyncStatusResponse)
async def sync_status(layer: DurabilityLayer = Depends(get_layer)):
    """Current engine state plus the most recent recorded pass."""
    engine = layer.sync_engine
    log = await run_blocking(_latest_log, layer.engine)
    return SyncStatusResponse(
        state=engine.status.state.value,
        reason=engine.status.reason,
        is_online=layer.reachability.is_online,
        progress_succeeded=engine.progress.succeeded,
        progress_total=engine.progress.total,
        pending_items=await run_blocking(layer.queue.count),
        last_sync_at=await run_blocking(layer.meta.last_sync_at),
        last_pass=LastPass(
            status=log.status,
            started_at=log.started_at,
            finished_at=log.finished_at,
            items_synced=log.items_synced,
            items_failed=log.items_failed,
            error_message=log.error_message,
        ) if log else None,
    )
