"""Snapshot export/import and retained backup routes."""
from datetime import datetime
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from pydantic import BaseModel

from tinysteps.api.deps import get_layer
from tinysteps.executor import run_blocking
from tinysteps.layer import DurabilityLayer
from tinysteps.models.store import SnapshotRecord

router = APIRouter()


class BackupSummary(BaseModel):
    id: int
    version: str
    created_at: datetime
    size_bytes: int
    entity_count: int
    pending_count: int

    @classmethod
    def from_record(cls, record: SnapshotRecord) -> "BackupSummary":
        return cls(
            id=record.id,
            version=record.version,
            created_at=record.created_at,
            size_bytes=record.size_bytes,
            entity_count=record.entity_count,
            pending_count=record.pending_count,
        )


@router.get("/export")
async def export_snapshot(layer: DurabilityLayer = Depends(get_layer)):
    """Download the current dataset as a snapshot document."""
    document = await layer.export_snapshot()
    return Response(content=document.to_json(), media_type="application/json")


@router.post("/import")
async def import_snapshot(request: Request, layer: DurabilityLayer = Depends(get_layer)):
    """Replace all local data with the posted snapshot document."""
    document = await layer.import_document(await request.body())
    return {
        "message": "Snapshot imported",
        "entities": len(document.entities),
        "pending_items": len(document.pending_items),
    }


@router.post("", response_model=BackupSummary)
async def create_backup(layer: DurabilityLayer = Depends(get_layer)):
    record = await layer.create_backup()
    return BackupSummary.from_record(record)


@router.get("", response_model=List[BackupSummary])
async def list_backups(layer: DurabilityLayer = Depends(get_layer)):
    """Retained backups, newest first."""
    records = await run_blocking(layer.snapshots.list_backups)
    return [BackupSummary.from_record(r) for r in records]


@router.post("/{backup_id}/restore")
async def restore_backup(backup_id: int, layer: DurabilityLayer = Depends(get_layer)):
    if not await run_blocking(layer.snapshots.restore_backup, backup_id):
        raise HTTPException(status_code=404, detail="Backup not found")
    return {"message": "Backup restored", "id": backup_id}


@router.delete("/{backup_id}")
async def delete_backup(backup_id: int, layer: DurabilityLayer = Depends(get_layer)):
    if not await run_blocking(layer.snapshots.delete_backup, backup_id):
        raise HTTPException(status_code=404, detail="Backup not found")
    return {"message": "Backup deleted", "id": backup_id}
