"""Record writes (through the mutation queue) and Local Store reads."""
import json
from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from tinysteps.api.deps import get_layer
from tinysteps.executor import run_blocking
from tinysteps.layer import DurabilityLayer
from tinysteps.models.entities import EntityType, SyncAction

router = APIRouter()


class EntryWriteRequest(BaseModel):
    action: SyncAction = SyncAction.UPDATE
    data: Any = None  # full value-set for the type; ignored for delete


@router.post("/{entity_type}")
async def write_entry(
    entity_type: EntityType,
    request: EntryWriteRequest,
    layer: DurabilityLayer = Depends(get_layer),
):
    """Apply a change locally and queue it for sync. Durable on 200."""
    payload = b"" if request.action is SyncAction.DELETE else json.dumps(request.data).encode("utf-8")
    item_id = await layer.enqueue(entity_type, request.action, payload)
    return {"item_id": item_id, "entity_type": entity_type.value, "action": request.action.value}


@router.get("/{entity_type}")
async def read_entry(entity_type: EntityType, layer: DurabilityLayer = Depends(get_layer)):
    """Latest local value-set for the type."""
    payload = await run_blocking(layer.store.get, entity_type)
    if payload is None:
        raise HTTPException(status_code=404, detail=f"No local data for {entity_type.value}")
    return json.loads(payload)
