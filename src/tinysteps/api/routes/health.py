"""Health check route."""
from fastapi import APIRouter, Depends

from tinysteps.api.deps import get_layer
from tinysteps.diagnostics.health_check import HealthReport
from tinysteps.layer import DurabilityLayer

router = APIRouter()


@router.get("", response_model=HealthReport)
async def health(layer: DurabilityLayer = Depends(get_layer)):
    return await layer.health_check()
