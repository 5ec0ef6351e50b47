"""Map durability errors onto HTTP responses."""
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from tinysteps.storage.errors import (
    IncompatibleVersionError,
    InvalidSnapshotError,
    PersistenceError,
)

logger = logging.getLogger(__name__)


async def _persistence_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Storage failure on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=503, content={"detail": str(exc)})


async def _incompatible_version_handler(request: Request, exc: Exception) -> JSONResponse:
    return JSONResponse(
        status_code=409,
        content={
            "detail": str(exc),
            "version": exc.version,
            "supported": list(exc.supported),
        },
    )


async def _invalid_snapshot_handler(request: Request, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": str(exc)})


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(PersistenceError, _persistence_error_handler)
    app.add_exception_handler(IncompatibleVersionError, _incompatible_version_handler)
    app.add_exception_handler(InvalidSnapshotError, _invalid_snapshot_handler)
