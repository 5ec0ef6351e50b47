"""FastAPI application factory."""
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from tinysteps.api.errors import register_error_handlers
from tinysteps.api.routes import backup, entries, health, sync as sync_routes
from tinysteps.db.engine import get_engine
from tinysteps.layer import DurabilityLayer


def create_app(layer: Optional[DurabilityLayer] = None) -> FastAPI:
    """Build and return the FastAPI app.

    Args:
        layer: Pre-built DurabilityLayer (tests). When None, one is built
               from settings on startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if getattr(app.state, "layer", None) is None:
            app.state.layer = DurabilityLayer(get_engine())
        await app.state.layer.start()
        yield
        await app.state.layer.stop()

    app = FastAPI(
        title="TinySteps Durability API",
        description="Local store, sync queue, backups and health for TinySteps",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.layer = layer

    register_error_handlers(app)
    app.include_router(entries.router, prefix="/entries", tags=["entries"])
    app.include_router(sync_routes.router, prefix="/sync", tags=["sync"])
    app.include_router(health.router, prefix="/health", tags=["health"])
    app.include_router(backup.router, prefix="/backup", tags=["backup"])

    return app


# Module-level app instance for uvicorn
app = create_app()
