"""FastAPI application factory for the local sync control surface."""
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from ordersync.api.routes import control
from ordersync.sync.engine import SyncEngine, build_sync_engine


def create_app(engine: Optional[SyncEngine] = None) -> FastAPI:
    """Build and return the FastAPI app.

    Args:
        engine: SyncEngine to control. Built from Settings on startup if None.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if getattr(app.state, "sync_engine", None) is None:
            app.state.sync_engine = build_sync_engine()
        yield
        app.state.sync_engine.stop()

    app = FastAPI(
        title="Order Sync Agent",
        description="Legacy order database → remote order API synchronization",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.sync_engine = engine

    app.include_router(control.router, prefix="/sync", tags=["sync"])

    return app
