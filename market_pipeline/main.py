from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from market_pipeline.api.routes import router
from market_pipeline.config.settings import get_settings
from market_pipeline.services.collection import build_collection_loop
from market_pipeline.services.run_lease import RunLease
from market_pipeline.services.scheduler import NightlyScheduler


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = app.state.get_settings()
    if settings.NIGHTLY_SCHEDULE_ENABLED and app.state.scheduler is None:
        if app.state.collection_loop is None:
            app.state.collection_loop = build_collection_loop(settings, lease=app.state.run_lease)
        app.state.scheduler = NightlyScheduler(
            collection_loop=app.state.collection_loop,
            interval_sec=settings.NIGHTLY_SCHEDULE_INTERVAL_SEC,
        )

    if app.state.scheduler is not None:
        app.state.scheduler.start()

    try:
        yield
    finally:
        if app.state.scheduler is not None:
            app.state.scheduler.stop()


app = FastAPI(title="Market Data Enrichment Pipeline", version="0.1.0", lifespan=lifespan)
app.include_router(router, prefix="/v1")

# NOTE: lazy-loaded so app import does not require env during tests.
app.state.get_settings = get_settings
app.state.run_lease = RunLease()
app.state.collection_loop = None
app.state.scheduler = None
