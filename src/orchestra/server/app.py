"""FastAPI application setup and lifespan."""

from __future__ import annotations

import asyncio
import atexit
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from orchestra import __version__
from orchestra.config import OrchestraSettings, load_settings
from orchestra.process.transcript import cleanup_transcripts
from orchestra.server.routes import router
from orchestra.server.services import OrchestraServices

_log = logging.getLogger(__name__)


async def _persist_periodically(services: OrchestraServices, interval: float) -> None:
    """Write the state snapshot every *interval* seconds until cancelled."""
    while True:
        await asyncio.sleep(interval)
        await services.persist_quietly()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: restore state, persist periodically, clean up."""
    services: OrchestraServices = app.state.orchestra
    settings = services.settings
    _log.info("Orchestra server starting")

    services.restore()
    removed = cleanup_transcripts(settings.log_dir)
    if removed:
        _log.info("Removed %d stale transcript file(s)", removed)
    atexit.register(services.controller.kill_all_now)

    persist_task: asyncio.Task[None] | None = None
    if settings.persist_interval > 0:
        persist_task = asyncio.create_task(
            _persist_periodically(services, settings.persist_interval)
        )
    try:
        yield
    finally:
        _log.info("Orchestra server shutting down")
        if persist_task is not None:
            persist_task.cancel()
            await asyncio.gather(persist_task, return_exceptions=True)
        await services.controller.cleanup_all()
        await services.persist_quietly()
        atexit.unregister(services.controller.kill_all_now)


def create_app(settings: OrchestraSettings | None = None) -> FastAPI:
    """Build the application around a fresh service container."""
    services = OrchestraServices.from_settings(settings or load_settings())
    app = FastAPI(title="Orchestra", version=__version__, lifespan=lifespan)
    app.state.orchestra = services
    app.include_router(router)
    return app
