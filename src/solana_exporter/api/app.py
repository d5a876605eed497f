from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from solana_exporter.api.routes import router
from solana_exporter.loop import ExporterLoop
from solana_exporter.rewards.cache import EpochCache


def create_app(*, loop: Optional[ExporterLoop] = None, cache: Optional[EpochCache] = None) -> FastAPI:
    """Create the scrape application.

    When a loop is given it is started with the app and stopped on shutdown.
    """

    @asynccontextmanager
    async def _lifespan(app: FastAPI):
        if loop is not None:
            loop.start()
        yield
        if loop is not None:
            loop.stop()

    app = FastAPI(
        title="Solana Exporter",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
        lifespan=_lifespan,
    )
    app.state.loop = loop
    app.state.cache = cache
    app.include_router(router)
    return app
