from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from ecs_exporter import __version__
from ecs_exporter.api.routes import health, metrics
from ecs_exporter.config import Settings, get_settings
from ecs_exporter.exporter import Exporter


def create_app(
    settings: Settings | None = None,
    *,
    exporter: Exporter | None = None,
    start_scheduler: bool = True,
) -> FastAPI:
    settings = settings or get_settings()
    exporter = exporter or Exporter(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if not start_scheduler:
            yield
            return
        async with exporter.running():
            yield

    app = FastAPI(
        title="ECS Service Exporter",
        version=__version__,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
        lifespan=lifespan,
    )
    app.state.exporter = exporter
    app.include_router(metrics.router, tags=["metrics"])
    app.include_router(health.router, tags=["health"])
    return app
