from __future__ import annotations

import time

import structlog
from fastapi import APIRouter, Depends, Response, status

from ecs_exporter.api.deps import get_exporter
from ecs_exporter.exporter import Exporter
from ecs_exporter.exposition.catalog import render_snapshot
from ecs_exporter.exposition.encoder import CONTENT_TYPE

logger = structlog.get_logger()

router = APIRouter()

NOT_INITIALIZED = "snapshot not yet initialized\n"
RENDER_FAILED = "error rendering metrics\n"


@router.get("/metrics")
async def metrics(exporter: Exporter = Depends(get_exporter)) -> Response:  # noqa: B008
    """Render the current snapshot. Never calls the ECS API."""
    started = time.perf_counter()
    snapshot = exporter.store.current()

    if snapshot is None:
        code, body = status.HTTP_503_SERVICE_UNAVAILABLE, NOT_INITIALIZED
    else:
        try:
            body = render_snapshot(snapshot) + exporter.metrics.render()
            code = status.HTTP_200_OK
        except Exception as exc:
            logger.exception("render_failed", captured_at=snapshot.captured_at, error=str(exc))
            code, body = status.HTTP_500_INTERNAL_SERVER_ERROR, RENDER_FAILED

    exporter.metrics.observe_request("/metrics", code, time.perf_counter() - started)
    return Response(content=body, status_code=code, media_type=CONTENT_TYPE)
