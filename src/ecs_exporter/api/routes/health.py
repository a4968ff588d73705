from __future__ import annotations

import time

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from ecs_exporter.api.deps import get_exporter
from ecs_exporter.exporter import Exporter

router = APIRouter()


class HealthResponse(BaseModel):
    status: str
    threshold_seconds: float
    staleness_seconds: float | None = None
    captured_at: float | None = None


@router.get("/health", response_model=HealthResponse)
async def health_check(exporter: Exporter = Depends(get_exporter)) -> JSONResponse:  # noqa: B008
    """Liveness based on snapshot staleness, for the container health check."""
    started = time.perf_counter()
    result = exporter.health.check()
    body = HealthResponse(
        status=result.status,
        threshold_seconds=result.threshold,
        staleness_seconds=result.staleness,
        captured_at=result.captured_at,
    )
    code = status.HTTP_200_OK if result.healthy else status.HTTP_503_SERVICE_UNAVAILABLE
    exporter.metrics.observe_request("/health", code, time.perf_counter() - started)
    return JSONResponse(content=body.model_dump(), status_code=code)
