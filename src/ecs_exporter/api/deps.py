from __future__ import annotations

from fastapi import Request

from ecs_exporter.exporter import Exporter


def get_exporter(request: Request) -> Exporter:
    return request.app.state.exporter
