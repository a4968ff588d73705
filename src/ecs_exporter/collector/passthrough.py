"""Scrape metrics from inside labelled containers on the local Docker host.

Each container carrying the configured label is asked, via ``docker exec``,
to curl its own metrics endpoint. The label value is ``<port>/<path>``.
Collected lines are tagged with the container's ECS name.
"""

from __future__ import annotations

import asyncio

import structlog

from ecs_exporter.clients.docker import ContainerInfo, DockerClient
from ecs_exporter.core.errors import APIError
from ecs_exporter.domain.models import ContainerMetrics
from ecs_exporter.exposition.encoder import inject_label

logger = structlog.get_logger()

DEFAULT_PORT_PATH = "9100/metrics"
UNKNOWN_CONTAINER_NAME = "unknown-service"
ECS_CONTAINER_NAME_LABEL = "com.amazonaws.ecs.container-name"
CONTAINER_NAME_METRIC_LABEL = "container_name"


class ContainerMetricsCollector:
    def __init__(self, docker: DockerClient, label: str) -> None:
        self.docker = docker
        self.label = label

    async def collect(self) -> tuple[tuple[ContainerMetrics, ...], bool]:
        """Return the scraped containers and whether the Docker daemon answered."""
        try:
            containers = await self.docker.list_containers(self.label)
        except APIError as exc:
            logger.warning("container_listing_failed", label=self.label, error=exc.message)
            return (), False
        except Exception as exc:
            logger.exception("container_listing_failed", label=self.label, error=str(exc))
            return (), False

        logger.debug("containers_found", label=self.label, count=len(containers))
        scraped = await asyncio.gather(*(self._scrape(c) for c in containers))
        return tuple(m for m in scraped if m is not None), True

    async def _scrape(self, container: ContainerInfo) -> ContainerMetrics | None:
        container_id = container.id
        labels = container.labels
        name = labels.get(ECS_CONTAINER_NAME_LABEL) or UNKNOWN_CONTAINER_NAME
        port_path = labels.get(self.label) or DEFAULT_PORT_PATH
        cmd = ["/bin/curl", "-s", f"http://localhost:{port_path}"]

        try:
            exit_code, output = await self.docker.exec_output(container_id, cmd)
        except APIError as exc:
            logger.warning(
                "container_exec_failed",
                container_id=container_id,
                operation=exc.operation,
                error=exc.message,
            )
            return None
        except Exception as exc:
            logger.exception("container_exec_failed", container_id=container_id, error=str(exc))
            return None

        if exit_code != 0 or not output.strip():
            logger.warning(
                "container_metrics_unavailable",
                container_id=container_id,
                exit_code=exit_code,
                output=output[:200],
            )
            return None

        lines = tuple(
            inject_label(line, CONTAINER_NAME_METRIC_LABEL, name)
            for line in output.splitlines()
            if line.strip()
        )
        return ContainerMetrics(container_name=name, container_id=container_id, lines=lines)
