"""Wires settings, clients, builder, store and scheduler together."""

from __future__ import annotations

from contextlib import AsyncExitStack, asynccontextmanager
from typing import AsyncIterator, Sequence

import structlog

from ecs_exporter.clients.docker import DockerClient
from ecs_exporter.clients.ecs import EcsClient
from ecs_exporter.collector.builder import SnapshotBuilder
from ecs_exporter.collector.passthrough import ContainerMetricsCollector
from ecs_exporter.collector.scheduler import Scheduler
from ecs_exporter.collector.store import SnapshotStore
from ecs_exporter.config import Settings
from ecs_exporter.domain.models import Snapshot
from ecs_exporter.exposition.selfmetrics import ExporterMetrics
from ecs_exporter.health import HealthReporter

logger = structlog.get_logger()


class Exporter:
    """Process-wide state shared by the scheduler and the HTTP handlers."""

    def __init__(
        self,
        settings: Settings,
        *,
        store: SnapshotStore | None = None,
        metrics: ExporterMetrics | None = None,
    ) -> None:
        self.settings = settings
        self.store = store or SnapshotStore()
        self.metrics = metrics or ExporterMetrics()
        self.health = HealthReporter(self.store, settings.effective_staleness_threshold)
        self.scheduler: Scheduler | None = None

    @asynccontextmanager
    async def _builder(self, cluster_names: Sequence[str] | None = None) -> AsyncIterator[SnapshotBuilder]:
        settings = self.settings
        async with AsyncExitStack() as stack:
            ecs = await stack.enter_async_context(
                EcsClient(
                    settings.aws_region,
                    endpoint_url=settings.aws_endpoint_url,
                    timeout=settings.api_timeout,
                )
            )
            passthrough = None
            if settings.container_metrics_label:
                docker = await stack.enter_async_context(
                    DockerClient(settings.docker_socket, timeout=settings.container_metrics_timeout)
                )
                passthrough = ContainerMetricsCollector(docker, settings.container_metrics_label)

            builder = SnapshotBuilder.from_settings(settings, ecs, passthrough)
            if cluster_names:
                builder.cluster_names = tuple(cluster_names)
            yield builder

    @asynccontextmanager
    async def running(self) -> AsyncIterator[Scheduler]:
        """Run the scheduler in the background for the duration of the block."""
        async with self._builder() as builder:
            self.scheduler = Scheduler(
                builder,
                self.store,
                interval=self.settings.poll_interval,
                cycle_deadline=self.settings.cycle_deadline,
                metrics=self.metrics,
            )
            self.scheduler.start()
            try:
                yield self.scheduler
            finally:
                await self.scheduler.stop()

    async def collect_once(self, cluster_names: Sequence[str] | None = None) -> Snapshot:
        """Build a single snapshot without publishing it."""
        async with self._builder(cluster_names) as builder:
            return await builder.build()
