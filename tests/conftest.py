"""Root test configuration."""

import asyncio
import logging
from collections.abc import Sequence

import pytest
import structlog
from ecs_exporter.domain.models import (
    ClusterRef,
    Page,
    ServiceObservation,
    ServiceRef,
    TaskObservation,
    TaskRef,
)


def pytest_configure(config):
    """Configure structlog for tests to suppress debug/info output."""
    logging.basicConfig(level=logging.WARNING, force=True)
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.processors.add_log_level,
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


def make_task(service: str, task_id: str, **overrides) -> TaskObservation:
    fields = {
        "task_id": task_id,
        "task_arn": f"arn:aws:ecs:us-east-1:123456789012:task/c/{task_id}",
        "service": service,
        "last_status": "RUNNING",
        "desired_status": "RUNNING",
        "health_status": "HEALTHY",
        "launch_type": "FARGATE",
        "task_definition": f"{service}:1",
        "availability_zone": "us-east-1a",
        "cpu_reserved": 256.0,
        "memory_reserved": 512.0,
        "started_at": 1_700_000_000.0,
    }
    fields.update(overrides)
    return TaskObservation(**fields)


def make_service(cluster: str, name: str, tasks: Sequence[TaskObservation] = (), **overrides):
    fields = {
        "cluster": cluster,
        "name": name,
        "status": "ACTIVE",
        "desired_count": len(tasks),
        "running_count": len(tasks),
        "pending_count": 0,
        "deployment_status": "COMPLETED",
        "deployment_count": 1,
        "launch_type": "FARGATE",
    }
    fields.update(overrides)
    return ServiceObservation(**fields).with_tasks(tasks)


class FakeEcsApi:
    """In-memory stand-in for EcsClient.

    ``layout`` maps cluster name -> service name -> number of running tasks,
    ``stopped`` maps (cluster, service) -> number of stopped tasks.
    ``errors`` maps (operation, cluster) -> outcomes consumed one per call:
    an exception is raised, None lets the call succeed.
    With ``page_size`` set, list calls return pages of that many items.
    """

    def __init__(
        self,
        layout: dict[str, dict[str, int]],
        delay: float = 0.0,
        page_size: int | None = None,
    ) -> None:
        self.layout = layout
        self.delay = delay
        self.page_size = page_size
        self.stopped: dict[tuple[str, str], int] = {}
        self.errors: dict[tuple[str, str | None], list[Exception | None]] = {}
        self.calls: list[tuple[str, str | None, int]] = []
        self.page_tokens: list[tuple[str, str | None]] = []
        self.desired_statuses: list[str] = []
        self.in_flight = 0
        self.max_in_flight = 0

    def fail(self, operation: str, cluster: str | None, *errors: Exception | None) -> None:
        self.errors.setdefault((operation, cluster), []).extend(errors)

    async def _enter(self, operation: str, cluster: str | None, size: int = 0) -> None:
        self.calls.append((operation, cluster, size))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
        finally:
            self.in_flight -= 1
        pending = self.errors.get((operation, cluster))
        if pending:
            error = pending.pop(0)
            if error is not None:
                raise error

    def _page(self, items: list, next_token: str | None) -> Page:
        start = int(next_token or 0)
        end = start + self.page_size if self.page_size else len(items)
        return Page(tuple(items[start:end]), str(end) if end < len(items) else None)

    def count(self, operation: str, cluster: str | None = None) -> int:
        return sum(1 for op, c, _ in self.calls if op == operation and (cluster is None or c == cluster))

    async def list_clusters(self, next_token: str | None = None) -> Page:
        self.page_tokens.append(("list_clusters", next_token))
        await self._enter("list_clusters", None)
        clusters = [
            ClusterRef(name=name, arn=f"arn:aws:ecs:us-east-1:123456789012:cluster/{name}")
            for name in self.layout
        ]
        return self._page(clusters, next_token)

    async def list_services(self, cluster: ClusterRef, next_token: str | None = None) -> Page:
        self.page_tokens.append(("list_services", next_token))
        await self._enter("list_services", cluster.name)
        services = [ServiceRef(cluster.name, name) for name in self.layout[cluster.name]]
        return self._page(services, next_token)

    async def describe_services(self, cluster: ClusterRef, services: Sequence[ServiceRef]):
        await self._enter("describe_services", cluster.name, len(services))
        return [
            make_service(
                cluster.name,
                ref.name,
                desired_count=self.layout[cluster.name][ref.name],
                running_count=self.layout[cluster.name][ref.name],
            )
            for ref in services
        ]

    async def list_tasks(
        self,
        cluster: ClusterRef,
        service: ServiceRef,
        next_token: str | None = None,
        *,
        desired_status: str = "RUNNING",
    ) -> Page:
        self.page_tokens.append(("list_tasks", next_token))
        await self._enter("list_tasks", cluster.name)
        self.desired_statuses.append(desired_status)
        prefix = f"arn:aws:ecs:task/{cluster.name}/{service.name}"
        if desired_status == "STOPPED":
            count = self.stopped.get((cluster.name, service.name), 0)
            arns = [f"{prefix}-stopped-{i}" for i in range(count)]
        else:
            arns = [f"{prefix}-{i}" for i in range(self.layout[cluster.name][service.name])]
        tasks = [TaskRef(cluster.name, service.name, arn) for arn in arns]
        return self._page(tasks, next_token)

    async def describe_tasks(self, cluster: ClusterRef, tasks: Sequence[TaskRef]):
        await self._enter("describe_tasks", cluster.name, len(tasks))
        described = []
        for t in tasks:
            if "-stopped-" in t.arn:
                task = make_task(
                    t.service,
                    t.task_id,
                    task_arn=t.arn,
                    last_status="STOPPED",
                    desired_status="STOPPED",
                    health_status="UNKNOWN",
                    stopped_reason="Essential container in task exited",
                )
            else:
                task = make_task(t.service, t.task_id, task_arn=t.arn)
            described.append(task)
        return described


@pytest.fixture
def fake_api_factory():
    return FakeEcsApi


@pytest.fixture
def task_factory():
    return make_task


@pytest.fixture
def service_factory():
    return make_service
