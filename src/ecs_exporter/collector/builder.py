"""Snapshot builder: discovery, describe and assembly for one poll cycle."""

from __future__ import annotations

import asyncio
import time
from collections import defaultdict
from typing import Any, Awaitable, Callable, Iterator, Protocol, Sequence, TypeVar

import structlog

from ecs_exporter.collector.passthrough import ContainerMetricsCollector
from ecs_exporter.collector.retry import RetryPolicy
from ecs_exporter.collector.throttle import TokenBucket
from ecs_exporter.config import Settings
from ecs_exporter.core.errors import ClusterDeadlineExceeded, PermanentAPIError, TransientAPIError
from ecs_exporter.domain.models import (
    ClusterFailure,
    ClusterRef,
    ClusterResult,
    ClusterSuccess,
    FailureKind,
    Page,
    ServiceObservation,
    ServiceRef,
    Snapshot,
    TaskObservation,
    TaskRef,
)

logger = structlog.get_logger()

T = TypeVar("T")

# ListTasks only returns RUNNING tasks unless a desired status is given
TASK_DESIRED_STATUSES = ("RUNNING", "STOPPED")

# Smallest step between two capture timestamps from the same builder
MIN_CAPTURE_STEP = 1e-3


class OrchestrationAPI(Protocol):
    async def list_clusters(self, next_token: str | None = None) -> Page[ClusterRef]: ...

    async def list_services(
        self, cluster: ClusterRef, next_token: str | None = None
    ) -> Page[ServiceRef]: ...

    async def describe_services(
        self, cluster: ClusterRef, services: Sequence[ServiceRef]
    ) -> list[ServiceObservation]: ...

    async def list_tasks(
        self,
        cluster: ClusterRef,
        service: ServiceRef,
        next_token: str | None = None,
        *,
        desired_status: str = "RUNNING",
    ) -> Page[TaskRef]: ...

    async def describe_tasks(
        self, cluster: ClusterRef, tasks: Sequence[TaskRef]
    ) -> list[TaskObservation]: ...


def chunked(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


class SnapshotBuilder:
    """Builds one immutable Snapshot per call to :meth:`build`.

    Clusters are processed by a fixed pool of workers. Each worker turns its
    cluster into a ClusterSuccess or a ClusterFailure, so one broken cluster
    never takes the others down with it. All API calls go through a single
    shared token bucket and the transient-error retry policy.
    """

    def __init__(
        self,
        api: OrchestrationAPI,
        *,
        throttle: TokenBucket,
        retry_policy: RetryPolicy,
        describe_batch_size: int = 10,
        task_batch_size: int = 100,
        max_concurrent_clusters: int = 4,
        cluster_deadline: float | None = 20.0,
        cluster_names: Sequence[str] = (),
        passthrough: ContainerMetricsCollector | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.api = api
        self.throttle = throttle
        self.retry_policy = retry_policy
        self.describe_batch_size = describe_batch_size
        self.task_batch_size = task_batch_size
        self.max_concurrent_clusters = max_concurrent_clusters
        self.cluster_deadline = cluster_deadline
        self.cluster_names = tuple(cluster_names)
        self.passthrough = passthrough
        self._clock = clock
        self._last_captured_at: float | None = None

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        api: OrchestrationAPI,
        passthrough: ContainerMetricsCollector | None = None,
    ) -> SnapshotBuilder:
        return cls(
            api,
            throttle=TokenBucket(settings.rate_limit_per_second, settings.rate_limit_burst),
            retry_policy=RetryPolicy(
                settings.retry_max_attempts,
                settings.retry_backoff_base,
                settings.retry_backoff_max,
            ),
            describe_batch_size=settings.describe_batch_size,
            task_batch_size=settings.task_batch_size,
            max_concurrent_clusters=settings.max_concurrent_clusters,
            cluster_deadline=settings.cluster_deadline,
            cluster_names=settings.cluster_names,
            passthrough=passthrough,
        )

    async def build(self) -> Snapshot:
        """Run one full cycle. Raises only if cluster discovery itself fails."""
        captured_at = self._capture_time()
        started = time.monotonic()

        clusters = await self._discover_clusters()
        logger.debug("clusters_discovered", count=len(clusters))

        if self.passthrough is not None:
            results, (containers, containers_ok) = await asyncio.gather(
                self._run_clusters(clusters),
                self.passthrough.collect(),
            )
        else:
            results = await self._run_clusters(clusters)
            containers, containers_ok = (), None

        return Snapshot(
            captured_at=captured_at,
            clusters=tuple(results),
            build_duration=time.monotonic() - started,
            containers=tuple(containers),
            containers_ok=containers_ok,
        )

    def _capture_time(self) -> float:
        """Wall-clock capture time, forced to increase if the clock steps back."""
        now = self._clock()
        last = self._last_captured_at
        if last is not None and now < last + MIN_CAPTURE_STEP:
            logger.warning("clock_not_increasing", now=now, last_captured_at=last)
            now = last + MIN_CAPTURE_STEP
        self._last_captured_at = now
        return now

    async def _call(self, fn: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        return await self.retry_policy.call(self._throttled, fn, *args, **kwargs)

    async def _throttled(self, fn: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        await self.throttle.acquire()
        return await fn(*args, **kwargs)

    async def _list_all(
        self, fn: Callable[..., Awaitable[Page[T]]], *args: Any, **kwargs: Any
    ) -> list[T]:
        """Drain a paginated listing; every page is its own throttled, retried call."""
        items: list[T] = []
        next_token: str | None = None
        while True:
            page = await self._call(fn, *args, next_token=next_token, **kwargs)
            items.extend(page.items)
            if not page.next_token:
                return items
            next_token = page.next_token

    async def _discover_clusters(self) -> list[ClusterRef]:
        if self.cluster_names:
            return [ClusterRef(name=name) for name in self.cluster_names]
        clusters = await self._list_all(self.api.list_clusters)
        # Dedupe by name, keep first
        unique: dict[str, ClusterRef] = {}
        for cluster in clusters:
            unique.setdefault(cluster.name, cluster)
        return list(unique.values())

    async def _run_clusters(self, clusters: Sequence[ClusterRef]) -> list[ClusterResult]:
        queue: asyncio.Queue[ClusterRef] = asyncio.Queue()
        for cluster in clusters:
            queue.put_nowait(cluster)
        results: list[ClusterResult] = []

        async def worker() -> None:
            while True:
                try:
                    cluster = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return
                results.append(await self._run_cluster(cluster))

        workers = min(self.max_concurrent_clusters, len(clusters))
        await asyncio.gather(*(worker() for _ in range(workers)))
        return results

    async def _run_cluster(self, cluster: ClusterRef) -> ClusterResult:
        log = logger.bind(cluster=cluster.name)
        try:
            result = await self._collect_within_deadline(cluster)
        except ClusterDeadlineExceeded as exc:
            log.warning("cluster_failed", kind=FailureKind.timeout, **exc.details)
            return ClusterFailure(cluster, FailureKind.timeout, exc.message)
        except TransientAPIError as exc:
            log.warning(
                "cluster_failed",
                kind=FailureKind.transient,
                operation=exc.operation,
                code=exc.code,
                error=exc.message,
            )
            return ClusterFailure(cluster, FailureKind.transient, exc.message)
        except PermanentAPIError as exc:
            log.warning(
                "cluster_failed",
                kind=FailureKind.permanent,
                operation=exc.operation,
                code=exc.code,
                error=exc.message,
            )
            return ClusterFailure(cluster, FailureKind.permanent, exc.message)
        except Exception as exc:
            log.exception("cluster_failed", kind=FailureKind.internal, error=str(exc))
            return ClusterFailure(cluster, FailureKind.internal, str(exc))

        log.debug("cluster_collected", services=len(result.services))
        return result

    async def _collect_within_deadline(self, cluster: ClusterRef) -> ClusterSuccess:
        if self.cluster_deadline is None:
            return await self._collect_cluster(cluster)
        try:
            return await asyncio.wait_for(self._collect_cluster(cluster), timeout=self.cluster_deadline)
        except asyncio.TimeoutError as exc:
            raise ClusterDeadlineExceeded(
                f"describe sequence exceeded {self.cluster_deadline}s deadline",
                details={"deadline": self.cluster_deadline},
            ) from exc

    async def _collect_cluster(self, cluster: ClusterRef) -> ClusterSuccess:
        refs = await self._list_all(self.api.list_services, cluster)
        observations: list[ServiceObservation] = []
        for batch in chunked(refs, self.describe_batch_size):
            observations.extend(await self._collect_batch(cluster, batch))
        observations.sort(key=lambda s: s.name)
        return ClusterSuccess(cluster, tuple(observations))

    async def _collect_batch(
        self, cluster: ClusterRef, batch: Sequence[ServiceRef]
    ) -> list[ServiceObservation]:
        services = await self._call(self.api.describe_services, cluster, batch)
        refs_by_name = {ref.name: ref for ref in batch}

        task_refs: list[TaskRef] = []
        for service in services:
            ref = refs_by_name.get(service.name) or ServiceRef(cluster.name, service.name)
            for desired_status in TASK_DESIRED_STATUSES:
                task_refs.extend(
                    await self._list_all(self.api.list_tasks, cluster, ref, desired_status=desired_status)
                )
        # A task can stop between the two listings
        task_refs = list(dict.fromkeys(task_refs))

        tasks_by_service: dict[str, list[TaskObservation]] = defaultdict(list)
        for chunk in chunked(task_refs, self.task_batch_size):
            for task in await self._call(self.api.describe_tasks, cluster, chunk):
                tasks_by_service[task.service].append(task)

        return [service.with_tasks(tasks_by_service.get(service.name, ())) for service in services]

