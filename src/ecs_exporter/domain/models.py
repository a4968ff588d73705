"""Immutable value types for one poll cycle of ECS state."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import StrEnum
from typing import Generic, Iterable, Iterator, TypeVar


T = TypeVar("T")


def arn_name(arn: str) -> str:
    """Return the trailing name segment of an ARN (or the value itself)."""
    return arn.rsplit("/", 1)[-1]


class FailureKind(StrEnum):
    """Why a cluster has no data in a snapshot."""

    transient = "transient"
    permanent = "permanent"
    timeout = "timeout"
    internal = "internal"


@dataclass(frozen=True, slots=True)
class ClusterRef:
    name: str
    arn: str | None = None

    @classmethod
    def from_arn(cls, arn: str) -> ClusterRef:
        return cls(name=arn_name(arn), arn=arn)

    @property
    def identifier(self) -> str:
        """Value accepted by the ECS API's ``cluster`` parameter."""
        return self.arn or self.name


@dataclass(frozen=True, slots=True)
class ServiceRef:
    cluster: str
    name: str
    arn: str | None = None

    @classmethod
    def from_arn(cls, cluster: str, arn: str) -> ServiceRef:
        return cls(cluster=cluster, name=arn_name(arn), arn=arn)

    @property
    def identifier(self) -> str:
        return self.arn or self.name


@dataclass(frozen=True, slots=True)
class TaskRef:
    cluster: str
    service: str
    arn: str

    @property
    def task_id(self) -> str:
        return arn_name(self.arn)


@dataclass(frozen=True, slots=True)
class Page(Generic[T]):
    """One page of a paginated list call. ``next_token`` is None on the last page."""

    items: tuple[T, ...]
    next_token: str | None = None


@dataclass(frozen=True, slots=True)
class TaskObservation:
    """Point-in-time facts about one task of a service."""

    task_id: str
    task_arn: str
    service: str
    last_status: str
    desired_status: str
    health_status: str = "UNKNOWN"
    launch_type: str = "UNKNOWN"
    task_definition: str = ""
    availability_zone: str = ""
    cpu_reserved: float | None = None  # CPU units
    memory_reserved: float | None = None  # MiB
    cpu_used: float | None = None
    memory_used: float | None = None
    started_at: float | None = None  # epoch seconds
    stopped_reason: str | None = None


@dataclass(frozen=True, slots=True)
class ServiceObservation:
    """Aggregated facts for one service, with the tasks seen in the same cycle."""

    cluster: str
    name: str
    status: str
    desired_count: int
    running_count: int
    pending_count: int
    deployment_status: str = "UNKNOWN"
    deployment_count: int = 0
    launch_type: str = "UNKNOWN"
    tasks: tuple[TaskObservation, ...] = ()

    def with_tasks(self, tasks: Iterable[TaskObservation]) -> ServiceObservation:
        ordered = tuple(sorted(tasks, key=lambda t: t.task_id))
        return replace(self, tasks=ordered)

    def count_tasks(
        self,
        *,
        last_status: str | None = None,
        health_status: str | None = None,
    ) -> int:
        """Count observed tasks matching the given statuses."""
        return sum(
            1
            for task in self.tasks
            if (last_status is None or task.last_status == last_status)
            and (health_status is None or task.health_status == health_status)
        )


@dataclass(frozen=True, slots=True)
class ClusterSuccess:
    cluster: ClusterRef
    services: tuple[ServiceObservation, ...] = ()

    ok = True


@dataclass(frozen=True, slots=True)
class ClusterFailure:
    cluster: ClusterRef
    kind: FailureKind
    reason: str = ""

    ok = False


ClusterResult = ClusterSuccess | ClusterFailure


@dataclass(frozen=True, slots=True)
class ContainerMetrics:
    """Metric lines scraped from inside one local container."""

    container_name: str
    container_id: str
    lines: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class Snapshot:
    """Full picture of one poll cycle. Never mutated after construction."""

    captured_at: float
    clusters: tuple[ClusterResult, ...] = ()
    build_duration: float = 0.0
    containers: tuple[ContainerMetrics, ...] = ()
    containers_ok: bool | None = None  # None when pass-through is disabled
    _by_name: dict[str, ClusterResult] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        ordered = tuple(sorted(self.clusters, key=lambda r: r.cluster.name))
        object.__setattr__(self, "clusters", ordered)
        object.__setattr__(
            self, "containers", tuple(sorted(self.containers, key=lambda c: c.container_name))
        )
        object.__setattr__(self, "_by_name", {r.cluster.name: r for r in ordered})

    def cluster(self, name: str) -> ClusterResult | None:
        return self._by_name.get(name)

    def services(self) -> Iterator[ServiceObservation]:
        for result in self.clusters:
            if isinstance(result, ClusterSuccess):
                yield from result.services

    def failed_clusters(self) -> list[ClusterFailure]:
        return [r for r in self.clusters if isinstance(r, ClusterFailure)]
