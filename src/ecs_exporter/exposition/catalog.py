"""
Metric catalog: how a Snapshot becomes exposition samples.

This is a versioned contract for dashboards and alerts. Renaming a metric
or a label, or changing what a value means, requires bumping
CATALOG_VERSION. Adding a metric does not.
"""

from __future__ import annotations

from typing import Iterator

from prometheus_client import CollectorRegistry, generate_latest
from prometheus_client.core import GaugeMetricFamily

from ecs_exporter.domain.models import ClusterFailure, ServiceObservation, Snapshot

CATALOG_VERSION = "1"

HEALTHY = "HEALTHY"

SERVICE_LABELS = ("cluster", "service")
TASK_LABELS = (*SERVICE_LABELS, "task")

CATALOG: tuple[tuple[str, str, tuple[str, ...]], ...] = (
    ("ecs_exporter_catalog_info", "Version of the exported metric catalog", ("version",)),
    ("ecs_snapshot_timestamp_seconds", "Unix time at which the current snapshot was captured", ()),
    ("ecs_snapshot_build_duration_seconds", "Time taken to build the current snapshot", ()),
    ("ecs_cluster_scrape_success", "Whether the cluster was collected in the current snapshot", ("cluster",)),
    (
        "ecs_cluster_scrape_failed",
        "Cluster collection failed in the current snapshot, by failure kind",
        ("cluster", "kind"),
    ),
    ("ecs_cluster_services", "Number of services observed in the cluster", ("cluster",)),
    ("ecs_service_desired_tasks", "Desired task count of the service", SERVICE_LABELS),
    ("ecs_service_running_tasks", "Running task count reported for the service", SERVICE_LABELS),
    ("ecs_service_pending_tasks", "Pending task count reported for the service", SERVICE_LABELS),
    ("ecs_service_deployments", "Number of deployments of the service", SERVICE_LABELS),
    ("ecs_service_deployment_status", "Rollout state of the primary deployment", (*SERVICE_LABELS, "status")),
    (
        "ecs_service_observed_tasks",
        "Tasks observed for the service, by last status",
        (*SERVICE_LABELS, "last_status"),
    ),
    ("ecs_service_healthy_tasks", "Observed tasks of the service reporting HEALTHY", SERVICE_LABELS),
    (
        "ecs_task_info",
        "Static information about a task",
        (*TASK_LABELS, "task_definition", "launch_type", "availability_zone"),
    ),
    ("ecs_task_status", "Last and desired status of a task", (*TASK_LABELS, "last_status", "desired_status")),
    ("ecs_task_health", "Health status of a task", (*TASK_LABELS, "health_status")),
    ("ecs_task_cpu_reserved_units", "CPU units reserved by the task", TASK_LABELS),
    ("ecs_task_memory_reserved_mib", "Memory reserved by the task in MiB", TASK_LABELS),
    ("ecs_task_cpu_used_units", "CPU units used by the task", TASK_LABELS),
    ("ecs_task_memory_used_mib", "Memory used by the task in MiB", TASK_LABELS),
    ("ecs_task_started_timestamp_seconds", "Unix time at which the task started", TASK_LABELS),
    ("ecs_task_stopped", "Task has a stopped reason", (*TASK_LABELS, "reason")),
    ("ecs_container_metrics_scrape_success", "Whether the local Docker daemon could be queried", ()),
)


def _families() -> dict[str, GaugeMetricFamily]:
    return {
        name: GaugeMetricFamily(name, documentation, labels=list(labels))
        for name, documentation, labels in CATALOG
    }


def _add_service(families: dict[str, GaugeMetricFamily], service: ServiceObservation) -> None:
    svc = [service.cluster, service.name]
    families["ecs_service_desired_tasks"].add_metric(svc, service.desired_count)
    families["ecs_service_running_tasks"].add_metric(svc, service.running_count)
    families["ecs_service_pending_tasks"].add_metric(svc, service.pending_count)
    families["ecs_service_deployments"].add_metric(svc, service.deployment_count)
    families["ecs_service_deployment_status"].add_metric([*svc, service.deployment_status], 1)
    families["ecs_service_healthy_tasks"].add_metric(svc, service.count_tasks(health_status=HEALTHY))
    for last_status in sorted({t.last_status for t in service.tasks}):
        families["ecs_service_observed_tasks"].add_metric(
            [*svc, last_status], service.count_tasks(last_status=last_status)
        )

    for task in service.tasks:
        labels = [*svc, task.task_id]
        families["ecs_task_info"].add_metric(
            [*labels, task.task_definition, task.launch_type, task.availability_zone], 1
        )
        families["ecs_task_status"].add_metric([*labels, task.last_status, task.desired_status], 1)
        families["ecs_task_health"].add_metric([*labels, task.health_status], 1)
        optional = (
            ("ecs_task_cpu_reserved_units", task.cpu_reserved),
            ("ecs_task_memory_reserved_mib", task.memory_reserved),
            ("ecs_task_cpu_used_units", task.cpu_used),
            ("ecs_task_memory_used_mib", task.memory_used),
            ("ecs_task_started_timestamp_seconds", task.started_at),
        )
        for name, value in optional:
            if value is not None:
                families[name].add_metric(labels, value)
        if task.stopped_reason:
            families["ecs_task_stopped"].add_metric([*labels, task.stopped_reason], 1)


def build_families(snapshot: Snapshot) -> list[GaugeMetricFamily]:
    """Catalog families for ``snapshot``, sorted by name with samples sorted by labels.

    Families without samples are left out.
    """
    families = _families()
    families["ecs_exporter_catalog_info"].add_metric([CATALOG_VERSION], 1)
    families["ecs_snapshot_timestamp_seconds"].add_metric([], snapshot.captured_at)
    families["ecs_snapshot_build_duration_seconds"].add_metric([], snapshot.build_duration)

    for result in snapshot.clusters:
        cluster = result.cluster.name
        if isinstance(result, ClusterFailure):
            families["ecs_cluster_scrape_success"].add_metric([cluster], 0)
            families["ecs_cluster_scrape_failed"].add_metric([cluster, str(result.kind)], 1)
        else:
            families["ecs_cluster_scrape_success"].add_metric([cluster], 1)
            families["ecs_cluster_services"].add_metric([cluster], len(result.services))
            for service in result.services:
                _add_service(families, service)

    if snapshot.containers_ok is not None:
        families["ecs_container_metrics_scrape_success"].add_metric([], int(snapshot.containers_ok))

    ordered = []
    for name in sorted(families):
        family = families[name]
        if family.samples:
            family.samples.sort(key=lambda s: tuple(sorted(s.labels.items())))
            ordered.append(family)
    return ordered


class SnapshotCollector:
    """Custom collector serving one immutable Snapshot."""

    def __init__(self, snapshot: Snapshot) -> None:
        self.snapshot = snapshot

    def collect(self) -> Iterator[GaugeMetricFamily]:
        yield from build_families(self.snapshot)


def render_catalog(snapshot: Snapshot) -> str:
    registry = CollectorRegistry(auto_describe=False)
    registry.register(SnapshotCollector(snapshot))
    return generate_latest(registry).decode("utf-8")


def render_snapshot(snapshot: Snapshot) -> str:
    """Render the catalog for ``snapshot`` followed by pass-through container lines."""
    text = render_catalog(snapshot)
    seen_meta: set[tuple[str, ...]] = set()
    lines: list[str] = []
    for container in snapshot.containers:
        for line in container.lines:
            parts = line.split(maxsplit=3)
            # Containers of the same image repeat HELP/TYPE; keep the first of each
            if len(parts) >= 3 and parts[0] == "#" and parts[1] in ("HELP", "TYPE"):
                key = tuple(parts[1:3])
                if key in seen_meta:
                    continue
                seen_meta.add(key)
            lines.append(line)
    if lines:
        text += "\n".join(lines) + "\n"
    return text
