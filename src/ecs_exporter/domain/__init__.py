from ecs_exporter.domain.models import (
    ClusterFailure,
    ClusterRef,
    ClusterResult,
    ClusterSuccess,
    ContainerMetrics,
    FailureKind,
    Page,
    ServiceObservation,
    ServiceRef,
    Snapshot,
    TaskObservation,
    TaskRef,
)

__all__ = [
    "ClusterFailure",
    "ClusterRef",
    "ClusterResult",
    "ClusterSuccess",
    "ContainerMetrics",
    "FailureKind",
    "Page",
    "ServiceObservation",
    "ServiceRef",
    "Snapshot",
    "TaskObservation",
    "TaskRef",
]
