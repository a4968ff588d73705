from ecs_exporter.collector.builder import SnapshotBuilder
from ecs_exporter.collector.passthrough import ContainerMetricsCollector
from ecs_exporter.collector.retry import RetryPolicy
from ecs_exporter.collector.scheduler import Scheduler
from ecs_exporter.collector.store import SnapshotStore
from ecs_exporter.collector.throttle import TokenBucket

__all__ = [
    "ContainerMetricsCollector",
    "RetryPolicy",
    "Scheduler",
    "SnapshotBuilder",
    "SnapshotStore",
    "TokenBucket",
]
