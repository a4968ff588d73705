from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable

from ecs_exporter.collector.store import SnapshotStore


@dataclass(frozen=True, slots=True)
class HealthStatus:
    healthy: bool
    status: str  # healthy | stale | uninitialized
    threshold: float
    staleness: float | None = None
    captured_at: float | None = None


class HealthReporter:
    """Liveness from snapshot staleness.

    Cluster failures do not matter here; they are reported through the
    metric feed. Only a scheduler that stopped publishing makes us unhealthy.
    """

    def __init__(
        self,
        store: SnapshotStore,
        threshold: float,
        *,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self.store = store
        self.threshold = threshold
        self._clock = clock

    def check(self, now: float | None = None) -> HealthStatus:
        snapshot = self.store.current()
        if snapshot is None:
            return HealthStatus(healthy=False, status="uninitialized", threshold=self.threshold)

        if now is None:
            now = (self._clock or time.time)()
        staleness = max(0.0, now - snapshot.captured_at)
        healthy = staleness <= self.threshold
        return HealthStatus(
            healthy=healthy,
            status="healthy" if healthy else "stale",
            threshold=self.threshold,
            staleness=staleness,
            captured_at=snapshot.captured_at,
        )
