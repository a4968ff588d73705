from __future__ import annotations

from prometheus_client import CollectorRegistry, Counter, Histogram, generate_latest


class ExporterMetrics:
    """The exporter's own instrumentation, kept in a private registry."""

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self.registry = registry or CollectorRegistry()
        self.http_requests = Counter(
            "ecs_exporter_http_requests",
            "HTTP requests served by the exporter",
            ["endpoint", "code"],
            registry=self.registry,
        )
        self.http_duration = Histogram(
            "ecs_exporter_http_request_duration_seconds",
            "Time spent answering HTTP requests",
            ["endpoint"],
            buckets=[0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0],
            registry=self.registry,
        )
        self.cycles = Counter(
            "ecs_exporter_cycles",
            "Snapshot build cycles by outcome",
            ["outcome"],
            registry=self.registry,
        )
        self.cycle_duration = Histogram(
            "ecs_exporter_cycle_duration_seconds",
            "Duration of snapshot build cycles",
            buckets=[0.5, 1.0, 2.5, 5.0, 10.0, 20.0, 30.0, 60.0],
            registry=self.registry,
        )
        self.ticks_skipped = Counter(
            "ecs_exporter_cycle_ticks_skipped",
            "Scheduler ticks skipped because a cycle was still running",
            registry=self.registry,
        )

    def observe_request(self, endpoint: str, code: int, duration: float) -> None:
        self.http_requests.labels(endpoint=endpoint, code=str(code)).inc()
        self.http_duration.labels(endpoint=endpoint).observe(duration)

    def observe_cycle(self, outcome: str, duration: float) -> None:
        self.cycles.labels(outcome=outcome).inc()
        self.cycle_duration.observe(duration)

    def observe_skipped(self, count: int = 1) -> None:
        self.ticks_skipped.inc(count)

    def render(self) -> str:
        return generate_latest(self.registry).decode("utf-8")
