"""Fixed-interval driver for snapshot builds."""

from __future__ import annotations

import asyncio
import contextlib
import time
from typing import Protocol

import structlog

from ecs_exporter.collector.store import SnapshotStore
from ecs_exporter.core.errors import CycleOverrunError, SnapshotOrderError
from ecs_exporter.domain.models import Snapshot
from ecs_exporter.exposition.selfmetrics import ExporterMetrics

logger = structlog.get_logger()


class Builder(Protocol):
    async def build(self) -> Snapshot: ...


class Scheduler:
    """Runs one build per interval tick, never two at once.

    A cycle that outlives its tick causes the missed ticks to be skipped,
    not queued. A failed or overrunning cycle leaves the previous snapshot
    current and the loop carries on.
    """

    def __init__(
        self,
        builder: Builder,
        store: SnapshotStore,
        *,
        interval: float,
        cycle_deadline: float | None = None,
        metrics: ExporterMetrics | None = None,
    ) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.builder = builder
        self.store = store
        self.interval = interval
        self.cycle_deadline = cycle_deadline
        self.metrics = metrics
        self.cycles = 0
        self._stop = asyncio.Event()
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _build(self) -> Snapshot:
        if self.cycle_deadline is None:
            return await self.builder.build()
        try:
            return await asyncio.wait_for(self.builder.build(), timeout=self.cycle_deadline)
        except asyncio.TimeoutError as exc:
            raise CycleOverrunError(
                "Build cycle exceeded its deadline",
                details={"deadline": self.cycle_deadline},
            ) from exc

    async def run_cycle(self) -> Snapshot | None:
        """Build and publish one snapshot; return it, or None if the cycle failed."""
        self.cycles += 1
        log = logger.bind(cycle=self.cycles)
        started = time.monotonic()
        published: Snapshot | None = None
        outcome = "success"

        try:
            snapshot = await self._build()
            self.store.publish(snapshot)
            published = snapshot
        except CycleOverrunError as exc:
            outcome = "overrun"
            log.error("cycle_overrun", **exc.details)
        except SnapshotOrderError as exc:
            outcome = "rejected"
            log.error("snapshot_rejected", **exc.details)
        except Exception as exc:
            outcome = "failed"
            log.exception("cycle_failed", error=str(exc))

        duration = time.monotonic() - started
        if self.metrics is not None:
            self.metrics.observe_cycle(outcome, duration)

        if published is None:
            return None

        log.info(
            "cycle_completed",
            duration=round(duration, 3),
            clusters=len(published.clusters),
            failed_clusters=[f.cluster.name for f in published.failed_clusters()],
        )
        return published

    async def run(self, stop: asyncio.Event | None = None) -> None:
        """Tick until ``stop`` is set (or the task is cancelled)."""
        stop = stop or self._stop
        loop = asyncio.get_running_loop()
        next_tick = loop.time()

        while not stop.is_set():
            await self.run_cycle()

            next_tick += self.interval
            now = loop.time()
            if now > next_tick:
                skipped = int((now - next_tick) // self.interval) + 1
                next_tick += skipped * self.interval
                logger.warning("cycle_ticks_skipped", skipped=skipped, interval=self.interval)
                if self.metrics is not None:
                    self.metrics.observe_skipped(skipped)

            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(stop.wait(), timeout=max(0.0, next_tick - loop.time()))

    def start(self) -> asyncio.Task[None]:
        if self.running:
            raise RuntimeError("Scheduler already running")
        self._stop = asyncio.Event()
        self._task = asyncio.create_task(self.run(self._stop), name="snapshot-scheduler")
        logger.info("scheduler_started", interval=self.interval, cycle_deadline=self.cycle_deadline)
        return self._task

    async def stop(self) -> None:
        if self._task is None:
            return
        self._stop.set()
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info("scheduler_stopped", cycles=self.cycles)
