from __future__ import annotations

import threading

import structlog

from ecs_exporter.core.errors import SnapshotOrderError
from ecs_exporter.domain.models import Snapshot

logger = structlog.get_logger()


class SnapshotStore:
    """Holds the current and previous snapshot.

    Readers take the current reference without locking; ``publish`` swaps a
    single (current, previous) tuple so a reader sees either the old pair or
    the new one. ``current()`` returns None until the first publish.
    """

    def __init__(self) -> None:
        self._state: tuple[Snapshot | None, Snapshot | None] = (None, None)
        self._write_lock = threading.Lock()

    def publish(self, snapshot: Snapshot) -> None:
        with self._write_lock:
            current, _ = self._state
            if current is not None and snapshot.captured_at <= current.captured_at:
                raise SnapshotOrderError(
                    "Snapshot capture timestamp must increase",
                    details={"current": current.captured_at, "rejected": snapshot.captured_at},
                )
            self._state = (snapshot, current)
        logger.debug("snapshot_published", captured_at=snapshot.captured_at)

    def current(self) -> Snapshot | None:
        return self._state[0]

    def previous(self) -> Snapshot | None:
        return self._state[1]