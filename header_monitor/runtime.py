"""Process-scoped state shared by the engine, resolver and scheduler.

Nothing here is persisted; it is rebuilt on restart. Each object is passed
explicitly to the components that need it.
"""

import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Hashable, Iterator

UNHEALTHY_AFTER_ERRORS = 3


class KeyedLocks:
    """One lock per key, created on first use."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[Hashable, threading.Lock] = {}

    def get(self, key: Hashable) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        with self.get(key):
            yield


class MonitorLocks:
    """Per-header and per-project locks.

    Lock order is project before header. Evaluation and per-header admin
    operations take only the header lock.
    """

    def __init__(self):
        self.headers = KeyedLocks()
        self.projects = KeyedLocks()

    def header(self, project_id: str, header_id: str):
        return self.headers.hold((project_id, header_id))

    def project(self, project_id: str):
        return self.projects.hold(project_id)


class FrozenStateTracker:
    """Remembers when each header was first seen holding an unchanged value.

    In-memory view served by the status endpoint. The frozen detector works
    from the persisted last_value_time, so this is never consulted for alerts.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._since: dict[tuple[str, str], datetime] = {}

    def mark_unchanged(self, project_id: str, header_id: str, since: datetime) -> None:
        with self._lock:
            self._since.setdefault((project_id, header_id), since)

    def clear(self, project_id: str, header_id: str) -> None:
        with self._lock:
            self._since.pop((project_id, header_id), None)

    def unchanged_since(self, project_id: str, header_id: str) -> datetime | None:
        with self._lock:
            return self._since.get((project_id, header_id))

    def snapshot(self) -> list[dict[str, Any]]:
        """Tracked headers, longest unchanged first."""
        with self._lock:
            items = sorted(self._since.items(), key=lambda item: item[1])
        return [
            {"project_id": project_id, "header_id": header_id, "unchanged_since": since.isoformat()}
            for (project_id, header_id), since in items
        ]

    def __len__(self) -> int:
        with self._lock:
            return len(self._since)


@dataclass
class HealthStatus:
    """Outcome history of polling cycles."""
    consecutive_errors: int = 0
    last_cycle_at: datetime | None = None
    last_success_at: datetime | None = None
    last_error: str | None = None
    total_cycles: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    @property
    def is_healthy(self) -> bool:
        return self.consecutive_errors < UNHEALTHY_AFTER_ERRORS

    def record_success(self, at: datetime | None = None) -> None:
        with self._lock:
            at = at or datetime.now()
            self.total_cycles += 1
            self.consecutive_errors = 0
            self.last_cycle_at = at
            self.last_success_at = at
            self.last_error = None

    def record_failure(self, error: str, at: datetime | None = None) -> None:
        with self._lock:
            self.total_cycles += 1
            self.consecutive_errors += 1
            self.last_cycle_at = at or datetime.now()
            self.last_error = error

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_healthy": self.is_healthy,
            "consecutive_errors": self.consecutive_errors,
            "total_cycles": self.total_cycles,
            "last_cycle_at": self.last_cycle_at.isoformat() if self.last_cycle_at else None,
            "last_success_at": self.last_success_at.isoformat() if self.last_success_at else None,
            "last_error": self.last_error,
        }
