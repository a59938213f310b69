"""Data models for header monitoring and alerting."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class AlertType(Enum):
    """Independent alert slots kept per monitored header."""
    THRESHOLD = "threshold"  # Value below threshold for longer than alert_duration
    FROZEN = "frozen"        # Value unchanged for longer than frozen_threshold


def alert_id_for(alert_type: AlertType, project_id: str, header_id: str) -> str:
    """Deterministic alert id: one live alert per (type, project, header)."""
    return f"{alert_type.value}_{project_id}_{header_id}"


def parse_datetime(val) -> datetime | None:
    """Parse an ISO timestamp as stored in SQLite."""
    if val is None or val == "":
        return None
    if isinstance(val, datetime):
        return val
    return datetime.fromisoformat(val)


def _iso(val: datetime | None) -> str | None:
    return val.isoformat() if val else None


@dataclass
class Reading:
    """A normalized telemetry sample for one header."""
    value: float | None
    timestamp: str
    telemetry_state: str | None = None


@dataclass
class StageHeader:
    """A header as listed by the provider for one stage."""
    id: str
    name: str


@dataclass
class ActiveStage:
    """A stage the provider currently reports as active."""
    project_id: str
    stage_id: str
    company_id: str | None = None
    company_name: str | None = None
    project_name: str | None = None


@dataclass
class MonitoredHeader:
    """Monitoring configuration and detector state for one (project, header)."""
    project_id: str
    header_id: str
    header_name: str

    # Settings
    threshold: float | None = None
    alert_duration: int | None = None  # seconds a breach must persist
    frozen_threshold: int | None = None  # seconds unchanged before frozen alert
    is_monitored: bool = True

    # Detector state
    last_value: float | None = None
    last_value_time: datetime | None = None
    first_exceeded_time: datetime | None = None
    last_alert_time: datetime | None = None
    last_frozen_alert_time: datetime | None = None
    telemetry_state: str | None = None
    last_reading_time: str | None = None  # provider timestamp of the last reading

    # Joined from active_projects
    company_id: str | None = None
    stage_id: str | None = None

    id: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.project_id, self.header_id)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "project_id": self.project_id,
            "header_id": self.header_id,
            "header_name": self.header_name,
            "threshold": self.threshold,
            "alert_duration": self.alert_duration,
            "frozen_threshold": self.frozen_threshold,
            "is_monitored": self.is_monitored,
            "last_value": self.last_value,
            "last_value_time": _iso(self.last_value_time),
            "first_exceeded_time": _iso(self.first_exceeded_time),
            "last_alert_time": _iso(self.last_alert_time),
            "last_frozen_alert_time": _iso(self.last_frozen_alert_time),
            "telemetry_state": self.telemetry_state,
            "last_reading_time": self.last_reading_time,
            "company_id": self.company_id,
            "stage_id": self.stage_id,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    @classmethod
    def from_row(cls, row) -> "MonitoredHeader":
        """Create from a sqlite3.Row of monitored_headers (optionally joined)."""
        keys = row.keys()
        return cls(
            id=row["id"],
            project_id=row["project_id"],
            header_id=row["header_id"],
            header_name=row["header_name"],
            threshold=row["threshold"],
            alert_duration=row["alert_duration"],
            frozen_threshold=row["frozen_threshold"],
            is_monitored=bool(row["is_monitored"]),
            last_value=row["last_value"],
            last_value_time=parse_datetime(row["last_value_time"]),
            first_exceeded_time=parse_datetime(row["first_exceeded_time"]),
            last_alert_time=parse_datetime(row["last_alert_time"]),
            last_frozen_alert_time=parse_datetime(row["last_frozen_alert_time"]),
            telemetry_state=row["telemetry_state"],
            last_reading_time=row["last_reading_time"],
            company_id=row["company_id"] if "company_id" in keys else None,
            stage_id=row["stage_id"] if "stage_id" in keys else None,
            created_at=parse_datetime(row["created_at"]),
            updated_at=parse_datetime(row["updated_at"]),
        )


@dataclass
class Alert:
    """An open alert for one slot of a monitored header."""
    id: str
    alert_type: AlertType
    project_id: str
    header_id: str
    header_name: str
    value: float | None
    threshold: float | None
    timestamp: datetime
    duration_seconds: int | None = None  # breach elapsed or frozen duration
    telemetry_state: str | None = None
    company_id: str | None = None
    stage_id: str | None = None
    dismissed: bool = False
    created_at: datetime = field(default_factory=datetime.now)

    # Set when returned while a snooze is live
    snoozed: bool = False
    snooze_until: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "type": self.alert_type.value,
            "project_id": self.project_id,
            "header_id": self.header_id,
            "header_name": self.header_name,
            "value": self.value,
            "threshold": self.threshold,
            "timestamp": _iso(self.timestamp),
            "duration_seconds": self.duration_seconds,
            "telemetry_state": self.telemetry_state,
            "company_id": self.company_id,
            "stage_id": self.stage_id,
            "dismissed": self.dismissed,
            "created_at": _iso(self.created_at),
            "snoozed": self.snoozed,
            "snooze_until": _iso(self.snooze_until),
        }

    @classmethod
    def from_row(cls, row) -> "Alert":
        """Create from a sqlite3.Row of alerts (optionally joined with snoozes)."""
        keys = row.keys()
        snooze_until = parse_datetime(row["snooze_until"]) if "snooze_until" in keys else None
        return cls(
            id=row["id"],
            alert_type=AlertType(row["alert_type"]),
            project_id=row["project_id"],
            header_id=row["header_id"],
            header_name=row["header_name"],
            value=row["value"],
            threshold=row["threshold"],
            timestamp=parse_datetime(row["timestamp"]),
            duration_seconds=row["duration_seconds"],
            telemetry_state=row["telemetry_state"],
            company_id=row["company_id"],
            stage_id=row["stage_id"],
            dismissed=bool(row["dismissed"]),
            created_at=parse_datetime(row["created_at"]),
            snoozed=snooze_until is not None,
            snooze_until=snooze_until,
        )


@dataclass
class AlertSnooze:
    """Silences one alert slot until snooze_until."""
    alert_id: str
    snooze_until: datetime
    created_at: datetime = field(default_factory=datetime.now)
    id: int | None = None

    def is_active(self, now: datetime | None = None) -> bool:
        return (now or datetime.now()) < self.snooze_until

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "alert_id": self.alert_id,
            "snooze_until": _iso(self.snooze_until),
            "created_at": _iso(self.created_at),
        }

    @classmethod
    def from_row(cls, row) -> "AlertSnooze":
        return cls(
            id=row["id"],
            alert_id=row["alert_id"],
            snooze_until=parse_datetime(row["snooze_until"]),
            created_at=parse_datetime(row["created_at"]),
        )


@dataclass
class DetectorResult:
    """Decision returned by a detector for one reading.

    Detectors never touch storage; the engine applies state_update and the
    alert upsert/delete in a single transaction.
    """
    alert: Alert | None = None
    state_update: dict[str, Any] = field(default_factory=dict)
    delete_alert_id: str | None = None


@dataclass
class HeaderResult:
    """Outcome of evaluating one header in a cycle."""
    header_id: str
    project_id: str
    value: float | None
    timestamp: str | None
    telemetry_state: str = "ENDED"
    header_name: str | None = None
    stage_id: str | None = None
    company_id: str | None = None
    alerts: list[Alert] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.header_id,
            "name": self.header_name,
            "value": self.value,
            "timestamp": self.timestamp,
            "state": self.telemetry_state,
            "projectId": self.project_id,
            "stageId": self.stage_id,
            "companyId": self.company_id,
            "alert": self.alerts[0].to_dict() if self.alerts else None,
        }


@dataclass
class CycleResult:
    """Aggregated results of one polling cycle."""
    started_at: datetime = field(default_factory=datetime.now)
    finished_at: datetime | None = None
    header_values: list[HeaderResult] = field(default_factory=list)
    alerts: list[Alert] = field(default_factory=list)
    errors: list[dict[str, Any]] = field(default_factory=list)
    processed_headers: int = 0
    skipped: str | None = None  # reason the cycle did not run
    cancelled: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "started_at": _iso(self.started_at),
            "finished_at": _iso(self.finished_at),
            "headerValues": [h.to_dict() for h in self.header_values],
            "alerts": [a.to_dict() for a in self.alerts],
            "errors": self.errors,
            "processed_headers": self.processed_headers,
            "skipped": self.skipped,
            "cancelled": self.cancelled,
        }
