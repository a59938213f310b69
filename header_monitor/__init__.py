"""Header Monitor - threshold and frozen-value alerting for telemetry headers."""

from .continuity import ContinuityResolver
from .duplicates import DuplicateReconciler
from .engine import HeaderAlertEngine
from .errors import (
    ConfigurationMissing,
    FetchFailure,
    HeaderMonitorError,
    PersistenceFailure,
)
from .models import (
    ActiveStage,
    Alert,
    AlertSnooze,
    AlertType,
    CycleResult,
    HeaderResult,
    MonitoredHeader,
    Reading,
    StageHeader,
)
from .monitor import HeaderMonitor
from .rules import FrozenDetector, ThresholdDetector
from .store import AlertStore, Database, HeaderStore, ProjectStore

__all__ = [
    # Components
    "ContinuityResolver",
    "DuplicateReconciler",
    "FrozenDetector",
    "HeaderAlertEngine",
    "HeaderMonitor",
    "ThresholdDetector",
    # Stores
    "AlertStore",
    "Database",
    "HeaderStore",
    "ProjectStore",
    # Models
    "ActiveStage",
    "Alert",
    "AlertSnooze",
    "AlertType",
    "CycleResult",
    "HeaderResult",
    "MonitoredHeader",
    "Reading",
    "StageHeader",
    # Errors
    "ConfigurationMissing",
    "FetchFailure",
    "HeaderMonitorError",
    "PersistenceFailure",
]
