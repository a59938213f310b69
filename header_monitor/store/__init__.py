"""Persistent storage for monitored headers, alerts and projects."""

from .alert_store import AlertStore
from .database import Database, SCHEMA_VERSION
from .header_store import HeaderStore
from .project_store import ProjectStore

__all__ = [
    "AlertStore",
    "Database",
    "HeaderStore",
    "ProjectStore",
    "SCHEMA_VERSION",
]
