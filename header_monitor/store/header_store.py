"""SQLite-backed storage for monitored header settings and detector state."""

import logging
import sqlite3
from datetime import datetime
from typing import Any

from ..errors import ConfigurationMissing
from ..models import MonitoredHeader
from .database import Database

logger = logging.getLogger(__name__)

SETTINGS_FIELDS = ("header_name", "threshold", "alert_duration", "frozen_threshold")

STATE_FIELDS = (
    "last_value",
    "last_value_time",
    "first_exceeded_time",
    "last_alert_time",
    "last_frozen_alert_time",
    "telemetry_state",
    "last_reading_time",
)

_SELECT = """
    SELECT h.*, p.company_id AS company_id, p.stage_id AS stage_id
    FROM monitored_headers h
    LEFT JOIN active_projects p ON p.project_id = h.project_id
"""


def _to_db(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    return value


class HeaderStore:
    """Persists one row per (project_id, header_id).

    Rows are soft-disabled through is_monitored and never hard-deleted.
    """

    def __init__(self, db: Database):
        self.db = db

    # Reads

    def get_header(
        self,
        project_id: str,
        header_id: str,
        conn: sqlite3.Connection | None = None,
    ) -> MonitoredHeader | None:
        """Get a header row by identity, monitored or not."""
        with self.db.transaction(conn) as c:
            row = c.execute(
                _SELECT + " WHERE h.project_id = ? AND h.header_id = ?",
                (project_id, header_id),
            ).fetchone()
        return MonitoredHeader.from_row(row) if row else None

    def require_header(self, project_id: str, header_id: str) -> MonitoredHeader:
        """Get a header row or raise ConfigurationMissing."""
        header = self.get_header(project_id, header_id)
        if header is None:
            raise ConfigurationMissing(project_id, header_id)
        return header

    def list_headers(
        self,
        project_id: str | None = None,
        monitored_only: bool = True,
        header_ids: list[str] | None = None,
    ) -> list[MonitoredHeader]:
        """List header rows ordered by row id.

        Args:
            project_id: Restrict to one project
            monitored_only: Exclude soft-disabled rows
            header_ids: Restrict to these provider header ids
        """
        query = _SELECT + " WHERE 1=1"
        params: list[Any] = []

        if project_id is not None:
            query += " AND h.project_id = ?"
            params.append(project_id)
        if monitored_only:
            query += " AND h.is_monitored = 1"
        if header_ids:
            placeholders = ",".join("?" * len(header_ids))
            query += f" AND h.header_id IN ({placeholders})"
            params.extend(header_ids)

        query += " ORDER BY h.id ASC"

        with self.db.transaction() as conn:
            rows = conn.execute(query, params).fetchall()
        return [MonitoredHeader.from_row(r) for r in rows]

    def list_monitored_projects(self) -> list[str]:
        """Project ids that have at least one monitored header."""
        with self.db.transaction() as conn:
            rows = conn.execute(
                "SELECT DISTINCT project_id FROM monitored_headers "
                "WHERE is_monitored = 1 ORDER BY project_id"
            ).fetchall()
        return [r["project_id"] for r in rows]

    # Writes

    def upsert_settings(
        self,
        project_id: str,
        header_id: str,
        header_name: str,
        threshold: float | None = None,
        alert_duration: int | None = None,
        frozen_threshold: int | None = None,
        is_monitored: bool = True,
        conn: sqlite3.Connection | None = None,
    ) -> MonitoredHeader:
        """Create or update the settings of a header; detector state is kept."""
        now = datetime.now().isoformat()
        with self.db.transaction(conn) as c:
            c.execute(
                """
                INSERT INTO monitored_headers (
                    project_id, header_id, header_name, threshold,
                    alert_duration, frozen_threshold, is_monitored,
                    created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(project_id, header_id) DO UPDATE SET
                    header_name = excluded.header_name,
                    threshold = excluded.threshold,
                    alert_duration = excluded.alert_duration,
                    frozen_threshold = excluded.frozen_threshold,
                    is_monitored = excluded.is_monitored,
                    updated_at = excluded.updated_at
                """,
                (
                    project_id, header_id, header_name, threshold,
                    alert_duration, frozen_threshold, 1 if is_monitored else 0,
                    now, now,
                ),
            )
            header = self.get_header(project_id, header_id, conn=c)

        logger.debug(f"Upserted settings for header {header_id} in project {project_id}")
        return header

    def update_settings(self, project_id: str, header_id: str, **settings) -> MonitoredHeader:
        """Update selected settings of an existing header.

        Raises:
            ConfigurationMissing: If the header has never been monitored
            ValueError: If an unknown setting is passed
        """
        unknown = set(settings) - set(SETTINGS_FIELDS)
        if unknown:
            raise ValueError(f"Unknown header settings: {', '.join(sorted(unknown))}")

        with self.db.transaction() as conn:
            if self.get_header(project_id, header_id, conn=conn) is None:
                raise ConfigurationMissing(project_id, header_id)
            if settings:
                self._update(conn, project_id, header_id, settings)
            return self.get_header(project_id, header_id, conn=conn)

    def update_state(
        self,
        project_id: str,
        header_id: str,
        fields: dict[str, Any],
        conn: sqlite3.Connection | None = None,
    ) -> None:
        """Write detector state fields; datetimes are stored as ISO strings."""
        unknown = set(fields) - set(STATE_FIELDS)
        if unknown:
            raise ValueError(f"Unknown header state fields: {', '.join(sorted(unknown))}")
        if not fields:
            return

        with self.db.transaction(conn) as c:
            self._update(c, project_id, header_id, fields)

    def set_monitored(
        self,
        project_id: str,
        header_id: str,
        monitored: bool,
        conn: sqlite3.Connection | None = None,
    ) -> bool:
        """Enable or soft-disable monitoring. Returns False if no row exists."""
        with self.db.transaction(conn) as c:
            cursor = c.execute(
                """
                UPDATE monitored_headers
                SET is_monitored = ?, updated_at = ?
                WHERE project_id = ? AND header_id = ?
                """,
                (1 if monitored else 0, datetime.now().isoformat(), project_id, header_id),
            )
            return cursor.rowcount > 0

    def disable_project(self, project_id: str) -> int:
        """Soft-disable every monitored header of a project."""
        with self.db.transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE monitored_headers
                SET is_monitored = 0, updated_at = ?
                WHERE project_id = ? AND is_monitored = 1
                """,
                (datetime.now().isoformat(), project_id),
            )
            count = cursor.rowcount

        logger.info(f"Disabled {count} header(s) for project {project_id}")
        return count

    def disable_deleted_projects(self) -> int:
        """Soft-disable headers whose project is flagged deleted."""
        with self.db.transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE monitored_headers
                SET is_monitored = 0, updated_at = ?
                WHERE is_monitored = 1 AND project_id IN (
                    SELECT project_id FROM active_projects WHERE is_deleted = 1
                )
                """,
                (datetime.now().isoformat(),),
            )
            count = cursor.rowcount

        if count:
            logger.info(f"Disabled {count} header(s) of deleted projects")
        return count

    @staticmethod
    def _update(conn: sqlite3.Connection, project_id: str, header_id: str, fields: dict[str, Any]) -> None:
        # Column names come from the SETTINGS_FIELDS / STATE_FIELDS whitelists
        assignments = ", ".join(f"{name} = ?" for name in fields)
        params = [_to_db(v) for v in fields.values()]
        params.extend([datetime.now().isoformat(), project_id, header_id])
        conn.execute(
            f"UPDATE monitored_headers SET {assignments}, updated_at = ? "
            "WHERE project_id = ? AND header_id = ?",
            params,
        )
