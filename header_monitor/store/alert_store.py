"""SQLite-backed storage for open alerts and their snoozes."""

import logging
import sqlite3
from datetime import datetime, timedelta

from ..models import Alert, AlertSnooze
from .database import Database

logger = logging.getLogger(__name__)


class AlertStore:
    """Keeps at most one row per alert id.

    Upserts replace the row in place, recovery deletes it. Snoozes live in a
    separate table so they survive a recovery and re-raise of the same slot.
    """

    def __init__(self, db: Database):
        self.db = db

    # Alerts

    def upsert_alert(self, alert: Alert, conn: sqlite3.Connection | None = None) -> Alert:
        """Insert or replace an alert; replacing re-opens a dismissed alert."""
        with self.db.transaction(conn) as c:
            c.execute(
                """
                INSERT INTO alerts (
                    id, alert_type, project_id, header_id, header_name,
                    value, threshold, duration_seconds, telemetry_state,
                    timestamp, company_id, stage_id, dismissed, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 0, ?)
                ON CONFLICT(id) DO UPDATE SET
                    header_name = excluded.header_name,
                    value = excluded.value,
                    threshold = excluded.threshold,
                    duration_seconds = excluded.duration_seconds,
                    telemetry_state = excluded.telemetry_state,
                    timestamp = excluded.timestamp,
                    company_id = excluded.company_id,
                    stage_id = excluded.stage_id,
                    dismissed = 0
                """,
                (
                    alert.id,
                    alert.alert_type.value,
                    alert.project_id,
                    alert.header_id,
                    alert.header_name,
                    alert.value,
                    alert.threshold,
                    alert.duration_seconds,
                    alert.telemetry_state,
                    alert.timestamp.isoformat(),
                    alert.company_id,
                    alert.stage_id,
                    alert.created_at.isoformat(),
                ),
            )
        alert.dismissed = False
        return alert

    def delete_alert(self, alert_id: str, conn: sqlite3.Connection | None = None) -> bool:
        """Delete an alert row. Returns True if a row existed."""
        with self.db.transaction(conn) as c:
            cursor = c.execute("DELETE FROM alerts WHERE id = ?", (alert_id,))
            return cursor.rowcount > 0

    def get_alert(self, alert_id: str, conn: sqlite3.Connection | None = None) -> Alert | None:
        """Get an alert by id."""
        with self.db.transaction(conn) as c:
            row = c.execute("SELECT * FROM alerts WHERE id = ?", (alert_id,)).fetchone()
        return Alert.from_row(row) if row else None

    def dismiss(self, alert_id: str) -> bool:
        """Mark an alert dismissed. It re-opens on its next upsert."""
        with self.db.transaction() as conn:
            cursor = conn.execute(
                "UPDATE alerts SET dismissed = 1 WHERE id = ? AND dismissed = 0",
                (alert_id,),
            )
            success = cursor.rowcount > 0

        if success:
            logger.info(f"Dismissed alert {alert_id}")
        return success

    def list_active_alerts(
        self,
        project_id: str | None = None,
        now: datetime | None = None,
    ) -> list[Alert]:
        """List non-dismissed alerts, annotated with any live snooze."""
        now = now or datetime.now()
        query = """
            SELECT a.*, (
                SELECT MAX(s.snooze_until) FROM alert_snoozes s
                WHERE s.alert_id = a.id AND s.snooze_until > ?
            ) AS snooze_until
            FROM alerts a
            WHERE a.dismissed = 0
        """
        params: list = [now.isoformat()]
        if project_id is not None:
            query += " AND a.project_id = ?"
            params.append(project_id)
        query += " ORDER BY a.timestamp DESC"

        with self.db.transaction() as conn:
            rows = conn.execute(query, params).fetchall()
        return [Alert.from_row(r) for r in rows]

    # Snoozes

    def snooze(
        self,
        alert_id: str,
        duration_seconds: int,
        now: datetime | None = None,
    ) -> AlertSnooze:
        """Snooze an alert slot for duration_seconds from now.

        Raises:
            ValueError: If duration_seconds is not positive
        """
        if duration_seconds <= 0:
            raise ValueError("Snooze duration must be positive")

        now = now or datetime.now()
        snooze = AlertSnooze(
            alert_id=alert_id,
            snooze_until=now + timedelta(seconds=duration_seconds),
            created_at=now,
        )
        with self.db.transaction() as conn:
            cursor = conn.execute(
                "INSERT INTO alert_snoozes (alert_id, snooze_until, created_at) VALUES (?, ?, ?)",
                (alert_id, snooze.snooze_until.isoformat(), snooze.created_at.isoformat()),
            )
            snooze.id = cursor.lastrowid

        logger.info(f"Snoozed alert {alert_id} until {snooze.snooze_until.isoformat()}")
        return snooze

    def get_active_snooze(
        self,
        alert_id: str,
        now: datetime | None = None,
        conn: sqlite3.Connection | None = None,
    ) -> AlertSnooze | None:
        """Most recent unexpired snooze for an alert id."""
        now = now or datetime.now()
        with self.db.transaction(conn) as c:
            row = c.execute(
                """
                SELECT * FROM alert_snoozes
                WHERE alert_id = ? AND snooze_until > ?
                ORDER BY created_at DESC, id DESC
                LIMIT 1
                """,
                (alert_id, now.isoformat()),
            ).fetchone()
        return AlertSnooze.from_row(row) if row else None

    def cleanup_expired_snoozes(self, now: datetime | None = None) -> int:
        """Delete snoozes that have expired."""
        now = now or datetime.now()
        with self.db.transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM alert_snoozes WHERE snooze_until <= ?",
                (now.isoformat(),),
            )
            count = cursor.rowcount

        if count:
            logger.debug(f"Removed {count} expired snooze(s)")
        return count
