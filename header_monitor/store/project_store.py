"""Stage and project directory backed by SQLite."""

import logging
from datetime import datetime

from ..models import ActiveStage
from .database import Database

logger = logging.getLogger(__name__)


class ProjectStore:
    """Maps stages to projects and remembers each project's current stage."""

    def __init__(self, db: Database):
        self.db = db

    def register_stage(self, stage: ActiveStage, now: datetime | None = None) -> None:
        """Record that a stage belongs to a project without moving the current stage."""
        now = now or datetime.now()
        with self.db.transaction() as conn:
            conn.execute(
                """
                INSERT INTO project_stages (stage_id, project_id, first_seen_at)
                VALUES (?, ?, ?)
                ON CONFLICT(stage_id) DO NOTHING
                """,
                (stage.stage_id, stage.project_id, now.isoformat()),
            )

    def upsert_projects(self, stages: list[ActiveStage], now: datetime | None = None) -> int:
        """Record the given stages as the current stage of their projects.

        Returns the number of projects written.
        """
        now = (now or datetime.now()).isoformat()
        with self.db.transaction() as conn:
            for stage in stages:
                conn.execute(
                    """
                    INSERT INTO project_stages (stage_id, project_id, first_seen_at)
                    VALUES (?, ?, ?)
                    ON CONFLICT(stage_id) DO NOTHING
                    """,
                    (stage.stage_id, stage.project_id, now),
                )
                conn.execute(
                    """
                    INSERT INTO active_projects (
                        project_id, company_id, company_name, project_name,
                        stage_id, is_deleted, last_active_at, created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, 0, ?, ?, ?)
                    ON CONFLICT(project_id) DO UPDATE SET
                        company_id = COALESCE(excluded.company_id, company_id),
                        company_name = COALESCE(excluded.company_name, company_name),
                        project_name = COALESCE(excluded.project_name, project_name),
                        stage_id = excluded.stage_id,
                        is_deleted = 0,
                        last_active_at = excluded.last_active_at,
                        updated_at = excluded.updated_at
                    """,
                    (
                        stage.project_id, stage.company_id, stage.company_name,
                        stage.project_name, stage.stage_id, now, now, now,
                    ),
                )
        return len(stages)

    def get_project_id(self, stage_id: str) -> str | None:
        """Resolve the project a stage belongs to."""
        with self.db.transaction() as conn:
            row = conn.execute(
                "SELECT project_id FROM project_stages WHERE stage_id = ?",
                (stage_id,),
            ).fetchone()
            if row is None:
                row = conn.execute(
                    "SELECT project_id FROM active_projects WHERE stage_id = ?",
                    (stage_id,),
                ).fetchone()
        return row["project_id"] if row else None

    def get_current_stage(self, project_id: str) -> str | None:
        """Stage last recorded as current for a project."""
        with self.db.transaction() as conn:
            row = conn.execute(
                "SELECT stage_id FROM active_projects WHERE project_id = ? AND is_deleted = 0",
                (project_id,),
            ).fetchone()
        return row["stage_id"] if row else None

    def list_active_projects(self) -> list[ActiveStage]:
        """Projects not flagged deleted, with their current stage."""
        with self.db.transaction() as conn:
            rows = conn.execute(
                """
                SELECT project_id, stage_id, company_id, company_name, project_name
                FROM active_projects
                WHERE is_deleted = 0
                ORDER BY project_id
                """
            ).fetchall()
        return [
            ActiveStage(
                project_id=r["project_id"],
                stage_id=r["stage_id"],
                company_id=r["company_id"],
                company_name=r["company_name"],
                project_name=r["project_name"],
            )
            for r in rows
        ]

    def mark_deleted(self, project_id: str) -> bool:
        """Flag a project as deleted."""
        with self.db.transaction() as conn:
            cursor = conn.execute(
                "UPDATE active_projects SET is_deleted = 1, updated_at = ? WHERE project_id = ?",
                (datetime.now().isoformat(), project_id),
            )
            success = cursor.rowcount > 0

        if success:
            logger.info(f"Marked project {project_id} deleted")
        return success
