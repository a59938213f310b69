"""Header monitoring service.

Polls the telemetry provider for every monitored header, feeds each reading
to the alert engine, follows stage transitions and collapses duplicate
monitors. Also exposes the administrative operations used by the API.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Any, Callable

from .categories import apply_category_defaults
from .config import config
from .continuity import ContinuityResolver
from .duplicates import DuplicateReconciler
from .engine import HeaderAlertEngine
from .errors import FetchFailure, PersistenceFailure
from .models import (
    ActiveStage,
    Alert,
    AlertSnooze,
    CycleResult,
    MonitoredHeader,
    StageHeader,
)
from .runtime import FrozenStateTracker, HealthStatus, MonitorLocks
from .store import AlertStore, Database, HeaderStore, ProjectStore
from .telemetry_client import TelemetryClient, get_telemetry_client

logger = logging.getLogger(__name__)


class HeaderMonitor:
    """Runs polling cycles over all monitored headers."""

    def __init__(
        self,
        telemetry_client: TelemetryClient | None = None,
        db: Database | None = None,
        db_path: str | None = None,
        max_workers: int | None = None,
    ):
        self.telemetry = telemetry_client or get_telemetry_client()
        self.db = db or Database(db_path)
        self.max_workers = max_workers or config.MAX_FETCH_WORKERS

        self.header_store = HeaderStore(self.db)
        self.alert_store = AlertStore(self.db)
        self.project_store = ProjectStore(self.db)

        self.locks = MonitorLocks()
        self.frozen_tracker = FrozenStateTracker()
        self.health = HealthStatus()

        self.engine = HeaderAlertEngine(
            self.db,
            header_store=self.header_store,
            alert_store=self.alert_store,
            locks=self.locks,
            frozen_tracker=self.frozen_tracker,
        )
        self.resolver = ContinuityResolver(
            self.header_store,
            self.project_store,
            stage_headers=self.telemetry,
            locks=self.locks,
            frozen_tracker=self.frozen_tracker,
        )
        self.reconciler = DuplicateReconciler(self.header_store, locks=self.locks)

        self._cycle_lock = threading.Lock()
        self._stop_event = threading.Event()
        self.alerts_generated = 0

    # Polling

    def run_once(self, header_ids: list[str] | None = None, now: datetime | None = None) -> CycleResult:
        """Run a single polling cycle.

        Args:
            header_ids: Restrict the cycle to these header ids. A restricted
                cycle skips stage-transition detection and reconciliation.
            now: Evaluation time; defaults to the wall clock per header

        Returns:
            CycleResult with header values, alerts and per-header errors
        """
        result = CycleResult()

        if self._stop_event.is_set():
            result.skipped = "shutting_down"
            return result
        if not self._cycle_lock.acquire(blocking=False):
            logger.info("Previous cycle still running, skipping")
            result.skipped = "cycle_in_progress"
            return result

        try:
            try:
                headers = self.header_store.list_headers(header_ids=header_ids)
            except PersistenceFailure as e:
                logger.error(f"Could not load monitored headers: {e}", exc_info=True)
                result.errors.append({"error": str(e)})
                self.health.record_failure(str(e))
                return result

            logger.info(f"Checking {len(headers)} monitored header(s)")
            self._poll_headers(headers, result, now)

            if header_ids is None and not result.cancelled:
                self._run_step("stage transitions", self.detect_stage_transitions, result)
                self._run_step("duplicate reconciliation", self.reconciler.reconcile_all, result)
                self._run_step("snooze cleanup", self.alert_store.cleanup_expired_snoozes, result)

            fresh = [a for a in result.alerts if not a.snoozed]
            self.alerts_generated += len(fresh)
            if fresh:
                logger.info(f"Generated {len(fresh)} alert(s)")

            if headers and result.errors and result.processed_headers == 0:
                self.health.record_failure(result.errors[-1]["error"])
            else:
                self.health.record_success()
        finally:
            result.finished_at = datetime.now()
            self._cycle_lock.release()

        return result

    def _poll_headers(
        self,
        headers: list[MonitoredHeader],
        result: CycleResult,
        now: datetime | None,
    ) -> None:
        if not headers:
            return

        workers = max(1, min(self.max_workers, len(headers)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="header-fetch") as pool:
            futures = [
                (header, pool.submit(self.telemetry.fetch_reading, header.header_id))
                for header in headers
            ]

            for header, future in futures:
                if self._stop_event.is_set():
                    for _, pending in futures:
                        pending.cancel()
                    result.cancelled = True
                    logger.info("Cycle cancelled, remaining headers skipped")
                    break

                try:
                    reading = future.result()
                except FetchFailure as e:
                    logger.warning(f"Fetch failed for header {header.header_id}: {e}")
                    result.errors.append(self._error_entry(header, e))
                    continue
                except Exception as e:
                    logger.error(f"Error fetching header {header.header_id}: {e}", exc_info=True)
                    result.errors.append(self._error_entry(header, e))
                    continue

                try:
                    header_result = self.engine.evaluate(
                        header.project_id, header.header_id, reading, now=now
                    )
                except PersistenceFailure as e:
                    logger.error(f"Could not save state of header {header.header_id}: {e}", exc_info=True)
                    result.errors.append(self._error_entry(header, e))
                    continue
                except Exception as e:
                    logger.error(f"Error evaluating header {header.header_id}: {e}", exc_info=True)
                    result.errors.append(self._error_entry(header, e))
                    continue

                if header_result is None:
                    continue
                result.processed_headers += 1
                result.header_values.append(header_result)
                result.alerts.extend(header_result.alerts)

    @staticmethod
    def _error_entry(header: MonitoredHeader, error: Exception) -> dict[str, Any]:
        return {
            "project_id": header.project_id,
            "header_id": header.header_id,
            "header_name": header.header_name,
            "error": str(error),
        }

    @staticmethod
    def _run_step(name: str, step: Callable[[], Any], result: CycleResult) -> None:
        try:
            step()
        except (FetchFailure, PersistenceFailure) as e:
            logger.warning(f"{name.capitalize()} failed: {e}")
            result.errors.append({"step": name, "error": str(e)})
        except Exception as e:
            logger.error(f"Error during {name}: {e}", exc_info=True)
            result.errors.append({"step": name, "error": str(e)})

    def run_continuous(self, interval_seconds: int | None = None):
        """Run the polling loop until stop() or Ctrl+C.

        Args:
            interval_seconds: Seconds between cycles (default from config)
        """
        interval = interval_seconds or config.POLL_INTERVAL

        logger.info("Header Monitor - Starting")
        logger.info(f"  Telemetry API: {config.TELEMETRY_API_BASE}")
        logger.info(f"  Database: {self.db.db_path}")
        logger.info(f"  Poll Interval: {interval} seconds")
        logger.info(f"  Fetch Workers: {self.max_workers}")

        try:
            while not self._stop_event.is_set():
                try:
                    self.run_once()
                except Exception as e:
                    logger.error(f"Cycle failed: {e}", exc_info=True)
                    self.health.record_failure(str(e))
                self._stop_event.wait(interval)
        except KeyboardInterrupt:
            logger.info("Monitor stopped by user")
            self.stop()

        logger.info(f"Total alerts generated: {self.alerts_generated}")

    def stop(self) -> None:
        """Request shutdown; the running cycle stops before its next header."""
        self._stop_event.set()

    @property
    def is_running_cycle(self) -> bool:
        return self._cycle_lock.locked()

    # Stage transitions

    def detect_stage_transitions(self) -> list[dict[str, Any]]:
        """Compare the provider's active stages with the stored ones.

        New stages are registered first so both sides of a transition
        resolve to their project. A project's current stage only advances
        once its migration succeeded, so a failed migration is retried on the
        next cycle.
        """
        stages = self.telemetry.get_active_stages()
        transitions = []
        advanced: list[ActiveStage] = []

        for stage in stages:
            current = self.project_store.get_current_stage(stage.project_id)
            self.project_store.register_stage(stage)

            if current is None or current == stage.stage_id:
                advanced.append(stage)
                continue

            logger.info(
                f"Stage transition in project {stage.project_id}: {current} -> {stage.stage_id}"
            )
            try:
                migrated = self.resolver.migrate_stage(current, stage.stage_id)
            except PersistenceFailure as e:
                logger.error(f"Migration of project {stage.project_id} rolled back: {e}")
                migrated = False
            transitions.append({
                "project_id": stage.project_id,
                "old_stage_id": current,
                "new_stage_id": stage.stage_id,
                "migrated": migrated,
            })
            if migrated:
                advanced.append(stage)

        if advanced:
            self.project_store.upsert_projects(advanced)
        return transitions

    def migrate_stage(
        self,
        old_stage_id: str,
        new_stage_id: str,
        new_headers: list[StageHeader] | None = None,
    ) -> bool:
        """Manually migrate monitoring between stages of one project."""
        migrated = self.resolver.migrate_stage(old_stage_id, new_stage_id, new_headers)
        if migrated:
            project_id = self.project_store.get_project_id(new_stage_id)
            self.project_store.upsert_projects([ActiveStage(project_id=project_id, stage_id=new_stage_id)])
        return migrated

    def reconcile_duplicates(self, project_id: str | None = None) -> int:
        """Reconcile one project, or every project when none is given."""
        if project_id is None:
            return self.reconciler.reconcile_all()
        return self.reconciler.reconcile_duplicates(project_id)

    def register_active_stages(self, stages: list[ActiveStage]) -> int:
        """Record stages as the current stage of their projects."""
        return self.project_store.upsert_projects(stages)

    def cleanup_deleted_projects(self) -> int:
        """Disable monitoring for projects flagged deleted."""
        return self.header_store.disable_deleted_projects()

    # Header administration

    def monitor_header(
        self,
        project_id: str,
        header_id: str,
        header_name: str,
        threshold: float | None = None,
        alert_duration: int | None = None,
        frozen_threshold: int | None = None,
    ) -> MonitoredHeader:
        """Start monitoring a header; missing settings come from its category."""
        settings = apply_category_defaults(header_name, {
            "threshold": threshold,
            "alert_duration": alert_duration,
            "frozen_threshold": frozen_threshold,
        })
        with self.locks.header(project_id, header_id):
            header = self.header_store.upsert_settings(
                project_id=project_id,
                header_id=header_id,
                header_name=header_name,
                is_monitored=True,
                **settings,
            )
        logger.info(f"Monitoring header {header_id} ({header_name}) in project {project_id}")
        return header

    def update_header_settings(self, project_id: str, header_id: str, **settings) -> MonitoredHeader:
        """Update threshold, alert_duration, frozen_threshold or header_name.

        Raises:
            ConfigurationMissing: If the header was never monitored
        """
        with self.locks.header(project_id, header_id):
            return self.header_store.update_settings(project_id, header_id, **settings)

    def unmonitor_header(self, project_id: str, header_id: str) -> bool:
        """Soft-disable one header."""
        with self.locks.header(project_id, header_id):
            success = self.header_store.set_monitored(project_id, header_id, False)
        self.frozen_tracker.clear(project_id, header_id)
        if success:
            logger.info(f"Stopped monitoring header {header_id} in project {project_id}")
        return success

    def disable_project(self, project_id: str) -> int:
        """Soft-disable every header of a project."""
        with self.locks.project(project_id):
            return self.header_store.disable_project(project_id)

    def list_monitored_headers(self, project_id: str | None = None) -> list[MonitoredHeader]:
        return self.header_store.list_headers(project_id=project_id)

    # Alert administration

    def list_active_alerts(self, project_id: str | None = None) -> list[Alert]:
        return self.alert_store.list_active_alerts(project_id=project_id)

    def snooze_alert(self, alert_id: str, duration_seconds: int) -> AlertSnooze | None:
        """Snooze an existing alert. Returns None if the alert does not exist."""
        alert = self.alert_store.get_alert(alert_id)
        if alert is None:
            return None
        with self.locks.header(alert.project_id, alert.header_id):
            return self.alert_store.snooze(alert_id, duration_seconds)

    def dismiss_alert(self, alert_id: str) -> bool:
        """Dismiss an existing alert."""
        alert = self.alert_store.get_alert(alert_id)
        if alert is None:
            return False
        with self.locks.header(alert.project_id, alert.header_id):
            return self.alert_store.dismiss(alert_id)

    def get_status(self) -> dict[str, Any]:
        """Health and runtime status for the API."""
        status = self.health.to_dict()
        status.update({
            "cycle_running": self.is_running_cycle,
            "stopping": self._stop_event.is_set(),
            "alerts_generated": self.alerts_generated,
            "frozen_headers_tracked": len(self.frozen_tracker),
            "unchanged_headers": self.frozen_tracker.snapshot(),
        })
        return status
