"""Per-header alert state machine.

For each normalized reading the engine:

1. Re-reads the header row under the header's lock; missing or unmonitored
   headers are skipped.
2. Persists the latest value and telemetry state whatever happens next.
3. Runs the detectors only while the provider reports the operation as
   actively producing data. Frozen is evaluated first; when its slot yields
   an alert (fresh or snoozed) the threshold slot is not evaluated this cycle.
4. A slot with a live snooze is not recomputed: the stored alert is returned
   annotated as snoozed, or nothing if the slot has no stored alert.
5. Writes header state and alert upserts/deletes in one transaction.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from .config import config
from .errors import ConfigurationMissing
from .models import (
    Alert,
    AlertType,
    HeaderResult,
    MonitoredHeader,
    Reading,
    alert_id_for,
)
from .rules import FrozenDetector, ThresholdDetector
from .runtime import FrozenStateTracker, MonitorLocks
from .store import AlertStore, Database, HeaderStore

logger = logging.getLogger(__name__)


@dataclass
class _PendingWrites:
    """Mutations collected for one evaluation, applied together."""
    header_fields: dict[str, Any] = field(default_factory=dict)
    upserts: list[Alert] = field(default_factory=list)
    deletes: list[str] = field(default_factory=list)


class HeaderAlertEngine:
    """Evaluates readings against a header's threshold and frozen settings."""

    def __init__(
        self,
        db: Database,
        header_store: HeaderStore | None = None,
        alert_store: AlertStore | None = None,
        threshold_detector: ThresholdDetector | None = None,
        frozen_detector: FrozenDetector | None = None,
        locks: MonitorLocks | None = None,
        frozen_tracker: FrozenStateTracker | None = None,
        active_states: list[str] | None = None,
    ):
        self.db = db
        self.header_store = header_store or HeaderStore(db)
        self.alert_store = alert_store or AlertStore(db)
        self.threshold_detector = threshold_detector or ThresholdDetector()
        self.frozen_detector = frozen_detector or FrozenDetector()
        self.locks = locks or MonitorLocks()
        self.frozen_tracker = frozen_tracker or FrozenStateTracker()
        self.active_states = {
            s.upper() for s in (active_states or config.ACTIVE_TELEMETRY_STATES)
        }

    def is_active_state(self, telemetry_state: str | None) -> bool:
        """True if the provider state means the operation is producing data."""
        return bool(telemetry_state) and telemetry_state.upper() in self.active_states

    def evaluate(
        self,
        project_id: str,
        header_id: str,
        reading: Reading,
        now: datetime | None = None,
    ) -> HeaderResult | None:
        """Evaluate one reading for one header.

        Returns:
            HeaderResult with any alerts raised or returned as snoozed, or
            None if the header is not monitored

        Raises:
            PersistenceFailure: If the write failed; no change was applied
        """
        now = now or datetime.now()

        with self.locks.header(project_id, header_id):
            try:
                header = self.header_store.require_header(project_id, header_id)
            except ConfigurationMissing:
                logger.debug(f"Header {header_id} in project {project_id} has no settings, skipping")
                return None

            if not header.is_monitored:
                return None

            result = HeaderResult(
                header_id=header_id,
                project_id=project_id,
                value=reading.value,
                timestamp=reading.timestamp,
                telemetry_state=reading.telemetry_state or "ENDED",
                header_name=header.header_name,
                stage_id=header.stage_id,
                company_id=header.company_id,
            )

            writes = _PendingWrites(header_fields={
                "telemetry_state": reading.telemetry_state,
                "last_reading_time": reading.timestamp,
            })

            if reading.value is not None:
                writes.header_fields["last_value"] = reading.value
                if header.last_value_time is None or header.last_value != reading.value:
                    writes.header_fields["last_value_time"] = now

                if self.is_active_state(reading.telemetry_state):
                    result.alerts = self._run_detectors(header, reading, now, writes)
                else:
                    logger.debug(
                        f"Header {header_id} state {reading.telemetry_state}, detectors skipped"
                    )

            with self.db.transaction() as conn:
                self.header_store.update_state(project_id, header_id, writes.header_fields, conn=conn)
                for alert in writes.upserts:
                    self.alert_store.upsert_alert(alert, conn=conn)
                for alert_id in writes.deletes:
                    self.alert_store.delete_alert(alert_id, conn=conn)

            self._track_frozen(header, reading)

        return result

    def _run_detectors(
        self,
        header: MonitoredHeader,
        reading: Reading,
        now: datetime,
        writes: _PendingWrites,
    ) -> list[Alert]:
        frozen_alert = self._evaluate_slot(AlertType.FROZEN, header, reading, now, writes)
        if frozen_alert is not None:
            return [frozen_alert]

        threshold_alert = self._evaluate_slot(AlertType.THRESHOLD, header, reading, now, writes)
        return [threshold_alert] if threshold_alert is not None else []

    def _evaluate_slot(
        self,
        alert_type: AlertType,
        header: MonitoredHeader,
        reading: Reading,
        now: datetime,
        writes: _PendingWrites,
    ) -> Alert | None:
        alert_id = alert_id_for(alert_type, header.project_id, header.header_id)

        snooze = self.alert_store.get_active_snooze(alert_id, now=now)
        if snooze is not None:
            stored = self.alert_store.get_alert(alert_id)
            if stored is None:
                return None
            stored.snoozed = True
            stored.snooze_until = snooze.snooze_until
            logger.debug(f"Alert {alert_id} snoozed until {snooze.snooze_until.isoformat()}")
            return stored

        detector = self.frozen_detector if alert_type == AlertType.FROZEN else self.threshold_detector
        decision = detector.evaluate(header, reading.value, now)

        writes.header_fields.update(decision.state_update)
        if decision.delete_alert_id:
            writes.deletes.append(decision.delete_alert_id)
        if decision.alert is not None:
            decision.alert.telemetry_state = reading.telemetry_state
            writes.upserts.append(decision.alert)
        return decision.alert

    def _track_frozen(self, header: MonitoredHeader, reading: Reading) -> None:
        if reading.value is None:
            return
        if header.last_value is not None and header.last_value == reading.value and header.last_value_time:
            self.frozen_tracker.mark_unchanged(header.project_id, header.header_id, header.last_value_time)
        else:
            self.frozen_tracker.clear(header.project_id, header.header_id)
