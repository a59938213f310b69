"""Threshold breach detector.

A header breaches when its value drops below the configured threshold.
Decision flow for one reading:

1. Not breaching: if a breach or alert was in progress, delete the
   threshold alert and clear both timers (recovery); otherwise nothing.
2. Breaching with no alert raised yet:
   a. no breach in progress -> start the grace window at now
   b. inside the grace window (elapsed < alert_duration) -> nothing
   c. grace window complete -> raise, anchor the cooldown, clear the window
3. Breaching after an alert:
   a. within the one-hour cooldown -> suppressed
   b. cooldown elapsed -> raise again and re-anchor the cooldown

The comparison is strict and there is no hysteresis: a value equal to the
threshold does not breach.
"""

import logging
import math
from datetime import datetime

from ..config import config
from ..models import Alert, AlertType, DetectorResult, MonitoredHeader, alert_id_for
from .criteria import ALERT_COOLDOWN_SECONDS, seconds_between

logger = logging.getLogger(__name__)


class ThresholdDetector:
    """Decides threshold alerts from a header's stored state and a new value."""

    def __init__(self, default_alert_duration: int | None = None):
        self.default_alert_duration = (
            default_alert_duration
            if default_alert_duration is not None
            else config.DEFAULT_ALERT_DURATION
        )

    def is_breaching(self, header: MonitoredHeader, value: float) -> bool:
        """A null threshold never breaches."""
        return header.threshold is not None and value < header.threshold

    def evaluate(self, header: MonitoredHeader, value: float, now: datetime) -> DetectorResult:
        """Evaluate one reading. Never touches storage."""
        alert_id = alert_id_for(AlertType.THRESHOLD, header.project_id, header.header_id)

        if not self.is_breaching(header, value):
            if header.last_alert_time or header.first_exceeded_time:
                logger.debug(f"Header {header.header_id} recovered at {value}")
                return DetectorResult(
                    state_update={"first_exceeded_time": None, "last_alert_time": None},
                    delete_alert_id=alert_id,
                )
            return DetectorResult()

        if header.last_alert_time is None:
            if header.first_exceeded_time is None:
                logger.debug(f"Header {header.header_id} started breaching at {value}")
                return DetectorResult(state_update={"first_exceeded_time": now})

            elapsed = seconds_between(header.first_exceeded_time, now)
            alert_duration = (
                header.alert_duration
                if header.alert_duration is not None
                else self.default_alert_duration
            )
            if elapsed < alert_duration:
                return DetectorResult()

            alert = self._build_alert(header, alert_id, value, now, elapsed)
            logger.info(
                f"Threshold alert for header {header.header_id} ({header.header_name}): "
                f"{value} < {header.threshold} for {int(elapsed)}s"
            )
            return DetectorResult(
                alert=alert,
                state_update={"last_alert_time": now, "first_exceeded_time": None},
            )

        since_last = seconds_between(header.last_alert_time, now)
        if since_last < ALERT_COOLDOWN_SECONDS:
            return DetectorResult()

        alert = self._build_alert(header, alert_id, value, now, since_last)
        logger.info(
            f"Recurring threshold alert for header {header.header_id} ({header.header_name}): "
            f"{value} < {header.threshold}"
        )
        return DetectorResult(alert=alert, state_update={"last_alert_time": now})

    @staticmethod
    def _build_alert(
        header: MonitoredHeader,
        alert_id: str,
        value: float,
        now: datetime,
        elapsed: float,
    ) -> Alert:
        return Alert(
            id=alert_id,
            alert_type=AlertType.THRESHOLD,
            project_id=header.project_id,
            header_id=header.header_id,
            header_name=header.header_name,
            value=value,
            threshold=header.threshold,
            timestamp=now,
            duration_seconds=math.floor(elapsed),
            company_id=header.company_id,
            stage_id=header.stage_id,
            created_at=now,
        )
