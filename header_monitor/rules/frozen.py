"""Frozen value detector.

A header is frozen when it keeps reporting exactly the same value for at
least frozen_threshold seconds. Zero is an ordinary value.
"""

import logging
import math
from datetime import datetime

from ..config import config
from ..models import Alert, AlertType, DetectorResult, MonitoredHeader, alert_id_for
from .criteria import cooldown_elapsed, seconds_between

logger = logging.getLogger(__name__)


class FrozenDetector:
    """Decides frozen alerts from a header's stored state and a new value."""

    def __init__(self, default_frozen_threshold: int | None = None):
        self.default_frozen_threshold = (
            default_frozen_threshold
            if default_frozen_threshold is not None
            else config.DEFAULT_FROZEN_THRESHOLD
        )

    def evaluate(self, header: MonitoredHeader, value: float, now: datetime) -> DetectorResult:
        """Evaluate one reading. Never touches storage."""
        alert_id = alert_id_for(AlertType.FROZEN, header.project_id, header.header_id)

        if header.last_value is None or header.last_value_time is None or value != header.last_value:
            update = {"last_value": value, "last_value_time": now}
            if header.last_frozen_alert_time is not None:
                logger.debug(f"Header {header.header_id} unfroze at {value}")
                update["last_frozen_alert_time"] = None
                return DetectorResult(state_update=update, delete_alert_id=alert_id)
            return DetectorResult(state_update=update)

        frozen_duration = seconds_between(header.last_value_time, now)
        frozen_threshold = (
            header.frozen_threshold
            if header.frozen_threshold is not None
            else self.default_frozen_threshold
        )
        if frozen_duration < frozen_threshold:
            return DetectorResult()

        if not cooldown_elapsed(header.last_frozen_alert_time, now):
            return DetectorResult()

        alert = Alert(
            id=alert_id,
            alert_type=AlertType.FROZEN,
            project_id=header.project_id,
            header_id=header.header_id,
            header_name=header.header_name,
            value=value,
            threshold=header.threshold,
            timestamp=now,
            duration_seconds=max(1, math.floor(frozen_duration)),
            company_id=header.company_id,
            stage_id=header.stage_id,
            created_at=now,
        )
        logger.info(
            f"Frozen alert for header {header.header_id} ({header.header_name}): "
            f"{value} unchanged for {alert.duration_seconds}s"
        )
        return DetectorResult(alert=alert, state_update={"last_frozen_alert_time": now})
