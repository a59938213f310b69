"""Timing constants and helpers shared by the detectors."""

from datetime import datetime

# Minimum spacing between two alerts of the same slot while the condition persists
ALERT_COOLDOWN_SECONDS = 3600


def seconds_between(start: datetime, end: datetime) -> float:
    """Elapsed seconds from start to end."""
    return (end - start).total_seconds()


def cooldown_elapsed(last_alert_time: datetime | None, now: datetime) -> bool:
    """True if no alert has been raised yet or the cooldown has passed."""
    if last_alert_time is None:
        return True
    return seconds_between(last_alert_time, now) >= ALERT_COOLDOWN_SECONDS
