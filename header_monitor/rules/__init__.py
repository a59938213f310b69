"""Alert detectors for monitored headers."""

from .criteria import ALERT_COOLDOWN_SECONDS
from .frozen import FrozenDetector
from .threshold import ThresholdDetector

__all__ = ["ALERT_COOLDOWN_SECONDS", "FrozenDetector", "ThresholdDetector"]
