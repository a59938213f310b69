"""Configuration management for the Header Monitor."""

import os
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables from .env file
env_path = Path(__file__).parent.parent / ".env"
if env_path.exists():
    load_dotenv(env_path)
else:
    # Fall back to template for defaults
    template_path = Path(__file__).parent.parent / ".env.template"
    if template_path.exists():
        load_dotenv(template_path)


# Header name patterns used to pick default monitoring settings.
# Thresholds are in the header's own unit, durations in seconds.
PATTERN_CATEGORIES: dict[str, dict] = {
    "pressure": {
        "patterns": ["pressure", "psi"],
        "negative_patterns": ["atmospheric", "atm"],
        "threshold": 100.0,
        "alert_duration": 120,
        "frozen_threshold": 60,
    },
    "battery": {
        "patterns": ["battery", "batt", "volt"],
        "negative_patterns": [],
        "threshold": 20.0,
        "alert_duration": 300,
        "frozen_threshold": 300,
    },
}


class Config:
    """Header monitor configuration."""

    # Telemetry provider
    TELEMETRY_API_BASE: str = os.getenv(
        "TELEMETRY_API_BASE", "https://api.example.com/api/v1"
    )
    TELEMETRY_API_TOKEN: str | None = os.getenv("TELEMETRY_API_TOKEN")

    # Storage
    MONITOR_DB_PATH: str = os.getenv("MONITOR_DB_PATH", "~/.header-monitor/monitor.db")
    DB_RETRY_ATTEMPTS: int = int(os.getenv("DB_RETRY_ATTEMPTS", "3"))

    # Polling settings
    POLL_INTERVAL: int = int(os.getenv("POLL_INTERVAL_SECONDS", "30"))
    MAX_FETCH_WORKERS: int = int(os.getenv("MAX_FETCH_WORKERS", "8"))
    FETCH_TIMEOUT: float = float(os.getenv("FETCH_TIMEOUT_SECONDS", "10"))

    # Detector defaults, used when a header has no explicit setting
    DEFAULT_ALERT_DURATION: int = int(os.getenv("DEFAULT_ALERT_DURATION", "120"))
    DEFAULT_FROZEN_THRESHOLD: int = int(os.getenv("DEFAULT_FROZEN_THRESHOLD", "120"))

    # Provider states in which the operation is actively producing data
    ACTIVE_TELEMETRY_STATES: list[str] = [
        s.strip().upper()
        for s in os.getenv("ACTIVE_TELEMETRY_STATES", "LOADING").split(",")
        if s.strip()
    ]

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    @classmethod
    def is_telemetry_configured(cls) -> bool:
        """Check if a provider token is configured."""
        return bool(cls.TELEMETRY_API_BASE and cls.TELEMETRY_API_TOKEN)


config = Config()
