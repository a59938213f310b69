"""API server configuration."""

import os


class Config:
    """Base configuration."""

    # Flask
    DEBUG = os.environ.get("FLASK_DEBUG", "false").lower() == "true"

    # API
    DASHBOARD_API_KEY = os.environ.get("DASHBOARD_API_KEY", "")
    DEFAULT_SNOOZE_SECONDS = int(os.environ.get("DEFAULT_SNOOZE_SECONDS", "3600"))

    # Monitor database
    MONITOR_DB_PATH = os.environ.get(
        "MONITOR_DB_PATH",
        os.path.expanduser("~/.header-monitor/monitor.db")
    )


class DevelopmentConfig(Config):
    """Development configuration."""
    DEBUG = True


class ProductionConfig(Config):
    """Production configuration."""
    DEBUG = False


def get_config():
    """Get configuration based on environment."""
    env = os.environ.get("FLASK_ENV", "development")
    if env == "production":
        return ProductionConfig
    return DevelopmentConfig
