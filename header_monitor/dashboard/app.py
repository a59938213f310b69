"""Flask application factory for the Header Monitor API."""

import os

from flask import Flask

from .config import get_config


def create_app(config=None, monitor=None):
    """Create and configure the Flask application.

    Args:
        config: Optional configuration object or dict
        monitor: Optional HeaderMonitor; one is built from config otherwise

    Returns:
        Configured Flask application
    """
    app = Flask(__name__)

    # Load configuration
    if config is None:
        config = get_config()

    if isinstance(config, dict):
        app.config.update(config)
    else:
        app.config.from_object(config)

    # Initialize monitor
    if monitor is None:
        from ..monitor import HeaderMonitor
        monitor = HeaderMonitor(db_path=app.config.get("MONITOR_DB_PATH"))
    app.monitor = monitor

    # Register blueprints
    from .routes.api import api_bp

    app.register_blueprint(api_bp, url_prefix="/api")

    return app


def run_dev_server():
    """Run development server."""
    app = create_app()
    app.run(
        host="0.0.0.0",
        port=int(os.environ.get("PORT", 5000)),
        debug=app.config["DEBUG"],
    )


if __name__ == "__main__":
    run_dev_server()
