"""Flask application factory for the dialysis API."""

import logging
import os

from flask import Flask, jsonify

from ..alert_store import AlertStore
from ..errors import DialysisError
from ..notifications import TeamsNotifier
from ..rules import AlertRuleEngine
from ..sessions import ResourceAllocator, SessionLifecycleManager
from ..store import ClinicStore
from .config import get_config

logger = logging.getLogger(__name__)


def create_app(config=None):
    """Create and configure the Flask application.

    Args:
        config: Optional configuration object or dict

    Returns:
        Configured Flask application
    """
    app = Flask(__name__)

    # Load configuration
    if config is None:
        config = get_config()

    if isinstance(config, dict):
        app.config.from_object(get_config())
        app.config.update(config)
    else:
        app.config.from_object(config)

    # Services shared by all requests
    app.clinic_store = ClinicStore(db_path=app.config.get("CLINIC_DB_PATH"))
    app.alert_store = AlertStore(db_path=app.config.get("ALERT_DB_PATH"))
    app.allocator = ResourceAllocator(app.clinic_store)
    app.lifecycle = SessionLifecycleManager(app.clinic_store, allocator=app.allocator)
    app.rule_engine = AlertRuleEngine.from_store(
        app.clinic_store,
        app.alert_store,
        notifier=TeamsNotifier(
            webhook_url=app.config.get("TEAMS_WEBHOOK_URL", ""),
            dashboard_url=app.config.get("DASHBOARD_BASE_URL") or None,
        ),
    )

    from .routes import api_bp
    app.register_blueprint(api_bp, url_prefix="/api")

    @app.errorhandler(DialysisError)
    def handle_dialysis_error(error):
        logger.info(f"{error.kind}: {error.message}")
        return jsonify(error.to_dict()), error.status_code

    return app


def run_dev_server():
    """Run development server."""
    app = create_app()
    app.run(
        host="0.0.0.0",
        port=int(os.environ.get("PORT", 5000)),
        debug=True,
    )


if __name__ == "__main__":
    run_dev_server()
