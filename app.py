import atexit
import logging
import os

from flask import Flask, jsonify
from flask_cors import CORS

from config import Config
from errors import ConfigurationError, LendingServiceError, LoanNotFoundError
from extensions import db, migrate, jwt
from services import LendingServices
from utils.http import BadRequest
from utils.logging_config import setup_logging

# Blueprints
from loans.routes import loans_bp, admin_bp
from events.routes import events_bp
from notifications.routes import notifications_bp

# Models (registered with SQLAlchemy metadata for migrations)
from notifications import models as notification_models  # noqa: F401
from events import models as event_models  # noqa: F401

logger = logging.getLogger(__name__)


def create_app(config_object=Config, ledger=None, dispatcher=None, directory=None):
    app = Flask(__name__)
    app.config.from_object(config_object)

    setup_logging(app.config.get("LOG_LEVEL", "INFO"), app.config.get("LOG_FORMAT", "standard"))

    CORS(app)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)
    jwt.init_app(app)

    services = LendingServices(ledger=ledger, dispatcher=dispatcher, directory=directory)
    services.init_app(app)

    # Register Blueprints
    app.register_blueprint(loans_bp, url_prefix="/api/loans")
    app.register_blueprint(admin_bp, url_prefix="/api/admin")
    app.register_blueprint(events_bp, url_prefix="/api/events")
    app.register_blueprint(notifications_bp, url_prefix="/api/notifications")

    @app.route("/health")
    def health():
        return jsonify({"status": "ok"}), 200

    # Error handlers
    @app.errorhandler(BadRequest)
    def bad_request(error):
        return jsonify({"success": False, "error": str(error)}), 400

    @app.errorhandler(LoanNotFoundError)
    def loan_not_found(error):
        return jsonify({"success": False, "error": str(error)}), 404

    @app.errorhandler(ConfigurationError)
    def misconfigured(error):
        logger.error("Configuration error: %s", error)
        return jsonify({"success": False, "error": str(error)}), 503

    @app.errorhandler(LendingServiceError)
    def service_error(error):
        logger.error("Request failed: %s", error)
        return jsonify({"success": False, "error": str(error)}), 500

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({"success": False, "error": "Route not found"}), 404

    @app.errorhandler(500)
    def internal_error(error):
        return jsonify({"success": False, "error": "Internal server error"}), 500

    from jobs import start_scheduler

    scheduler = start_scheduler(app)
    if scheduler is not None:
        atexit.register(lambda: scheduler.shutdown(wait=False))
    atexit.register(services.shutdown)

    return app


if __name__ == '__main__':
    app = create_app()
    app.run(host="0.0.0.0", port=int(os.environ.get("PORT", 10000)), debug=True)
