import os
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

import json_log_formatter
from flask import Flask, jsonify

from .extensions import db, migrate, login_manager, mail, gateway, sms
from .config import Config
from .models.user import User

# Blueprints
from .blueprints.errors import errors_bp
from .blueprints.subscriptions import subscriptions_bp
from .blueprints.orders import orders_bp
from .blueprints.farm import farm_bp
from .blueprints.payments import payments_bp
from .blueprints.notifications import notifications_bp
from .blueprints.webhooks import webhooks_bp


# Optional: Sentry
def _init_sentry(app):
    dsn = app.config.get("SENTRY_DSN")
    if not dsn:
        return
    try:
        import sentry_sdk
        from sentry_sdk.integrations.flask import FlaskIntegration
        from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

        sentry_sdk.init(
            dsn=dsn,
            integrations=[FlaskIntegration(), SqlalchemyIntegration()],
            traces_sample_rate=app.config.get("SENTRY_TRACES_SAMPLE_RATE", 0.0),
            environment=os.getenv("ENV", "development"),
            release=app.config.get("APP_VERSION"),
            send_default_pii=False,
        )
        app.logger.info("Sentry initialized.")
    except Exception as e:
        app.logger.warning(f"Sentry init failed: {e}")


def _init_logging(app):
    level_name = str(app.config.get("LOG_LEVEL", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)

    log_dir = Path(app.config.get("LOG_DIR", "logs"))
    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / app.config.get("LOG_FILENAME", "milkpick.log")

    if app.config.get("LOG_JSON", False):
        formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("[%(asctime)s] %(levelname)s in %(module)s: %(message)s")

    # Rotating file handler (5MB x 5)
    file_handler = RotatingFileHandler(
        log_path, maxBytes=5_000_000, backupCount=5, encoding="utf-8"
    )
    file_handler.setLevel(level)
    file_handler.setFormatter(formatter)

    stream_handler = logging.StreamHandler()
    stream_handler.setLevel(level)
    stream_handler.setFormatter(formatter)

    # app.logger is the "milkpick" logger; milkpick.services.* propagate into it.
    # Drop handlers left by an earlier create_app() in the same process.
    app.logger.setLevel(level)
    for handler in list(app.logger.handlers):
        if getattr(handler, "_milkpick", False):
            app.logger.removeHandler(handler)
            handler.close()
    for handler in (file_handler, stream_handler):
        handler._milkpick = True
        app.logger.addHandler(handler)

    app.logger.info("Logging initialized.")


def create_app(config_object=None):
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config_object or Config)

    app.config.setdefault("SECRET_KEY", "change-me")
    app.config.setdefault("SQLALCHEMY_TRACK_MODIFICATIONS", False)
    app.config.setdefault("ENABLE_PAYMENTS", True)
    app.config.setdefault("ENABLE_NOTIFICATIONS", True)
    app.config.setdefault("PICKUP_GRACE_PERIOD_HOURS", "24")
    app.config.setdefault("CATCH_UP_LIMIT", 10)

    # Extensions
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    mail.init_app(app)
    gateway.init_app(app)
    sms.init_app(app)

    @login_manager.request_loader
    def load_user_from_request(request):
        header = request.headers.get("Authorization", "")
        scheme, _, token = header.partition(" ")
        if scheme.lower() != "bearer" or not token.strip():
            return None
        return User.query.filter_by(api_token=token.strip()).first()

    # Logging must come before blueprints so errors during register are captured
    _init_logging(app)
    _init_sentry(app)

    # Blueprints
    app.register_blueprint(errors_bp)  # error handlers
    app.register_blueprint(subscriptions_bp, url_prefix="/api/subscriptions")
    app.register_blueprint(orders_bp, url_prefix="/api/orders")
    app.register_blueprint(farm_bp, url_prefix="/api/farm")
    app.register_blueprint(payments_bp, url_prefix="/api/payments")
    app.register_blueprint(notifications_bp, url_prefix="/api/notifications")
    app.register_blueprint(webhooks_bp)

    from .cli import jobs_cli
    app.cli.add_command(jobs_cli)

    @app.route("/health")
    def health():
        return jsonify({"status": "ok", "version": app.config.get("APP_VERSION")})

    return app
