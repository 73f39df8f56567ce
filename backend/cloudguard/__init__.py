# cloudguard/__init__.py
"""
App factory for the CloudGuard scheduled scan service.

    - CORS origins read from CORS_ORIGINS env var (https origins => production)
    - Database URI from SQLALCHEMY_DATABASE_URI env var
    - SECRET_KEY required in production (no default fallback)
    - Scheduler and alert tunables from SCHEDULER_* / ALERT_* env vars
    - Gunicorn-safe scheduler guard (only run in one worker)
    - Flask-Migrate manages schema; db.create_all() is left to tests

A ``config`` mapping overrides anything read from the environment.
"""

from __future__ import annotations

import logging
import os
import re
import traceback
from typing import Any, Mapping, Optional

from flask import Flask, jsonify
from flask_cors import CORS

from .extensions import init_extensions
from . import models  # noqa: F401  (register tables with Flask-Migrate)
from .schedules import schedules_bp
from .settings import settings_bp
from .scheduler import start_scheduler

error_logger = logging.getLogger("cloudguard.errors")

DEFAULT_FROM_EMAIL = "security@cloudguard.dev"


def _is_production() -> bool:
    """Detect production by checking CORS_ORIGINS for https."""
    return os.getenv("CORS_ORIGINS", "").startswith("https://")


def _env_bool(name: str, default: str = "true") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def _is_gunicorn_master() -> bool:
    """
    Guard for the background scheduler under Gunicorn.
    With multiple workers it must only run once: outside Gunicorn it always
    runs, under Gunicorn only where SCHEDULER_ENABLED=true.
    """
    server = os.getenv("SERVER_SOFTWARE", "")
    if "gunicorn" not in server.lower():
        return True
    return _env_bool("SCHEDULER_ENABLED")


def _configure_logging(is_prod: bool) -> None:
    if is_prod:
        logging.basicConfig(
            level=logging.INFO,
            format="%(asctime)s %(levelname)-7s [%(name)s] %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    else:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s %(levelname)-7s [%(name)s] %(message)s",
            datefmt="%H:%M:%S",
        )

    logging.getLogger("werkzeug").setLevel(logging.INFO)
    # Quieten noisy libraries
    logging.getLogger("apscheduler").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def _register_error_handlers(app: Flask) -> None:
    # Clean JSON for every error, tracebacks only in the server log.

    @app.errorhandler(400)
    def bad_request(e):
        return jsonify({
            "error": "Bad request",
            "message": str(e.description) if hasattr(e, "description") else "The request was malformed or invalid.",
        }), 400

    @app.errorhandler(401)
    def unauthorized(e):
        return jsonify({
            "error": "Unauthorized",
            "message": "Authentication is required. Please log in.",
        }), 401

    @app.errorhandler(403)
    def forbidden(e):
        return jsonify({
            "error": "Forbidden",
            "message": "You do not have permission to access this resource.",
        }), 403

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({
            "error": "Not found",
            "message": "The requested resource was not found.",
        }), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify({
            "error": "Method not allowed",
            "message": "This HTTP method is not allowed for this endpoint.",
        }), 405

    @app.errorhandler(500)
    def internal_error(e):
        error_logger.error("500 Internal Server Error:\n%s", traceback.format_exc())
        return jsonify({
            "error": "Internal server error",
            "message": "An unexpected error occurred. Please try again later.",
        }), 500

    @app.errorhandler(Exception)
    def catch_all(e):
        """Any unhandled exception. HTTP errors keep their own status code."""
        code = getattr(e, "code", None)
        if isinstance(code, int) and 400 <= code < 500:
            return jsonify({"error": getattr(e, "name", "Error"), "message": str(getattr(e, "description", e))}), code
        error_logger.error("Unhandled exception: %s\n%s", str(e), traceback.format_exc())
        return jsonify({
            "error": "Internal server error",
            "message": "An unexpected error occurred. Please try again later.",
        }), 500


def create_app(config: Optional[Mapping[str, Any]] = None) -> Flask:
    app = Flask(__name__)
    overrides = dict(config or {})

    is_prod = _is_production()
    _configure_logging(is_prod)
    app.logger.setLevel(logging.INFO if is_prod else logging.DEBUG)

    # ── CORS ────────────────────────────────────────────────────────
    cors_env = os.getenv("CORS_ORIGINS")
    if cors_env:
        cors_origins = [o.strip() for o in cors_env.split(",") if o.strip()]
    else:
        cors_origins = [
            "http://localhost:3000",
            "http://127.0.0.1:3000",
            re.compile(r"http://192\.168\.\d+\.\d+:3000"),
        ]

    CORS(app, resources={
        r"/*": {
            "origins": cors_origins,
            "supports_credentials": True,
            "allow_headers": ["Content-Type", "Authorization"],
            "methods": ["GET", "POST", "DELETE", "OPTIONS"],
        }
    })

    # ── Secret Key ───────────────────────────────────────────────────
    secret_key = overrides.get("SECRET_KEY") or os.getenv("SECRET_KEY")
    if is_prod and not secret_key:
        raise RuntimeError(
            "SECRET_KEY environment variable is not set. "
            "Generate one with: python -c \"import secrets; print(secrets.token_hex(32))\""
        )
    app.config["SECRET_KEY"] = secret_key or "dev-secret-key-change-me"

    # ── Database ─────────────────────────────────────────────────────
    database_uri = overrides.get("SQLALCHEMY_DATABASE_URI") or os.getenv("SQLALCHEMY_DATABASE_URI")
    if not database_uri:
        raise RuntimeError(
            "SQLALCHEMY_DATABASE_URI environment variable is not set. "
            "Set it to a database connection string, e.g.: "
            "postgresql://cloudguard:PASSWORD@db:5432/cloudguard"
        )
    app.config["SQLALCHEMY_DATABASE_URI"] = database_uri
    app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False
    if not database_uri.startswith("sqlite"):
        # Bound every store query; a dead connection must not hang a tick
        app.config["SQLALCHEMY_ENGINE_OPTIONS"] = {
            "pool_pre_ping": True,
            "pool_timeout": 10,
        }

    # ── Scheduler & alerts ───────────────────────────────────────────
    app.config["SCHEDULER_ENABLED"] = _env_bool("SCHEDULER_ENABLED")
    app.config["SCHEDULER_TICK_SECONDS"] = int(os.getenv("SCHEDULER_TICK_SECONDS", "60"))
    app.config["SCHEDULER_MAX_WORKERS"] = int(os.getenv("SCHEDULER_MAX_WORKERS", "1"))
    app.config["ALERT_HTTP_TIMEOUT"] = float(os.getenv("ALERT_HTTP_TIMEOUT", "10"))
    app.config["ALERT_FINDING_LIMIT"] = int(os.getenv("ALERT_FINDING_LIMIT", "10"))
    app.config["ALERT_SEND_DELAY"] = float(os.getenv("ALERT_SEND_DELAY", "0.2"))
    app.config["SENDGRID_API_KEY"] = os.getenv("SENDGRID_API_KEY")
    app.config["ALERT_FROM_EMAIL"] = os.getenv("ALERT_FROM_EMAIL", DEFAULT_FROM_EMAIL)
    app.config["AUTH_TOKEN_MAX_AGE"] = int(os.getenv("AUTH_TOKEN_MAX_AGE", str(60 * 60 * 8)))

    app.config.update(overrides)

    # ── Extensions ───────────────────────────────────────────────────
    init_extensions(app)

    # ── Blueprints ───────────────────────────────────────────────────
    app.register_blueprint(schedules_bp)
    app.register_blueprint(settings_bp)

    _register_error_handlers(app)

    # Health check
    @app.get("/health")
    def health():
        handle = app.extensions.get("scan_scheduler")
        return jsonify(
            status="up and running",
            scheduler="running" if handle is not None and handle.running else "stopped",
        ), 200

    # ── Background Scheduler ─────────────────────────────────────────
    # Gunicorn runs multiple workers; set SCHEDULER_ENABLED=true on exactly
    # one of them, or use gunicorn --preload so create_app() runs once.
    if app.config["SCHEDULER_ENABLED"] and _is_gunicorn_master():
        start_scheduler(app)
    else:
        logging.getLogger(__name__).info(
            "Scan scheduler disabled for this process (SCHEDULER_ENABLED != true)"
        )

    return app
