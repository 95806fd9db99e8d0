"""
orbit/__init__.py - Flask application factory.

Pattern: create_app(config_name) creates and returns a configured Flask app.
         Nothing is initialised at import time - this enables:
           - Multiple isolated test app instances
           - `flask --app backend.orbit ...` CLI commands without a server

Responsibilities:
  1. Load configuration from config_by_name[config_name]
  2. Configure app.logger from LOG_LEVEL
  3. Initialise extensions (SQLAlchemy, Marshmallow) via init_app()
  4. Register route blueprints under /api/v1
  5. Register global error handlers (AppError → JSON, storage → 503,
     Exception → 500)
  6. Register the reconcile-member-counts CLI command

Note on model imports:
  All model classes are imported inside create_app() so that SQLAlchemy's
  metadata is populated before Alembic or db.create_all() inspects it.
"""

from __future__ import annotations

import click
from flask import Flask, jsonify, request
from marshmallow import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import HTTPException

from backend.config import config_by_name, validate_production_config


# ── Application factory ────────────────────────────────────────────────────

def create_app(config_name: str = "development") -> Flask:
    """
    Creates and returns a configured Flask application instance.

    Args:
        config_name: One of "development", "testing", "production".
                     Resolved via config_by_name in config.py.
                     Defaults to "development".
    """
    app = Flask(__name__)

    # ── Configuration ──────────────────────────────────────────────────────
    config_class = config_by_name.get(config_name, config_by_name["development"])
    app.config.from_object(config_class)

    if config_name == "production":
        validate_production_config(app)  # raises ValueError if misconfigured

    # ── Logging ────────────────────────────────────────────────────────────
    # Service modules log through logging.getLogger(__name__), which nests
    # under app.logger ("backend.orbit") and inherits this level.
    app.logger.setLevel(app.config.get("LOG_LEVEL", "INFO"))

    # ── Extensions ─────────────────────────────────────────────────────────
    from backend.orbit.extensions import db, ma
    db.init_app(app)
    ma.init_app(app)

    # ── Model registration ─────────────────────────────────────────────────
    with app.app_context():
        from backend.orbit.models import (  # noqa: F401
            group,
            invitation,
            membership,
            relationship,
            user,
        )

    _register_blueprints(app)
    _register_error_handlers(app)
    _register_cors(app)
    _register_cli(app)

    return app


def _register_blueprints(app: Flask) -> None:
    """
    Registers all route blueprints under the /api/v1 prefix.

    invitations_bp is registered at /api/v1 because it owns both
    /groups/<id>/invitations and /invitations/<id>.
    """
    from backend.orbit.routes.groups import groups_bp
    from backend.orbit.routes.invitations import invitations_bp

    app.register_blueprint(groups_bp,      url_prefix="/api/v1/groups")
    app.register_blueprint(invitations_bp, url_prefix="/api/v1")


def _register_error_handlers(app: Flask) -> None:
    """
    Registers global error handlers.

    Handlers:
      AppError        → structured JSON error envelope with its HTTP status
      ValidationError → first marshmallow error as MISSING_FIELD /
                        INVALID_FIELD (400)
      HTTPException   → werkzeug errors (404 route, 405 method) as JSON
      SQLAlchemyError → STORAGE_ERROR (503); transaction rolled back
      Exception       → INTERNAL_ERROR (500); traceback logged

    Stack traces never leave the server.
    """
    from backend.orbit.errors import AppError, ErrorCode
    from backend.orbit.extensions import db

    @app.errorhandler(AppError)
    def handle_app_error(error: AppError):
        # Anything the failed request flushed must not leak into the next one.
        db.session.rollback()
        if error.http_status >= 500:
            app.logger.error("%r", error)
        return jsonify(error.to_dict()), error.http_status

    @app.errorhandler(ValidationError)
    def handle_validation_error(error: ValidationError):
        """
        Marshmallow reports every failing field; the API returns the FIRST
        one only.
        """
        messages = error.messages  # e.g. {"name": ["Missing data for required field."]}

        field = None
        raw_message = "Invalid input."

        if isinstance(messages, dict):
            for field_name, field_errors in messages.items():
                field = field_name if field_name != "_schema" else None
                if isinstance(field_errors, list):
                    raw_message = field_errors[0] if field_errors else "Invalid value."
                elif isinstance(field_errors, dict):
                    # Nested (list item) errors: {0: ["Not a valid integer."]}
                    first = next(iter(field_errors.values()), ["Invalid value."])
                    raw_message = first[0] if isinstance(first, list) and first else str(first)
                else:
                    raw_message = str(field_errors)
                break
        elif isinstance(messages, list) and messages:
            raw_message = messages[0]

        if str(raw_message).startswith("Missing data for required field"):
            code = ErrorCode.MISSING_FIELD
        else:
            code = ErrorCode.INVALID_FIELD

        response_body = {"error": {"code": code, "message": str(raw_message)}}
        if field is not None:
            response_body["error"]["field"] = field
        return jsonify(response_body), 400

    @app.errorhandler(HTTPException)
    def handle_http_exception(error: HTTPException):
        return jsonify({
            "error": {
                "code": ErrorCode.ROUTE_NOT_FOUND if error.code == 404 else ErrorCode.INVALID_REQUEST,
                "message": error.description,
            }
        }), error.code

    @app.errorhandler(SQLAlchemyError)
    def handle_storage_error(error: SQLAlchemyError):
        db.session.rollback()
        app.logger.error("Storage failure on %s %s", request.method, request.path, exc_info=error)
        return jsonify({
            "error": {
                "code": ErrorCode.STORAGE_ERROR,
                "message": "The database is temporarily unavailable. Please retry.",
            }
        }), 503

    @app.errorhandler(Exception)
    def handle_unexpected_error(error: Exception):
        app.logger.error("Unhandled exception: %s", error, exc_info=error)
        return jsonify({
            "error": {
                "code": ErrorCode.INTERNAL_ERROR,
                "message": "An unexpected error occurred. Please try again later.",
            }
        }), 500


def _register_cors(app: Flask) -> None:
    """
    Adds CORS headers for browser-based local development when DEBUG or
    TESTING is set.
    """

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        if app.config.get("DEBUG") or app.config.get("TESTING"):
            response.headers["Access-Control-Allow-Origin"] = origin if origin else "*"
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Methods"] = "GET, POST, PUT, PATCH, DELETE, OPTIONS"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"
        return response


def _register_cli(app: Flask) -> None:
    """
    Operator commands, run as `flask --app backend.orbit <command>`.
    """
    from backend.orbit.extensions import db
    from backend.orbit.services.reconcile_service import reconcile_member_counts

    @app.cli.command("reconcile-member-counts")
    @click.option("--dry-run", is_flag=True, help="Report drift without writing.")
    def reconcile_member_counts_command(dry_run: bool) -> None:
        """Recompute groups.member_count from group_members."""
        corrected = reconcile_member_counts(db.session)
        if dry_run:
            db.session.rollback()
        else:
            db.session.commit()

        for row in corrected:
            click.echo(f"group {row['group_id']}: {row['old_count']} -> {row['new_count']}")
        verb = "would be corrected" if dry_run else "corrected"
        click.echo(f"{len(corrected)} group(s) {verb}.")
        app.logger.info("reconcile-member-counts: %d group(s) %s", len(corrected), verb)
