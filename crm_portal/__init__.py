import os

from flask import Flask, Response, jsonify, request
from werkzeug.exceptions import HTTPException

from crm_portal.config import Config
from crm_portal.core.event_bus import init_event_bus
from crm_portal.db import DRIVER_ERRORS, close_db, get_db, init_db
from crm_portal.db_migrations import register_db_cli
from crm_portal.observability import (
    configure_json_logging,
    ensure_request_id,
    mark_request_start,
    metrics_snapshot,
    observe_response,
    prometheus_metrics_text,
)
from crm_portal.realtime import init_realtime
from crm_portal.security import apply_security_headers, enforce_rate_limit


def create_app(config_class=Config):
    app = Flask(__name__)
    app.config.from_object(config_class)
    configure_json_logging(app)

    _ensure_database_dir(app)
    _register_runtime(app)
    _register_error_handlers(app)
    _register_security(app)
    _register_auth(app)
    _register_tenant(app)
    _register_blueprints(app)
    _register_health(app)
    register_db_cli(app)
    _maybe_init_schema(app)

    app.teardown_appcontext(close_db)
    return app


def _ensure_database_dir(app: Flask) -> None:
    database_dir = app.config.get("DATABASE_DIR")
    if database_dir:
        os.makedirs(database_dir, exist_ok=True)


def _maybe_init_schema(app: Flask) -> None:
    auto_init = bool(app.config.get("DB_AUTO_INIT", False))
    if app.testing:
        auto_init = True
    if not auto_init:
        return

    flask_env = (os.environ.get("FLASK_ENV", "development") or "development").strip().lower()
    if not app.testing and flask_env != "development":
        app.logger.warning("DB_AUTO_INIT ignored outside development.")
        return

    from crm_portal.application.auth_service import AuthService

    with app.app_context():
        init_db()
        AuthService().seed_users(get_db(), app.config.get("APP_USERS"))


def _register_runtime(app: Flask) -> None:
    from crm_portal.application.customer_service import register_event_handlers as register_contact_handlers
    from crm_portal.offers.edit_session import EditSessionRegistry, watch_offer_changes
    from crm_portal.offers.followup_tasks import FollowupDispatcher, register_event_handlers
    from crm_portal.offers.list_view import OfferListViewRegistry
    from crm_portal.routes.offer_routes import LIST_VIEWS_EXTENSION_KEY, SESSIONS_EXTENSION_KEY

    channel = init_realtime(app)
    bus = init_event_bus(app)

    registry = EditSessionRegistry(ttl_seconds=app.config.get("EDIT_SESSION_TTL_SECONDS", 1800))
    app.extensions[SESSIONS_EXTENSION_KEY] = registry
    watch_offer_changes(registry, channel)
    app.extensions[LIST_VIEWS_EXTENSION_KEY] = OfferListViewRegistry()

    dispatcher = FollowupDispatcher(app, run_async=bool(app.config.get("FOLLOWUP_TASKS_ASYNC", True)))
    app.extensions["crm_followups"] = dispatcher
    register_event_handlers(bus, dispatcher)
    register_contact_handlers(bus)


def _register_blueprints(app: Flask) -> None:
    from crm_portal.routes.catalog_routes import catalog_bp
    from crm_portal.routes.customer_routes import customer_bp
    from crm_portal.routes.offer_routes import offer_bp
    from crm_portal.routes.task_routes import task_bp

    app.register_blueprint(customer_bp)
    app.register_blueprint(offer_bp)
    app.register_blueprint(catalog_bp)
    app.register_blueprint(task_bp)


def _register_auth(app: Flask) -> None:
    from crm_portal.auth import register_auth

    register_auth(app)


def _register_error_handlers(app: Flask) -> None:
    from crm_portal.errors import AppError, UnexpectedError

    @app.before_request
    def _ensure_request_id() -> None:
        ensure_request_id()
        mark_request_start()

    @app.after_request
    def _append_request_id(response):
        response.headers["X-Request-Id"] = ensure_request_id()
        response = observe_response(response)
        return apply_security_headers(response)

    def _log_error(error: AppError, request_id: str) -> None:
        log_method = app.logger.error if error.critical else app.logger.warning
        log_method(
            "application_error",
            extra={
                "request_id": request_id,
                "error_code": error.code,
                "http_status": error.http_status,
                "message_key": error.message_key,
                "details": error.details,
                "request_path": request.path,
                "http_method": request.method,
            },
            exc_info=error.critical,
        )

    @app.errorhandler(AppError)
    def _handle_app_error(exc: AppError):
        request_id = ensure_request_id()
        _log_error(exc, request_id)
        return jsonify(exc.to_response_payload(request_id)), exc.http_status

    @app.errorhandler(HTTPException)
    def _handle_http_error(exc: HTTPException):
        request_id = ensure_request_id()
        payload = {
            "error": (exc.name or "http_error").strip().lower().replace(" ", "_"),
            "message": exc.description,
            "request_id": request_id,
        }
        return jsonify(payload), exc.code or 500

    @app.errorhandler(Exception)
    def _handle_unexpected(exc: Exception):
        request_id = ensure_request_id()
        mapped = UnexpectedError(details=str(exc))
        app.logger.exception(
            "unexpected_exception",
            extra={
                "request_id": request_id,
                "error_code": mapped.code,
                "request_path": request.path,
                "http_method": request.method,
            },
        )
        return jsonify(mapped.to_response_payload(request_id)), mapped.http_status


def _register_security(app: Flask) -> None:
    @app.before_request
    def _rate_limit_guard():
        return enforce_rate_limit()


def _register_tenant(app: Flask) -> None:
    from crm_portal.access import resolve_request_tenant

    @app.before_request
    def _load_tenant() -> None:
        resolve_request_tenant()


def _register_health(app: Flask) -> None:
    @app.route("/health")
    def health():
        db_path = app.config.get("DB_PATH") or "unknown"
        backend = "postgres" if str(db_path).startswith("postgres") else "sqlite"
        payload = {
            "status": "ok",
            "db": backend,
            "metrics": metrics_snapshot(),
        }
        try:
            get_db().execute("SELECT 1").fetchone()
        except DRIVER_ERRORS:
            app.logger.warning("health_db_unreachable")
            payload["status"] = "degraded"
        return payload, 200

    @app.route("/metrics")
    def metrics():
        return Response(prometheus_metrics_text(), mimetype="text/plain; version=0.0.4")
