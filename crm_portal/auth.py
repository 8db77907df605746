from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request, session

from crm_portal.application.auth_service import AuthService
from crm_portal.db import get_db
from crm_portal.domain.contracts import AuthLoginInput
from crm_portal.errors import AuthRequiredError
from crm_portal.access import normalize_role


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")

_PUBLIC_PATHS = {"/health", "/api/auth/login"}


def register_auth(app) -> None:
    app.register_blueprint(auth_bp)

    @app.before_request
    def _require_login():
        if not app.config.get("AUTH_ENABLED", True):
            return None
        if app.config.get("TESTING"):
            return None

        path = request.path or "/"
        if path in _PUBLIC_PATHS or not path.startswith("/api/"):
            return None
        if session.get("user_email"):
            return None
        raise AuthRequiredError()


def current_user_id() -> str | None:
    return str(session.get("user_id") or "").strip() or None


@auth_bp.route("/login", methods=["POST"])
def login():
    payload = request.get_json(silent=True) or {}
    user = AuthService().login(
        get_db(),
        AuthLoginInput(email=str(payload.get("email") or ""), password=str(payload.get("password") or "")),
        current_app.config.get("APP_USERS"),
    )
    if user is None:
        raise AuthRequiredError(code="invalid_credentials")

    session.clear()
    session["user_id"] = user.id
    session["user_email"] = user.email
    session["display_name"] = user.display_name
    session["tenant_id"] = user.tenant_id
    session["user_role"] = user.role
    return jsonify({"user": _session_user()})


@auth_bp.route("/logout", methods=["POST"])
def logout():
    session.clear()
    return jsonify({"ok": True})


@auth_bp.route("/me", methods=["GET"])
def me():
    if not session.get("user_email"):
        raise AuthRequiredError()
    return jsonify({"user": _session_user()})


def _session_user() -> dict:
    return {
        "id": session.get("user_id"),
        "email": session.get("user_email"),
        "display_name": session.get("display_name"),
        "tenant_id": session.get("tenant_id"),
        "role": normalize_role(session.get("user_role"), default="user"),
    }
