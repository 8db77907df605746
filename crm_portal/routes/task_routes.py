from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from crm_portal.application.task_service import TaskService
from crm_portal.auth import current_user_id
from crm_portal.errors import AuthRequiredError
from crm_portal.infrastructure import get_store


task_bp = Blueprint("tasks", __name__, url_prefix="/api")


def _require_user() -> str:
    user_id = current_user_id()
    if not user_id and not current_app.config.get("AUTH_ENABLED", True):
        user_id = str(request.args.get("user_id") or "").strip() or None
    if not user_id:
        raise AuthRequiredError()
    return user_id


@task_bp.route("/tasks", methods=["GET"])
def tasks_list():
    include_completed = str(request.args.get("include_completed") or "").lower() in {"1", "true", "yes"}
    tasks = TaskService(get_store()).list_for_user(_require_user(), include_completed=include_completed)
    return jsonify({"tasks": tasks})


@task_bp.route("/tasks/<task_id>/complete", methods=["POST"])
def tasks_complete(task_id: str):
    task = TaskService(get_store()).complete_task(task_id, user_id=current_user_id())
    return jsonify({"task": task})


@task_bp.route("/notifications", methods=["GET"])
def notifications_list():
    unread_only = str(request.args.get("unread") or "").lower() in {"1", "true", "yes"}
    rows = TaskService(get_store()).list_notifications(_require_user(), unread_only=unread_only)
    return jsonify({"notifications": rows})


@task_bp.route("/notifications/<notification_id>/read", methods=["POST"])
def notifications_read(notification_id: str):
    row = TaskService(get_store()).mark_notification_read(notification_id, user_id=_require_user())
    return jsonify({"notification": row})
