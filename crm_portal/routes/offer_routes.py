from __future__ import annotations

import json

from flask import Blueprint, Response, current_app, jsonify, request, stream_with_context

from crm_portal.application.offer_service import OfferService
from crm_portal.application.offer_session_service import OfferSessionService
from crm_portal.auth import current_user_id
from crm_portal.errors import ConflictError, ValidationError
from crm_portal.infrastructure import get_store
from crm_portal.offers.edit_session import EditSessionRegistry, OfferEditSession
from crm_portal.offers.list_view import OfferListViewRegistry
from crm_portal.realtime import ChangeFeed, get_realtime_channel
from crm_portal.ui_strings import confirm_message, success_message


offer_bp = Blueprint("offers", __name__, url_prefix="/api")

SESSIONS_EXTENSION_KEY = "crm_offer_sessions"
LIST_VIEWS_EXTENSION_KEY = "crm_offer_list_views"


def get_session_registry() -> EditSessionRegistry:
    return current_app.extensions[SESSIONS_EXTENSION_KEY]


def get_list_view_registry() -> OfferListViewRegistry:
    return current_app.extensions[LIST_VIEWS_EXTENSION_KEY]


def _sessions() -> OfferSessionService:
    return OfferSessionService(
        get_store(),
        get_session_registry(),
        config=current_app.config,
        list_views=get_list_view_registry(),
    )


def _session_body(session: OfferEditSession, **extra) -> dict:
    body = {"session": session.to_payload()}
    body.update(extra)
    return body


def _truthy(value: object) -> bool:
    return str(value or "").strip().lower() in {"1", "true", "yes", "on"}


@offer_bp.route("/customers/<customer_id>/offers", methods=["GET"])
def offers_list(customer_id: str):
    rows = OfferService(get_store()).list_offers(customer_id)
    return jsonify({"offers": rows, "total": len(rows)})


@offer_bp.route("/offers/<offer_id>", methods=["GET"])
def offers_detail(offer_id: str):
    service = OfferService(get_store())
    offer = service.get_offer(offer_id)
    return jsonify({"offer": offer, "details": service.list_details(offer_id)})


@offer_bp.route("/offers/<offer_id>", methods=["DELETE"])
def offers_delete(offer_id: str):
    row = OfferService(get_store()).soft_delete_offer(offer_id, user_id=current_user_id())
    return jsonify({"offer": row, "message": success_message("offer_deleted")})


@offer_bp.route("/offers/<offer_id>/history", methods=["GET"])
def offers_history(offer_id: str):
    return jsonify({"history": OfferService(get_store()).history(offer_id)})


@offer_bp.route("/customers/<customer_id>/offers/stream", methods=["GET"])
def offers_stream(customer_id: str):
    store = get_store()
    tenant_id = store.tenant_id
    channel = get_realtime_channel()
    views = get_list_view_registry()
    # Loads can run on the publishing request's thread; resolve the store per call.
    view = views.open(
        customer_id,
        lambda key: OfferService(get_store(tenant_id)).list_offers(key),
        channel,
        tenant_id=tenant_id,
        viewer_id=current_user_id(),
    )
    feed = ChangeFeed(channel, "offers", filters={"customer_id": customer_id}, tenant_id=tenant_id)
    heartbeat = max(1, int(current_app.config.get("CHANGE_STREAM_HEARTBEAT_SECONDS", 15)))
    max_events = int(request.args.get("max_events") or 0)

    def _event(name: str, payload: dict) -> str:
        return f"event: {name}\ndata: {json.dumps(payload, ensure_ascii=False, default=str)}\n\n"

    def generate():
        sent = 0
        notices_sent = 0
        try:
            yield ": connected\n\n"
            yield _event("snapshot", {"offers": view.rows()})
            while not max_events or sent < max_events:
                change = feed.get(timeout=heartbeat)
                if change is None:
                    yield ": keep-alive\n\n"
                    continue
                notices = view.notices[notices_sent:]
                notices_sent += len(notices)
                payload = change.to_payload()
                payload.update(offers=view.rows(), notices=notices)
                yield _event(change.event_type.lower(), payload)
                sent += 1
        finally:
            feed.close()
            views.close(view)

    response = Response(stream_with_context(generate()), mimetype="text/event-stream")
    response.call_on_close(feed.close)
    response.call_on_close(lambda: views.close(view))
    response.headers["Cache-Control"] = "no-cache"
    response.headers["X-Accel-Buffering"] = "no"
    return response


@offer_bp.route("/offer-sessions", methods=["POST"])
def sessions_open():
    payload = request.get_json(silent=True) or {}
    customer_id = str(payload.get("customer_id") or "").strip()
    if not customer_id:
        raise ValidationError(code="customer_not_found", http_status=400)
    session = _sessions().open(
        customer_id,
        offer_id=str(payload.get("offer_id") or "").strip() or None,
        user_id=current_user_id(),
        default_source=payload.get("default_source"),
    )
    return jsonify(_session_body(session)), 201


@offer_bp.route("/offer-sessions/<session_id>", methods=["GET"])
def sessions_get(session_id: str):
    return jsonify(_session_body(_sessions().get(session_id)))


@offer_bp.route("/offer-sessions/<session_id>", methods=["DELETE"])
def sessions_dismiss(session_id: str):
    _sessions().dismiss(session_id)
    return jsonify({"ok": True})


@offer_bp.route("/offer-sessions/<session_id>/fields", methods=["PATCH"])
def sessions_fields(session_id: str):
    payload = request.get_json(silent=True) or {}
    values = payload.get("values") if isinstance(payload.get("values"), dict) else payload
    session = _sessions().update_fields(session_id, values)
    return jsonify(_session_body(session))


@offer_bp.route("/offer-sessions/<session_id>/selection", methods=["POST"])
def sessions_selection(session_id: str):
    payload = request.get_json(silent=True) or {}
    result = _sessions().selection(session_id, str(payload.get("action") or "").strip(), payload)
    body = _session_body(result["session"], added=result["added"])
    if payload.get("action") == "confirm" and not result["added"]:
        body["notice"] = "nothing_new_selected"
    return jsonify(body)


@offer_bp.route("/offer-sessions/<session_id>/details", methods=["POST"])
def sessions_details_add(session_id: str):
    payload = request.get_json(silent=True) or {}
    items = payload.get("items") if isinstance(payload.get("items"), list) else [payload]
    result = _sessions().add_details(session_id, [item for item in items if isinstance(item, dict)])
    status = 201 if result["added"] else 200
    return jsonify(_session_body(result["session"], added=result["added"])), status


@offer_bp.route("/offer-sessions/<session_id>/details/<detail_id>", methods=["PATCH"])
def sessions_details_update(session_id: str, detail_id: str):
    payload = request.get_json(silent=True) or {}
    session = _sessions().update_detail(session_id, detail_id, payload)
    return jsonify(_session_body(session))


@offer_bp.route("/offer-sessions/<session_id>/details/<detail_id>", methods=["DELETE"])
def sessions_details_remove(session_id: str, detail_id: str):
    confirmed = _truthy(request.args.get("confirm"))
    try:
        result = _sessions().remove_detail(session_id, detail_id, confirmed=confirmed)
    except ConflictError as exc:
        if exc.code != "delete_confirmation_required":
            raise
        exc.payload["confirm_message"] = confirm_message("delete_detail")
        raise
    return jsonify(_session_body(result["session"], result=result["result"]))


@offer_bp.route("/offer-sessions/<session_id>/save", methods=["POST"])
def sessions_save(session_id: str):
    service = _sessions()
    outcome = service.save(session_id, user_id=current_user_id())
    body = {"outcome": outcome.to_dict()}
    if outcome.ok:
        body["message"] = success_message("offer_saved")
    live = service.registry.find(session_id)
    if live is not None:
        body["session"] = live.to_payload()
    status = 200 if outcome.ok else (400 if outcome.error_code == "validation_error" else 502)
    return jsonify(body), status
