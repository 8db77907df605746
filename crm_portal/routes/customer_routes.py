from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from crm_portal.application.customer_service import ContactService, CustomerService
from crm_portal.domain.contracts import ContactInput, CustomerInput
from crm_portal.infrastructure import get_store
from crm_portal.auth import current_user_id
from crm_portal.ui_strings import success_message


customer_bp = Blueprint("customers", __name__, url_prefix="/api")


def _truthy(value: str | None) -> bool:
    return str(value or "").strip().lower() in {"1", "true", "yes", "on"}


def _customers() -> CustomerService:
    return CustomerService(get_store(), duplicate_threshold=current_app.config.get("DUPLICATE_MATCH_THRESHOLD", 65))


@customer_bp.route("/customers", methods=["GET"])
def customers_list():
    rows = CustomerService(get_store()).list_customers(
        search=request.args.get("q"),
        include_inactive=_truthy(request.args.get("include_inactive")),
    )
    return jsonify({"customers": rows, "total": len(rows)})


@customer_bp.route("/customers", methods=["POST"])
def customers_create():
    payload = request.get_json(silent=True) or {}
    result = _customers().create_customer(
        CustomerInput.from_payload(payload),
        user_id=current_user_id(),
    )
    body = dict(result.payload)
    body["message"] = success_message("customer_saved")
    return jsonify(body), result.status_code


@customer_bp.route("/customers/duplicates", methods=["GET"])
def customers_duplicates():
    args = request.args
    matches = _customers().find_potential_duplicates(
        {name: args.get(name) for name in ("company_name", "telephone", "afm")},
        exclude_id=args.get("exclude_id"),
    )
    return jsonify({"duplicates": matches, "total": len(matches)})


@customer_bp.route("/customers/<customer_id>", methods=["GET"])
def customers_detail(customer_id: str):
    store = get_store()
    customer = CustomerService(store).get_customer(customer_id)
    contacts = ContactService(store).list_contacts(customer_id)
    return jsonify({"customer": customer, "contacts": contacts})


@customer_bp.route("/customers/<customer_id>", methods=["PATCH"])
def customers_update(customer_id: str):
    payload = request.get_json(silent=True) or {}
    row = CustomerService(get_store()).update_customer(customer_id, payload)
    return jsonify({"customer": row, "message": success_message("customer_saved")})


@customer_bp.route("/customers/<customer_id>", methods=["DELETE"])
def customers_delete(customer_id: str):
    row = CustomerService(get_store()).soft_delete_customer(customer_id)
    return jsonify({"customer": row, "message": success_message("customer_deleted")})


@customer_bp.route("/customers/<customer_id>/primary-contact", methods=["PUT"])
def customers_primary_contact(customer_id: str):
    payload = request.get_json(silent=True) or {}
    row = CustomerService(get_store()).set_primary_contact(customer_id, payload.get("contact_id"))
    return jsonify({"customer": row})


@customer_bp.route("/customers/<customer_id>/contacts", methods=["GET"])
def contacts_list(customer_id: str):
    store = get_store()
    CustomerService(store).get_customer(customer_id)
    return jsonify({"contacts": ContactService(store).list_contacts(customer_id)})


@customer_bp.route("/customers/<customer_id>/contacts", methods=["POST"])
def contacts_create(customer_id: str):
    payload = request.get_json(silent=True) or {}
    result = ContactService(get_store()).create_contact(customer_id, ContactInput.from_payload(payload))
    body = dict(result.payload)
    body["message"] = success_message("contact_saved")
    return jsonify(body), result.status_code


@customer_bp.route("/contacts/<contact_id>", methods=["PATCH"])
def contacts_update(contact_id: str):
    payload = request.get_json(silent=True) or {}
    row = ContactService(get_store()).update_contact(contact_id, payload)
    return jsonify({"contact": row, "message": success_message("contact_saved")})


@customer_bp.route("/contacts/<contact_id>", methods=["DELETE"])
def contacts_delete(contact_id: str):
    row = ContactService(get_store()).soft_delete_contact(contact_id)
    return jsonify({"contact": row, "message": success_message("contact_deleted")})
