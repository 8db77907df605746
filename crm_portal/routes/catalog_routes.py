from __future__ import annotations

from flask import Blueprint, jsonify, request

from crm_portal.application.catalog_service import CatalogService
from crm_portal.infrastructure import get_store
from crm_portal.access import require_roles
from crm_portal.ui_strings import frontend_bundle


catalog_bp = Blueprint("catalog", __name__, url_prefix="/api/catalog")


@catalog_bp.route("/categories", methods=["GET"])
def categories_list():
    return jsonify({"categories": CatalogService(get_store()).category_tree()})


@catalog_bp.route("/categories", methods=["POST"])
def categories_create():
    require_roles("admin")
    payload = request.get_json(silent=True) or {}
    return jsonify({"category": CatalogService(get_store()).create_category(payload.get("name"))}), 201


@catalog_bp.route("/categories/<category_id>/subcategories", methods=["POST"])
def subcategories_create(category_id: str):
    require_roles("admin")
    payload = request.get_json(silent=True) or {}
    row = CatalogService(get_store()).create_subcategory(category_id, payload.get("name"))
    return jsonify({"subcategory": row}), 201


@catalog_bp.route("/units", methods=["GET"])
def units_list():
    return jsonify({"units": CatalogService(get_store()).list_units()})


@catalog_bp.route("/units", methods=["POST"])
def units_create():
    require_roles("admin")
    payload = request.get_json(silent=True) or {}
    return jsonify({"unit": CatalogService(get_store()).create_unit(payload.get("name"))}), 201


@catalog_bp.route("/ui", methods=["GET"])
def ui_bundle():
    return jsonify(frontend_bundle())
