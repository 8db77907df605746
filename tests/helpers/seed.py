from __future__ import annotations

from crm_portal import create_app
from crm_portal.config import Config
from crm_portal.infrastructure.store import Store
from crm_portal.infrastructure import get_store


def build_app(sandbox, **overrides):
    attrs = {"TESTING": True, "AUTH_ENABLED": False}
    attrs.update(overrides)
    return create_app(sandbox.make_config(Config, **attrs))


def app_store(tenant_id: str) -> Store:
    return get_store(tenant_id)


def seed_customer(store: Store, company_name: str = "Acme A.E.", **values) -> dict:
    return store.table("customers").insert({"company_name": company_name, "status": "active", **values})


def seed_user(store: Store, email: str, full_name: str, role: str = "user") -> dict:
    return store.table("users").insert({"email": email, "full_name": full_name, "role": role, "status": "active"})


def seed_catalog(store: Store) -> dict:
    cleaning = store.table("service_categories").insert({"name": "Cleaning"})
    security = store.table("service_categories").insert({"name": "Security"})
    offices = store.table("service_subcategories").insert({"category_id": cleaning["id"], "name": "Offices"})
    stairs = store.table("service_subcategories").insert({"category_id": cleaning["id"], "name": "Stairwells"})
    hours = store.table("units").insert({"name": "hours"})
    return {
        "cleaning": cleaning["id"],
        "security": security["id"],
        "offices": offices["id"],
        "stairs": stairs["id"],
        "hours": hours["id"],
    }
