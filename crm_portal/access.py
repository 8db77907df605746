"""Who is calling and on behalf of which tenant.

Every store handle is scoped to one tenant. The tenant comes from the
logged-in session first, then from the ``X-Tenant-Id`` header (service
callers and tests), and falls back to the demo tenant. Roles are the two
the CRM knows about: plain users and admins who may edit the catalog.
"""

from __future__ import annotations

from flask import g, has_request_context, request, session

from crm_portal.errors import AccessDeniedError


DEFAULT_TENANT_ID = "tenant-demo"
TENANT_HEADER = "X-Tenant-Id"

ROLE_USER = "user"
ROLE_ADMIN = "admin"
ROLES = (ROLE_USER, ROLE_ADMIN)


def _clean(value) -> str | None:
    text = str(value or "").strip()
    return text or None


def resolve_request_tenant() -> str:
    tenant_id = _clean(session.get("tenant_id")) or _clean(request.headers.get(TENANT_HEADER))
    g.tenant_id = tenant_id or DEFAULT_TENANT_ID
    return g.tenant_id


def scoped_tenant_id(explicit: str | None = None) -> str:
    tenant_id = _clean(explicit)
    if tenant_id is None and has_request_context():
        tenant_id = _clean(session.get("tenant_id")) or _clean(getattr(g, "tenant_id", None))
    return tenant_id or DEFAULT_TENANT_ID


def normalize_role(role: str | None, default: str = ROLE_USER) -> str:
    candidate = (role or "").strip().lower()
    return candidate if candidate in ROLES else default


def require_roles(*allowed: str) -> str:
    role = normalize_role(session.get("user_role"))
    if not allowed or role in allowed:
        return role
    raise AccessDeniedError()
