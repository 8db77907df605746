from __future__ import annotations

from crm_portal.infrastructure.repositories.base import BaseRepository
from crm_portal.infrastructure.store import utc_now_iso


SEARCH_COLUMNS = ("company_name", "afm", "telephone", "email", "town")


class CustomerRepository(BaseRepository):
    table_name = "customers"

    def list(self, *, search: str | None = None, include_inactive: bool = False, limit: int = 500) -> list[dict]:
        query = self.query().is_null("deleted_at")
        if not include_inactive:
            query = query.eq("status", "active")
        term = str(search or "").strip()
        if term:
            query = query.match_any(SEARCH_COLUMNS, f"%{term}%")
        return query.order("company_name").limit(limit).execute()

    def soft_delete(self, customer_id: str) -> dict | None:
        return self.update_fields(customer_id, {"deleted_at": utc_now_iso(), "status": "inactive"})

    def set_primary_contact(self, customer_id: str, contact_id: str | None) -> dict | None:
        return self.update_fields(customer_id, {"primary_contact_id": contact_id})

    def clear_primary_contact(self, contact_id: str) -> list[dict]:
        return self.query().eq("primary_contact_id", contact_id).update(
            {"primary_contact_id": None, "updated_at": utc_now_iso()}
        )

    def duplicate_candidates(self, *, exclude_id: str | None = None, limit: int = 2000) -> list[dict]:
        query = self.query().select("id, company_name, telephone, afm, doy, town, status").is_null("deleted_at")
        if exclude_id:
            query = query.neq("id", exclude_id)
        return query.order("company_name").limit(limit).execute()
