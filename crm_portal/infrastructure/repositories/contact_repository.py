from __future__ import annotations

from crm_portal.infrastructure.repositories.base import BaseRepository
from crm_portal.infrastructure.store import utc_now_iso


class ContactRepository(BaseRepository):
    table_name = "contacts"

    def list_active(self, customer_id: str) -> list[dict]:
        return (
            self.query()
            .eq("customer_id", customer_id)
            .eq("status", "active")
            .is_null("deleted_at")
            .order("full_name")
            .execute()
        )

    def soft_delete(self, contact_id: str) -> dict | None:
        return self.update_fields(contact_id, {"deleted_at": utc_now_iso(), "status": "inactive"})
