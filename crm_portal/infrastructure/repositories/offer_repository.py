from __future__ import annotations

from crm_portal.infrastructure.repositories.base import BaseRepository
from crm_portal.infrastructure.store import utc_now_iso


class OfferRepository(BaseRepository):
    table_name = "offers"

    def list_for_customer(self, customer_id: str) -> list[dict]:
        return (
            self.query()
            .eq("customer_id", customer_id)
            .is_null("deleted_at")
            .order("created_at", ascending=False)
            .execute()
        )

    def soft_delete(self, offer_id: str, *, user_id: str | None = None) -> dict | None:
        return self.update_fields(offer_id, {"deleted_at": utc_now_iso(), "updated_by": user_id})


class OfferHistoryRepository(BaseRepository):
    table_name = "offer_history"

    TRACKED_FIELDS = ("status", "assigned_to", "result", "amount", "requirements")

    def record_change(self, offer_id: str, previous: dict, current: dict, *, changed_by: str | None) -> dict | None:
        changed = [
            field
            for field in self.TRACKED_FIELDS
            if str(previous.get(field) or "") != str(current.get(field) or "")
        ]
        if not changed:
            return None
        values = {"offer_id": offer_id, "changed_by": changed_by, "notes": ", ".join(changed)}
        for field in self.TRACKED_FIELDS:
            values[f"previous_{field}"] = previous.get(field)
            values[f"new_{field}"] = current.get(field)
        return self.insert(values)

    def list_for_offer(self, offer_id: str) -> list[dict]:
        return self.query().eq("offer_id", offer_id).order("created_at", ascending=False).execute()
