from __future__ import annotations

from typing import Any, Mapping

from crm_portal.infrastructure.repositories.base import BaseRepository


class OfferDetailRepository(BaseRepository):
    table_name = "offer_details"

    def list_for_offer(self, offer_id: str) -> list[dict]:
        if not offer_id:
            return []
        return self.query().eq("offer_id", offer_id).order("created_at").execute()

    def create(self, offer_id: str, detail: Mapping[str, Any], *, user_id: str | None = None) -> dict:
        return self.insert(
            {
                "offer_id": offer_id,
                "category_id": detail["category_id"],
                "subcategory_id": detail.get("subcategory_id") or None,
                "unit_id": detail.get("unit_id") or None,
                "quantity": detail.get("quantity") or 1,
                "price": detail.get("price") or 0,
                "notes": detail.get("notes") or "",
                "created_by": user_id,
            }
        )
